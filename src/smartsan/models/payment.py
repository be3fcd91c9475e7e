"""Payment provider models.

The provider speaks snake_case JSON; these models accept it directly
(``populate_by_name``) and additionally unwrap the nested ``invoice``
object some responses carry.
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from smartsan._constants import PROVIDER_STATE_COMPLETE, PROVIDER_STATE_FAILED, PROVIDER_TERMINAL_STATES
from smartsan.ingestion.normalize import safe_decimal, safe_str
from smartsan.models._base import SmartSanBaseModel


def _merge_invoice(values: Any) -> Any:
    if not isinstance(values, dict):
        return values
    nested = values.get("invoice")
    merged = dict(values)
    if isinstance(nested, dict):
        for key, value in nested.items():
            merged.setdefault(key, value)
    return merged


class ReconcileOutcome(StrEnum):
    """Result of offering a provider result to the reconciler."""

    APPLIED = "applied"
    ALREADY_TERMINAL = "already_terminal"
    UNKNOWN_CHECKOUT = "unknown_checkout"
    NOT_TERMINAL = "not_terminal"
    INVALID = "invalid"


class ResultSource(StrEnum):
    WEBHOOK = "webhook"
    POLL = "poll"


class PaymentInitiation(SmartSanBaseModel):
    """Provider acknowledgement of an STK push request."""

    checkout_id: str = Field(..., validation_alias=AliasChoices("checkout_id", "checkoutId", "invoice_id"))
    status: str = Field(default="PENDING", validation_alias=AliasChoices("status", "state"))
    message: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, values: Any) -> Any:
        merged = _merge_invoice(values)
        if isinstance(merged, dict):
            merged.setdefault("raw", values)
        return merged

    @field_validator("checkout_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        text = safe_str(value)
        if text is None:
            raise ValueError("checkout id missing from provider response")
        return text


class ProviderPaymentStatus(SmartSanBaseModel):
    """Normalized live status of a checkout as reported by the provider."""

    checkout_id: str | None = None
    status: str = Field(default="PENDING", validation_alias=AliasChoices("status", "state"))
    amount: Decimal | None = Field(default=None, validation_alias=AliasChoices("amount", "value", "net_amount"))
    reference: str | None = Field(default=None, validation_alias=AliasChoices("mpesa_reference", "reference"))
    failure_reason: str | None = Field(default=None, validation_alias=AliasChoices("failed_reason", "failure_reason"))

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, values: Any) -> Any:
        return _merge_invoice(values)

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> str:
        return (safe_str(value) or "PENDING").upper()

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Decimal | None:
        return safe_decimal(value)

    @property
    def is_terminal(self) -> bool:
        return self.status in PROVIDER_TERMINAL_STATES

    @property
    def is_complete(self) -> bool:
        return self.status == PROVIDER_STATE_COMPLETE


class WebhookPayload(SmartSanBaseModel):
    """Completion event pushed by the provider."""

    checkout_id: str | None = None
    invoice_id: str | None = None
    state: str = "PENDING"
    provider: str | None = None
    charges: Decimal | None = None
    net_amount: Decimal | None = None
    value: Decimal | None = None
    account: str | None = None
    api_ref: str | None = None
    mpesa_reference: str | None = None
    failed_reason: str | None = None
    challenge: str | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> str:
        return (safe_str(value) or "PENDING").upper()

    @field_validator("charges", "net_amount", "value", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Decimal | None:
        return safe_decimal(value)

    @field_validator("checkout_id", "invoice_id", "account", "api_ref", "mpesa_reference", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str | None:
        return safe_str(value)

    @property
    def is_terminal(self) -> bool:
        return self.state in (PROVIDER_STATE_COMPLETE, PROVIDER_STATE_FAILED)

    @property
    def amount(self) -> Decimal | None:
        return self.net_amount if self.net_amount is not None else self.value

    @property
    def reference(self) -> str | None:
        return self.mpesa_reference or self.api_ref


class CheckoutLink(SmartSanBaseModel):
    """Hosted checkout page created for card or multi-method payments."""

    id: str
    url: str
    qr_code: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        text = safe_str(value)
        if text is None:
            raise ValueError("checkout link id missing from provider response")
        return text
