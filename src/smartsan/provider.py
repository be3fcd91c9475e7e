"""IntaSend payment provider client.

Usage::

    async with IntaSendClient(config.provider) as client:
        initiation = await client.initiate("254712345678", Decimal("525"), "SmartSan standard service")
        status = await client.status(initiation.checkout_id)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from smartsan._constants import CHECKOUT_ENDPOINT, PAYMENT_STATUS_ENDPOINT, STK_PUSH_ENDPOINT
from smartsan._transport import ProviderTransport, Transport
from smartsan.config import ProviderConfig
from smartsan.exceptions import ProviderTransportError, SmartSanError
from smartsan.models.payment import CheckoutLink, PaymentInitiation, ProviderPaymentStatus

_logger = logging.getLogger(__name__)


class PaymentProvider(Protocol):
    """The provider calls the payment reconciler depends on."""

    async def initiate(self, phone: str, amount: Decimal, narrative: str) -> PaymentInitiation: ...

    async def status(self, checkout_id: str) -> ProviderPaymentStatus: ...

    async def create_checkout_link(
        self,
        amount: Decimal,
        *,
        currency: str = ...,
        narrative: str,
        redirect_url: str | None = None,
    ) -> CheckoutLink: ...


def _amount_for_wire(amount: Decimal) -> int | float:
    # Whole shillings go out as integers, which is what the provider echoes back.
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


class IntaSendClient:
    """Async client for the IntaSend collection API.

    Parameters
    ----------
    config : ProviderConfig
        Credentials and endpoint.
    session : aiohttp.ClientSession or None
        Optional shared HTTP session.  When omitted the client creates and
        owns one for the lifetime of the ``async with`` block.
    transport : Transport or None
        Pre-built transport, mainly for tests.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport

    async def __aenter__(self) -> IntaSendClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = ProviderTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._transport = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise SmartSanError("Client not initialized. Use 'async with IntaSendClient(...) as client:'")
        return self._transport

    # ------------------------------------------------------------------
    # Collection API
    # ------------------------------------------------------------------

    async def initiate(self, phone: str, amount: Decimal, narrative: str) -> PaymentInitiation:
        """Send an M-Pesa STK push to *phone*.

        Raises
        ------
        ProviderApiError
            The provider rejected the request (bad number, bad amount).
        ProviderTransportError
            The provider could not be reached or answered garbage.
        """
        body = await self._require_transport().request_json(
            "POST",
            STK_PUSH_ENDPOINT,
            payload={
                "phone_number": phone,
                "amount": _amount_for_wire(amount),
                "narrative": narrative,
                "host": self._config.host,
            },
        )
        try:
            initiation = PaymentInitiation.model_validate(body)
        except ValidationError as exc:
            raise ProviderTransportError(
                "STK push response carried no checkout id",
                endpoint=STK_PUSH_ENDPOINT,
            ) from exc
        _logger.info("STK push accepted checkout=%s status=%s", initiation.checkout_id, initiation.status)
        return initiation

    async def status(self, checkout_id: str) -> ProviderPaymentStatus:
        """Query the live state of a checkout."""
        body = await self._require_transport().request_json(
            "GET",
            PAYMENT_STATUS_ENDPOINT,
            params={"checkout_id": checkout_id},
        )
        status = ProviderPaymentStatus.model_validate(body)
        if status.checkout_id is None:
            status = status.model_copy(update={"checkout_id": checkout_id})
        _logger.debug("Checkout %s status=%s", checkout_id, status.status)
        return status

    async def create_checkout_link(
        self,
        amount: Decimal,
        *,
        currency: str = "KES",
        narrative: str,
        redirect_url: str | None = None,
    ) -> CheckoutLink:
        """Create a hosted checkout page for methods other than STK push."""
        payload: dict[str, Any] = {
            "amount": _amount_for_wire(amount),
            "currency": currency,
            "narrative": narrative,
            "host": self._config.host,
        }
        if redirect_url:
            payload["redirect_url"] = redirect_url
        body = await self._require_transport().request_json("POST", CHECKOUT_ENDPOINT, payload=payload)
        try:
            return CheckoutLink.model_validate(body)
        except ValidationError as exc:
            raise ProviderTransportError(
                "Checkout response missing id or url",
                endpoint=CHECKOUT_ENDPOINT,
            ) from exc
