"""Booking payment reconciliation.

A booking's payment is resolved by whichever of two racing sources reports
a terminal provider state first: the provider's webhook or a status poll.
Both funnel into :meth:`PaymentReconciler.apply_result`, which relies on the
store's compare-and-set so the terminal state is written, and announced,
exactly once.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from smartsan._constants import PROVIDER_STATE_COMPLETE, PROVIDER_TERMINAL_STATES
from smartsan._redact import mask_phone, redact_for_log
from smartsan.broadcast import BroadcastHub
from smartsan.config import SmartSanConfig
from smartsan.exceptions import (
    InvalidBookingError,
    PaymentInitiationError,
    PaymentProviderUnavailableError,
    ProviderError,
    UnknownBookingError,
)
from smartsan.models import events
from smartsan.models.booking import Booking, BookingRequest, PaymentStatus
from smartsan.models.payment import (
    CheckoutLink,
    PaymentInitiation,
    ProviderPaymentStatus,
    ReconcileOutcome,
    ResultSource,
    WebhookPayload,
)
from smartsan.payments.poller import PaymentPoller
from smartsan.provider import PaymentProvider
from smartsan.state.store import StateStore

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class BookingCreated:
    """A persisted booking plus the outcome of its payment initiation.

    Exactly one of ``payment`` and ``payment_error`` is set.
    """

    booking: Booking
    payment: PaymentInitiation | None = None
    payment_error: PaymentInitiationError | None = None


def _validation_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in exc.errors(include_url=False)
    ]


class PaymentReconciler:
    """Creates bookings, initiates payment and applies provider results.

    Parameters
    ----------
    store : StateStore
        Booking and customer records.
    hub : BroadcastHub
        Receives ``payment_success`` / ``payment_failed`` events.
    provider : PaymentProvider
        STK push initiation and live status checks.
    config : SmartSanConfig
        Narrative prefix, poll schedule and auto-poll switch.
    poller : PaymentPoller or None
        Background status poller.  One wired to :meth:`poll_once` is built
        when omitted.
    """

    def __init__(
        self,
        store: StateStore,
        hub: BroadcastHub,
        provider: PaymentProvider,
        config: SmartSanConfig,
        poller: PaymentPoller | None = None,
    ) -> None:
        self._store = store
        self._hub = hub
        self._provider = provider
        self._config = config
        self._poller = poller if poller is not None else PaymentPoller(self.poll_once, config.poll)

    @property
    def poller(self) -> PaymentPoller:
        return self._poller

    # ------------------------------------------------------------------
    # Booking creation and initiation
    # ------------------------------------------------------------------

    async def create_booking(self, request: BookingRequest | Mapping[str, Any]) -> BookingCreated:
        """Persist a booking and send the STK push for it.

        Initiation failure never rolls the booking back: the payment is
        marked ``failed`` without a checkout id and the error is returned in
        :attr:`BookingCreated.payment_error`.

        Raises
        ------
        InvalidBookingError
            The request failed validation. Nothing is persisted.
        """
        if not isinstance(request, BookingRequest):
            try:
                request = BookingRequest.model_validate(dict(request))
            except ValidationError as exc:
                errors = _validation_errors(exc)
                summary = "; ".join(f"{e['loc'] or 'booking'}: {e['msg']}" for e in errors)
                raise InvalidBookingError(f"invalid booking: {summary}", errors=errors) from exc

        customer = await self._store.get_customer_by_phone(request.customer_phone)
        if customer is None:
            customer = await self._store.create_customer(request.to_customer())
        booking = await self._store.create_booking(request.to_booking(customer.id))
        _logger.info("Booking %s created for customer %s", booking.id, customer.id)

        narrative = f"{self._config.narrative_prefix} {request.service_type} service"
        try:
            initiation = await self._provider.initiate(request.mpesa_number, booking.price, narrative)
        except ProviderError as exc:
            return await self._initiation_failed(booking, request.mpesa_number, str(exc))
        except Exception as exc:
            # Any provider failure resolves the booking; only cancellation propagates.
            _logger.debug("Unexpected initiation error for booking %s", booking.id, exc_info=True)
            reason = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
            return await self._initiation_failed(booking, request.mpesa_number, reason)

        booking = await self._store.attach_checkout(booking.id, initiation.checkout_id)
        _logger.info(
            "Payment initiated booking=%s checkout=%s phone=%s",
            booking.id,
            initiation.checkout_id,
            mask_phone(request.mpesa_number),
        )
        if self._config.auto_poll_payments:
            self._poller.start(initiation.checkout_id)
        return BookingCreated(booking=booking, payment=initiation)

    async def _initiation_failed(self, booking: Booking, phone: str, reason: str) -> BookingCreated:
        _logger.warning(
            "Payment initiation failed booking=%s phone=%s: %s",
            booking.id,
            mask_phone(phone),
            reason,
        )
        updated = await self._store.transition_payment(booking.id, PaymentStatus.FAILED, failure_reason=reason)
        return BookingCreated(
            booking=updated or booking,
            payment_error=PaymentInitiationError(booking.id, reason),
        )

    async def checkout_link(self, booking_id: str, *, redirect_url: str | None = None) -> CheckoutLink:
        """Create a hosted checkout page for an unpaid booking.

        This is the fallback when the STK push cannot reach the customer's
        handset. The booking itself is not modified.

        Raises
        ------
        UnknownBookingError
            No booking has this id.
        InvalidBookingError
            The booking is already paid.
        ProviderError
            The provider refused or could not be reached.
        """
        booking = await self._store.get_booking(booking_id)
        if booking is None:
            raise UnknownBookingError(booking_id)
        if booking.payment_status == PaymentStatus.PAID:
            raise InvalidBookingError(f"booking {booking_id} is already paid")

        narrative = f"{self._config.narrative_prefix} {booking.service_type} service"
        link = await self._provider.create_checkout_link(
            booking.price, narrative=narrative, redirect_url=redirect_url
        )
        _logger.info("Checkout link %s created for booking %s", link.id, booking.id)
        return link

    # ------------------------------------------------------------------
    # Result sources
    # ------------------------------------------------------------------

    async def handle_webhook(self, payload: WebhookPayload | Mapping[str, Any]) -> ReconcileOutcome:
        """Apply a provider webhook. Never raises.

        Unknown checkouts, non-terminal states and duplicates are logged and
        acknowledged as no-ops.
        """
        if not isinstance(payload, WebhookPayload):
            try:
                payload = WebhookPayload.model_validate(dict(payload))
            except (ValidationError, TypeError, ValueError):
                _logger.warning("Unparseable payment webhook ignored: %s", redact_for_log(payload), exc_info=True)
                return ReconcileOutcome.INVALID

        checkout_id = payload.checkout_id or payload.invoice_id
        if checkout_id is None:
            _logger.warning("Payment webhook without checkout id ignored (state=%s)", payload.state)
            return ReconcileOutcome.UNKNOWN_CHECKOUT
        if not payload.is_terminal:
            _logger.debug("Payment webhook checkout=%s state=%s is not final", checkout_id, payload.state)
            return ReconcileOutcome.NOT_TERMINAL

        try:
            return await self.apply_result(
                checkout_id,
                payload.state,
                source=ResultSource.WEBHOOK,
                amount=payload.amount,
                reference=payload.reference,
                reason=payload.failed_reason,
            )
        except Exception:
            _logger.exception("Payment webhook for checkout %s could not be applied", checkout_id)
            return ReconcileOutcome.INVALID

    async def check_status(self, checkout_id: str) -> ProviderPaymentStatus:
        """Query the provider and apply a terminal result if one is reported.

        Raises
        ------
        PaymentProviderUnavailableError
            The provider could not be queried.  The booking is left untouched.
        """
        try:
            status = await self._provider.status(checkout_id)
        except ProviderError as exc:
            raise PaymentProviderUnavailableError(checkout_id, str(exc)) from exc

        if status.is_terminal:
            await self.apply_result(
                checkout_id,
                status.status,
                source=ResultSource.POLL,
                amount=status.amount,
                reference=status.reference,
                reason=status.failure_reason,
            )
        return status

    async def poll_once(self, checkout_id: str) -> bool:
        """One poller tick. Returns ``True`` when polling can stop."""
        booking = await self._store.get_booking_by_checkout(checkout_id)
        if booking is None or booking.payment_status.is_terminal:
            return True
        status = await self.check_status(checkout_id)
        return status.is_terminal

    # ------------------------------------------------------------------
    # Transition
    # ------------------------------------------------------------------

    async def apply_result(
        self,
        checkout_id: str,
        state: str,
        *,
        source: ResultSource,
        amount: Decimal | None = None,
        reference: str | None = None,
        reason: str | None = None,
    ) -> ReconcileOutcome:
        """Move the booking behind *checkout_id* from ``pending`` to terminal.

        The first terminal result wins; every later one, from either source,
        is reported as ``ALREADY_TERMINAL`` without mutating anything or
        publishing.
        """
        state = state.upper()
        if state not in PROVIDER_TERMINAL_STATES:
            _logger.debug("Checkout %s still %s (%s)", checkout_id, state, source.value)
            return ReconcileOutcome.NOT_TERMINAL

        booking = await self._store.get_booking_by_checkout(checkout_id)
        if booking is None:
            _logger.warning("Payment result for unknown checkout %s ignored (%s)", checkout_id, source.value)
            return ReconcileOutcome.UNKNOWN_CHECKOUT
        if booking.payment_status.is_terminal:
            _logger.info(
                "Duplicate %s result for checkout %s ignored (booking %s already %s)",
                source.value,
                checkout_id,
                booking.id,
                booking.payment_status.value,
            )
            return ReconcileOutcome.ALREADY_TERMINAL

        paid = state == PROVIDER_STATE_COMPLETE
        updated = await self._store.transition_payment(
            booking.id,
            PaymentStatus.PAID if paid else PaymentStatus.FAILED,
            payment_reference=reference if paid else None,
            failure_reason=None if paid else reason,
        )
        if updated is None:
            _logger.info("Lost race applying %s result for checkout %s", source.value, checkout_id)
            return ReconcileOutcome.ALREADY_TERMINAL

        self._poller.cancel(checkout_id)
        _logger.info(
            "Booking %s payment %s via %s (checkout=%s)",
            updated.id,
            updated.payment_status.value,
            source.value,
            checkout_id,
        )
        if paid:
            await self._hub.publish(events.payment_success(updated.id, amount, reference))
        else:
            await self._hub.publish(events.payment_failed(updated.id, reason))
        return ReconcileOutcome.APPLIED

    async def aclose(self) -> None:
        """Cancel outstanding pollers."""
        await self._poller.aclose()
