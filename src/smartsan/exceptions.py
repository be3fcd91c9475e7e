"""Custom exception hierarchy for smartsan."""

from __future__ import annotations

from typing import Any


class SmartSanError(Exception):
    """Base exception for all smartsan errors."""


class SmartSanConfigError(SmartSanError):
    """Invalid or missing configuration."""


class UnknownDeviceError(SmartSanError):
    """Telemetry arrived for a device serial that no unit is provisioned with."""

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"Device not found: {device_id}")


class InvalidSampleError(SmartSanError):
    """A telemetry sample failed validation and was rejected.

    Only the offending sample is rejected; the unit and its history are
    left untouched.
    """

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class InvalidBookingError(SmartSanError):
    """A booking request failed validation."""

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class UnknownUnitError(SmartSanError):
    """No unit with the given id exists."""


class UnknownBookingError(SmartSanError):
    """No booking with the given id exists."""


class UnknownRouteError(SmartSanError):
    """No route with the given id exists."""


class DuplicateCheckoutError(SmartSanError):
    """A checkout identifier is already attached to another booking."""


class ProviderError(SmartSanError):
    """Base for payment provider failures."""

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class ProviderTransportError(ProviderError):
    """HTTP-level failure talking to the provider (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        super().__init__(message, endpoint=endpoint)


class ProviderApiError(ProviderError):
    """The provider understood the request and rejected it."""

    def __init__(self, message: str, *, detail: str = "", endpoint: str = "") -> None:
        self.detail = detail
        super().__init__(message, endpoint=endpoint)


class PaymentInitiationError(SmartSanError):
    """STK push initiation failed.

    The booking that triggered the initiation is persisted regardless and its
    payment is marked ``failed`` without a checkout identifier.  This error is
    reported next to the booking, never instead of it.
    """

    def __init__(self, booking_id: str, reason: str) -> None:
        self.booking_id = booking_id
        self.reason = reason
        super().__init__(f"Payment initiation failed for booking {booking_id}: {reason}")


class PaymentProviderUnavailableError(SmartSanError):
    """A live status check could not reach the provider.

    Transient: the booking is not marked failed and the poller keeps retrying.
    """

    def __init__(self, checkout_id: str, reason: str) -> None:
        self.checkout_id = checkout_id
        self.reason = reason
        super().__init__(f"Payment status check failed for {checkout_id}: {reason}")
