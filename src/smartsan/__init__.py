"""smartsan - sanitation fleet core: telemetry, payments and route planning."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("smartsan")
except PackageNotFoundError:
    __version__ = "0+local"
from smartsan.alerts import evaluate_alerts, evaluate_fleet
from smartsan.broadcast import BroadcastHub
from smartsan.config import PollConfig, ProviderConfig, SmartSanConfig
from smartsan.exceptions import (
    DuplicateCheckoutError,
    InvalidBookingError,
    InvalidSampleError,
    PaymentInitiationError,
    PaymentProviderUnavailableError,
    ProviderApiError,
    ProviderError,
    ProviderTransportError,
    SmartSanConfigError,
    SmartSanError,
    UnknownBookingError,
    UnknownDeviceError,
    UnknownRouteError,
    UnknownUnitError,
)
from smartsan.ingestion.telemetry import IngestResult, TelemetryIngestor
from smartsan.payments import BookingCreated, PaymentPoller, PaymentReconciler
from smartsan.provider import IntaSendClient, PaymentProvider
from smartsan.routing import RouteSelector
from smartsan.service import SmartSanService
from smartsan.state.store import InMemoryStateStore, StateStore

__all__ = [
    "BookingCreated",
    "BroadcastHub",
    "DuplicateCheckoutError",
    "InMemoryStateStore",
    "IngestResult",
    "IntaSendClient",
    "InvalidBookingError",
    "InvalidSampleError",
    "PaymentInitiationError",
    "PaymentPoller",
    "PaymentProvider",
    "PaymentProviderUnavailableError",
    "PaymentReconciler",
    "PollConfig",
    "ProviderApiError",
    "ProviderConfig",
    "ProviderError",
    "ProviderTransportError",
    "RouteSelector",
    "SmartSanConfig",
    "SmartSanConfigError",
    "SmartSanError",
    "SmartSanService",
    "StateStore",
    "TelemetryIngestor",
    "UnknownBookingError",
    "UnknownDeviceError",
    "UnknownRouteError",
    "UnknownUnitError",
    "__version__",
    "evaluate_alerts",
    "evaluate_fleet",
]
