"""Data models for smartsan."""

from smartsan.models.alert import Alert, AlertKind
from smartsan.models.analytics import FleetStats, RevenueStats
from smartsan.models.booking import Booking, BookingRequest, BookingStatus, Customer, PaymentStatus
from smartsan.models.events import BroadcastEvent, EventType
from smartsan.models.payment import (
    CheckoutLink,
    PaymentInitiation,
    ProviderPaymentStatus,
    ReconcileOutcome,
    ResultSource,
    WebhookPayload,
)
from smartsan.models.route import (
    MaintenanceLog,
    MaintenanceStatus,
    Route,
    RouteNotNeeded,
    RoutePlan,
    RouteStatus,
    RouteStop,
)
from smartsan.models.telemetry import FillLevel, TelemetryPayload, TelemetrySample
from smartsan.models.unit import NewUnit, Position, Unit, UnitState

__all__ = [
    "Alert",
    "AlertKind",
    "Booking",
    "BookingRequest",
    "BookingStatus",
    "BroadcastEvent",
    "CheckoutLink",
    "Customer",
    "EventType",
    "FillLevel",
    "FleetStats",
    "MaintenanceLog",
    "MaintenanceStatus",
    "NewUnit",
    "PaymentInitiation",
    "PaymentStatus",
    "Position",
    "ProviderPaymentStatus",
    "ReconcileOutcome",
    "ResultSource",
    "RevenueStats",
    "Route",
    "RouteNotNeeded",
    "RoutePlan",
    "RouteStatus",
    "RouteStop",
    "TelemetryPayload",
    "TelemetrySample",
    "Unit",
    "UnitState",
    "WebhookPayload",
]
