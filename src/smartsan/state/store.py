"""Record store for units, telemetry, bookings, routes and maintenance.

:class:`StateStore` is the interface the core depends on; a database-backed
implementation lives outside this package. :class:`InMemoryStateStore` is the
implementation used by the bundled server and the test-suite.
"""

from __future__ import annotations

import bisect
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Protocol

from smartsan.exceptions import (
    DuplicateCheckoutError,
    UnknownBookingError,
    UnknownRouteError,
    UnknownUnitError,
)
from smartsan.models.analytics import FleetStats, RevenueStats
from smartsan.models.booking import Booking, BookingStatus, Customer, PaymentStatus
from smartsan.models.route import MaintenanceLog, MaintenanceStatus, Route, RouteStatus
from smartsan.models.telemetry import FillLevel, TelemetrySample
from smartsan.models.unit import Position, Unit, UnitState


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StateStore(Protocol):
    """Structural store interface used by the core components."""

    # Units
    async def get_unit(self, unit_id: str) -> Unit | None: ...
    async def get_unit_by_serial(self, serial_no: str) -> Unit | None: ...
    async def list_units(self, operator_id: str | None = None) -> list[Unit]: ...
    async def create_unit(self, unit: Unit) -> Unit: ...
    async def update_unit(
        self,
        unit_id: str,
        *,
        state: UnitState | None = None,
        position: Position | None = None,
        last_seen_at: datetime | None = None,
    ) -> Unit: ...

    # Telemetry
    async def append_sample(self, sample: TelemetrySample) -> TelemetrySample: ...
    async def latest_sample(self, unit_id: str) -> TelemetrySample | None: ...
    async def sample_history(self, unit_id: str, start: datetime, end: datetime) -> list[TelemetrySample]: ...
    async def list_fill_levels(self, operator_id: str | None = None) -> list[FillLevel]: ...

    # Customers and bookings
    async def get_customer_by_phone(self, phone: str) -> Customer | None: ...
    async def create_customer(self, customer: Customer) -> Customer: ...
    async def create_booking(self, booking: Booking) -> Booking: ...
    async def get_booking(self, booking_id: str) -> Booking | None: ...
    async def get_booking_by_checkout(self, checkout_id: str) -> Booking | None: ...
    async def list_bookings(self, operator_id: str | None = None, limit: int = 50) -> list[Booking]: ...
    async def attach_checkout(self, booking_id: str, checkout_id: str) -> Booking: ...
    async def transition_payment(
        self,
        booking_id: str,
        to: PaymentStatus,
        *,
        expected: PaymentStatus = PaymentStatus.PENDING,
        payment_reference: str | None = None,
        failure_reason: str | None = None,
    ) -> Booking | None: ...
    async def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking: ...

    # Routes
    async def create_route(self, route: Route) -> Route: ...
    async def get_route(self, route_id: str) -> Route | None: ...
    async def list_routes(self, operator_id: str | None = None, on: date | None = None) -> list[Route]: ...
    async def complete_stop(self, route_id: str, unit_id: str) -> Route: ...
    async def update_route_status(self, route_id: str, status: RouteStatus) -> Route: ...

    # Maintenance
    async def create_maintenance_log(self, log: MaintenanceLog) -> MaintenanceLog: ...
    async def list_maintenance_logs(self, unit_id: str | None = None) -> list[MaintenanceLog]: ...
    async def overdue_maintenance_units(self, now: datetime, window: timedelta) -> list[Unit]: ...

    # Analytics
    async def fleet_stats(self, operator_id: str | None = None, *, service_fill_pct: float = 85.0) -> FleetStats: ...
    async def revenue_stats(
        self,
        operator_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> RevenueStats: ...


class InMemoryStateStore:
    """In-memory :class:`StateStore`.

    No method awaits between reading and writing a record, so every call is
    atomic with respect to other coroutines on the same event loop. This is
    what makes :meth:`transition_payment` a true compare-and-set.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._units: dict[str, Unit] = {}
        self._serials: dict[str, str] = {}
        self._samples: dict[str, list[TelemetrySample]] = {}
        self._customers: dict[str, Customer] = {}
        self._bookings: dict[str, Booking] = {}
        self._checkouts: dict[str, str] = {}
        self._routes: dict[str, Route] = {}
        self._maintenance: dict[str, MaintenanceLog] = {}

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    async def get_unit(self, unit_id: str) -> Unit | None:
        return self._units.get(unit_id)

    async def get_unit_by_serial(self, serial_no: str) -> Unit | None:
        unit_id = self._serials.get(serial_no)
        return self._units.get(unit_id) if unit_id is not None else None

    async def list_units(self, operator_id: str | None = None) -> list[Unit]:
        units = sorted(self._units.values(), key=lambda u: u.serial_no)
        if operator_id is None:
            return units
        return [u for u in units if u.operator_id == operator_id]

    async def create_unit(self, unit: Unit) -> Unit:
        if unit.serial_no in self._serials:
            raise ValueError(f"serial {unit.serial_no!r} is already provisioned")
        self._units[unit.id] = unit
        self._serials[unit.serial_no] = unit.id
        return unit

    async def update_unit(
        self,
        unit_id: str,
        *,
        state: UnitState | None = None,
        position: Position | None = None,
        last_seen_at: datetime | None = None,
    ) -> Unit:
        unit = self._units.get(unit_id)
        if unit is None:
            raise UnknownUnitError(unit_id)
        update: dict[str, object] = {}
        if state is not None:
            update["state"] = state
        if position is not None:
            update["position"] = position
        if last_seen_at is not None and (unit.last_seen_at is None or last_seen_at >= unit.last_seen_at):
            update["last_seen_at"] = last_seen_at
        if not update:
            return unit
        updated = unit.model_copy(update=update)
        self._units[unit_id] = updated
        return updated

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    async def append_sample(self, sample: TelemetrySample) -> TelemetrySample:
        if sample.unit_id not in self._units:
            raise UnknownUnitError(sample.unit_id)
        history = self._samples.setdefault(sample.unit_id, [])
        # Ordered by timestamp; equal timestamps keep arrival order.
        bisect.insort_right(history, sample, key=lambda s: s.timestamp)
        return sample

    async def latest_sample(self, unit_id: str) -> TelemetrySample | None:
        history = self._samples.get(unit_id)
        return history[-1] if history else None

    async def sample_history(self, unit_id: str, start: datetime, end: datetime) -> list[TelemetrySample]:
        history = self._samples.get(unit_id, [])
        return [s for s in history if start <= s.timestamp <= end]

    async def list_fill_levels(self, operator_id: str | None = None) -> list[FillLevel]:
        levels: list[FillLevel] = []
        for unit in await self.list_units(operator_id):
            for sample in reversed(self._samples.get(unit.id, [])):
                if sample.fill_level_pct is not None:
                    levels.append(
                        FillLevel(unit_id=unit.id, fill_level=sample.fill_level_pct, last_update=sample.timestamp)
                    )
                    break
        return levels

    # ------------------------------------------------------------------
    # Customers and bookings
    # ------------------------------------------------------------------

    async def get_customer_by_phone(self, phone: str) -> Customer | None:
        for customer in self._customers.values():
            if customer.phone == phone:
                return customer
        return None

    async def create_customer(self, customer: Customer) -> Customer:
        self._customers[customer.id] = customer
        return customer

    async def create_booking(self, booking: Booking) -> Booking:
        self._bookings[booking.id] = booking
        return booking

    async def get_booking(self, booking_id: str) -> Booking | None:
        return self._bookings.get(booking_id)

    async def get_booking_by_checkout(self, checkout_id: str) -> Booking | None:
        booking_id = self._checkouts.get(checkout_id)
        return self._bookings.get(booking_id) if booking_id is not None else None

    async def list_bookings(self, operator_id: str | None = None, limit: int = 50) -> list[Booking]:
        bookings = sorted(self._bookings.values(), key=lambda b: b.created_at, reverse=True)
        if operator_id is not None:
            bookings = [b for b in bookings if b.operator_id == operator_id]
        return bookings[:limit]

    async def attach_checkout(self, booking_id: str, checkout_id: str) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise UnknownBookingError(booking_id)
        owner = self._checkouts.get(checkout_id)
        if owner is not None and owner != booking_id:
            raise DuplicateCheckoutError(f"checkout {checkout_id} already belongs to booking {owner}")
        self._checkouts[checkout_id] = booking_id
        updated = booking.model_copy(update={"payment_ref": checkout_id, "updated_at": self._clock()})
        self._bookings[booking_id] = updated
        return updated

    async def transition_payment(
        self,
        booking_id: str,
        to: PaymentStatus,
        *,
        expected: PaymentStatus = PaymentStatus.PENDING,
        payment_reference: str | None = None,
        failure_reason: str | None = None,
    ) -> Booking | None:
        """Set the payment status to *to* only if it is currently *expected*.

        Returns the updated booking, or ``None`` when the current status did
        not match (the caller lost the race or the booking is already
        terminal).
        """
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise UnknownBookingError(booking_id)
        if booking.payment_status != expected:
            return None
        update: dict[str, object] = {"payment_status": to, "updated_at": self._clock()}
        if payment_reference is not None:
            update["payment_reference"] = payment_reference
        if failure_reason is not None:
            update["failure_reason"] = failure_reason
        updated = booking.model_copy(update=update)
        self._bookings[booking_id] = updated
        return updated

    async def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise UnknownBookingError(booking_id)
        updated = booking.model_copy(update={"booking_status": status, "updated_at": self._clock()})
        self._bookings[booking_id] = updated
        return updated

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    async def create_route(self, route: Route) -> Route:
        self._routes[route.id] = route
        return route

    async def get_route(self, route_id: str) -> Route | None:
        return self._routes.get(route_id)

    async def list_routes(self, operator_id: str | None = None, on: date | None = None) -> list[Route]:
        """Routes newest first, optionally limited to one operator and one UTC day."""
        routes = sorted(self._routes.values(), key=lambda r: r.scheduled_date, reverse=True)
        if operator_id is not None:
            routes = [r for r in routes if r.operator_id == operator_id]
        if on is not None:
            routes = [r for r in routes if r.scheduled_date.date() == on]
        return routes

    async def complete_stop(self, route_id: str, unit_id: str) -> Route:
        route = self._routes.get(route_id)
        if route is None:
            raise UnknownRouteError(route_id)
        if not any(stop.unit_id == unit_id for stop in route.stops):
            raise UnknownUnitError(f"unit {unit_id} is not a stop on route {route_id}")
        stops = tuple(
            stop.model_copy(update={"service_completed": True}) if stop.unit_id == unit_id else stop
            for stop in route.stops
        )
        status = route.status
        if all(stop.service_completed for stop in stops):
            status = RouteStatus.COMPLETED
        elif status == RouteStatus.SCHEDULED:
            status = RouteStatus.IN_PROGRESS
        updated = route.model_copy(update={"stops": stops, "status": status})
        self._routes[route_id] = updated
        return updated

    async def update_route_status(self, route_id: str, status: RouteStatus) -> Route:
        route = self._routes.get(route_id)
        if route is None:
            raise UnknownRouteError(route_id)
        updated = route.model_copy(update={"status": status})
        self._routes[route_id] = updated
        return updated

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def create_maintenance_log(self, log: MaintenanceLog) -> MaintenanceLog:
        if log.unit_id not in self._units:
            raise UnknownUnitError(log.unit_id)
        self._maintenance[log.id] = log
        return log

    async def list_maintenance_logs(self, unit_id: str | None = None) -> list[MaintenanceLog]:
        logs = sorted(self._maintenance.values(), key=lambda m: m.created_at, reverse=True)
        if unit_id is None:
            return logs
        return [m for m in logs if m.unit_id == unit_id]

    async def overdue_maintenance_units(self, now: datetime, window: timedelta) -> list[Unit]:
        """Units with overdue scheduled maintenance or no completed service within *window*.

        A unit that was never serviced is measured from its provisioning time.
        """
        overdue: list[Unit] = []
        for unit in await self.list_units():
            logs = [m for m in self._maintenance.values() if m.unit_id == unit.id]
            scheduled_overdue = any(
                m.status in (MaintenanceStatus.SCHEDULED, MaintenanceStatus.IN_PROGRESS)
                and m.scheduled_date is not None
                and m.scheduled_date < now
                for m in logs
            )
            completed = [m.completed_date for m in logs if m.completed_date is not None]
            last_serviced = max(completed) if completed else unit.created_at
            if scheduled_overdue or now - last_serviced > window:
                overdue.append(unit)
        return overdue

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def fleet_stats(self, operator_id: str | None = None, *, service_fill_pct: float = 85.0) -> FleetStats:
        units = await self.list_units(operator_id)
        fills = [level.fill_level for level in await self.list_fill_levels(operator_id)]
        return FleetStats(
            total_units=len(units),
            active_units=sum(1 for u in units if u.state == UnitState.ACTIVE),
            units_needing_service=sum(1 for fill in fills if fill >= service_fill_pct),
            average_utilization=sum(fills) / len(fills) if fills else 0.0,
        )

    async def revenue_stats(
        self,
        operator_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> RevenueStats:
        """Revenue over paid bookings created within ``[start, end]``.

        Either bound may be omitted. Refunded bookings do not count.
        """
        prices = [
            b.price
            for b in self._bookings.values()
            if b.payment_status == PaymentStatus.PAID
            and (operator_id is None or b.operator_id == operator_id)
            and (start is None or b.created_at >= start)
            and (end is None or b.created_at <= end)
        ]
        total = sum(prices, Decimal("0"))
        return RevenueStats(
            total_revenue=total,
            transaction_count=len(prices),
            average_booking_value=total / len(prices) if prices else Decimal("0"),
        )
