from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from conftest import FakeClock, make_unit

from smartsan.exceptions import DuplicateCheckoutError, UnknownBookingError, UnknownRouteError, UnknownUnitError
from smartsan.models.analytics import FleetStats, RevenueStats
from smartsan.models.booking import Booking, BookingStatus, Customer, PaymentStatus
from smartsan.models.route import MaintenanceLog, MaintenanceStatus, Route, RouteStatus, RouteStop
from smartsan.models.telemetry import TelemetrySample
from smartsan.models.unit import UnitState
from smartsan.state.store import InMemoryStateStore


async def _booking(store: InMemoryStateStore, clock: FakeClock) -> Booking:
    customer = await store.create_customer(Customer(name="Amina", phone="254700000001"))
    return await store.create_booking(
        Booking(
            customer_id=customer.id,
            operator_id="op-1",
            service_type="standard",
            start_date=clock.now,
            location="Kibera",
            price=Decimal("525"),
        )
    )


@pytest.mark.asyncio
async def test_duplicate_serial_rejected(store: InMemoryStateStore) -> None:
    await store.create_unit(make_unit("SSN-001"))

    with pytest.raises(ValueError):
        await store.create_unit(make_unit("SSN-001"))


@pytest.mark.asyncio
async def test_last_seen_never_moves_backwards(store: InMemoryStateStore, clock: FakeClock) -> None:
    unit = await store.create_unit(make_unit())
    await store.update_unit(unit.id, last_seen_at=clock.now)

    updated = await store.update_unit(unit.id, state=UnitState.IDLE, last_seen_at=clock.now - timedelta(hours=1))

    assert updated.last_seen_at == clock.now
    assert updated.state == UnitState.IDLE


@pytest.mark.asyncio
async def test_update_unknown_unit_raises(store: InMemoryStateStore) -> None:
    with pytest.raises(UnknownUnitError):
        await store.update_unit("missing", state=UnitState.IDLE)


@pytest.mark.asyncio
async def test_history_ordered_by_timestamp_even_when_out_of_order(store: InMemoryStateStore, clock: FakeClock) -> None:
    unit = await store.create_unit(make_unit())
    for minutes, fill in ((10, 30.0), (0, 10.0), (5, 20.0)):
        await store.append_sample(
            TelemetrySample(unit_id=unit.id, timestamp=clock.now + timedelta(minutes=minutes), fill_level_pct=fill)
        )

    history = await store.sample_history(unit.id, clock.now, clock.now + timedelta(minutes=10))

    assert [s.fill_level_pct for s in history] == [10.0, 20.0, 30.0]
    latest = await store.latest_sample(unit.id)
    assert latest is not None and latest.fill_level_pct == 30.0


@pytest.mark.asyncio
async def test_fill_levels_skip_samples_without_fill(store: InMemoryStateStore, clock: FakeClock) -> None:
    unit = await store.create_unit(make_unit())
    await store.append_sample(TelemetrySample(unit_id=unit.id, timestamp=clock.now, fill_level_pct=72.0))
    await store.append_sample(
        TelemetrySample(unit_id=unit.id, timestamp=clock.now + timedelta(minutes=1), battery_voltage=12.1)
    )

    [level] = await store.list_fill_levels()

    assert level.fill_level == 72.0
    assert level.last_update == clock.now


@pytest.mark.asyncio
async def test_transition_payment_is_compare_and_set(store: InMemoryStateStore, clock: FakeClock) -> None:
    booking = await _booking(store, clock)

    results = await asyncio.gather(
        store.transition_payment(booking.id, PaymentStatus.PAID, payment_reference="QK1"),
        store.transition_payment(booking.id, PaymentStatus.FAILED, failure_reason="late"),
    )

    assert sum(r is not None for r in results) == 1
    stored = await store.get_booking(booking.id)
    assert stored is not None and stored.payment_status == PaymentStatus.PAID
    assert stored.failure_reason is None


@pytest.mark.asyncio
async def test_transition_unknown_booking_raises(store: InMemoryStateStore) -> None:
    with pytest.raises(UnknownBookingError):
        await store.transition_payment("missing", PaymentStatus.PAID)


@pytest.mark.asyncio
async def test_checkout_belongs_to_one_booking(store: InMemoryStateStore, clock: FakeClock) -> None:
    first = await _booking(store, clock)
    second = await _booking(store, clock)
    await store.attach_checkout(first.id, "ck_1")

    with pytest.raises(DuplicateCheckoutError):
        await store.attach_checkout(second.id, "ck_1")
    found = await store.get_booking_by_checkout("ck_1")
    assert found is not None and found.id == first.id


@pytest.mark.asyncio
async def test_complete_stop_progresses_route(store: InMemoryStateStore, clock: FakeClock) -> None:
    route = Route(name="Daily Route", scheduled_date=clock.now, estimated_duration=60, total_distance=10.0)
    route = await store.create_route(
        route.model_copy(
            update={
                "stops": (
                    RouteStop(route_id=route.id, unit_id="u-1", stop_order=1),
                    RouteStop(route_id=route.id, unit_id="u-2", stop_order=2),
                )
            }
        )
    )

    partial = await store.complete_stop(route.id, "u-1")
    done = await store.complete_stop(route.id, "u-2")

    assert partial.status == RouteStatus.IN_PROGRESS
    assert done.status == RouteStatus.COMPLETED
    assert done.is_complete


@pytest.mark.asyncio
async def test_overdue_maintenance(store: InMemoryStateStore, clock: FakeClock) -> None:
    fresh = await store.create_unit(make_unit("A", created_at=clock.now))
    stale = await store.create_unit(make_unit("B", created_at=clock.now - timedelta(days=45)))
    serviced = await store.create_unit(make_unit("C", created_at=clock.now - timedelta(days=45)))
    await store.create_maintenance_log(
        MaintenanceLog(
            unit_id=serviced.id,
            maintenance_type="pump",
            status=MaintenanceStatus.COMPLETED,
            completed_date=clock.now - timedelta(days=3),
        )
    )

    overdue = await store.overdue_maintenance_units(clock.now, timedelta(days=30))

    assert [u.id for u in overdue] == [stale.id]
    assert fresh.id not in {u.id for u in overdue}


@pytest.mark.asyncio
async def test_maintenance_for_unknown_unit_rejected(store: InMemoryStateStore) -> None:
    with pytest.raises(UnknownUnitError):
        await store.create_maintenance_log(MaintenanceLog(unit_id="missing", maintenance_type="pump"))


@pytest.mark.asyncio
async def test_booking_and_route_status_updates(store: InMemoryStateStore, clock: FakeClock) -> None:
    booking = await _booking(store, clock)
    route = await store.create_route(
        Route(name="Daily Route", scheduled_date=clock.now, estimated_duration=30, total_distance=4.0)
    )

    started = await store.update_booking_status(booking.id, BookingStatus.IN_PROGRESS)
    cancelled = await store.update_route_status(route.id, RouteStatus.CANCELLED)

    assert started.booking_status == BookingStatus.IN_PROGRESS
    assert started.payment_status == PaymentStatus.PENDING
    assert cancelled.status == RouteStatus.CANCELLED
    with pytest.raises(UnknownBookingError):
        await store.update_booking_status("missing", BookingStatus.IN_PROGRESS)
    with pytest.raises(UnknownRouteError):
        await store.update_route_status("missing", RouteStatus.COMPLETED)


@pytest.mark.asyncio
async def test_list_routes_by_day(store: InMemoryStateStore, clock: FakeClock) -> None:
    def route(name: str, day_offset: int = 0, operator_id: str = "op-1") -> Route:
        scheduled = clock.now + timedelta(days=day_offset)
        return Route(
            name=name, operator_id=operator_id, scheduled_date=scheduled, estimated_duration=30, total_distance=4.0
        )

    today = await store.create_route(route("Today"))
    await store.create_route(route("Tomorrow", day_offset=1))
    await store.create_route(route("Other operator", operator_id="op-2"))

    routes = await store.list_routes("op-1", on=clock.now.date())

    assert [r.id for r in routes] == [today.id]
    assert len(await store.list_routes(on=clock.now.date())) == 2
    assert await store.list_routes(on=(clock.now - timedelta(days=1)).date()) == []


@pytest.mark.asyncio
async def test_fleet_stats(store: InMemoryStateStore, clock: FakeClock) -> None:
    assert await store.fleet_stats() == FleetStats()

    full = await store.create_unit(make_unit("A"))
    half = await store.create_unit(make_unit("B", state=UnitState.OFFLINE))
    await store.create_unit(make_unit("C"))
    await store.create_unit(make_unit("D", operator_id="op-2"))
    await store.append_sample(TelemetrySample(unit_id=full.id, timestamp=clock.now, fill_level_pct=90.0))
    await store.append_sample(TelemetrySample(unit_id=half.id, timestamp=clock.now, fill_level_pct=50.0))

    stats = await store.fleet_stats("op-1", service_fill_pct=85.0)

    assert stats.total_units == 3
    assert stats.active_units == 2
    assert stats.units_needing_service == 1
    assert stats.average_utilization == 70.0
    assert (await store.fleet_stats()).total_units == 4


@pytest.mark.asyncio
async def test_revenue_stats_counts_paid_bookings_only(store: InMemoryStateStore, clock: FakeClock) -> None:
    customer = await store.create_customer(Customer(name="Amina", phone="254700000001"))

    async def book(price: str, *, days_ago: int = 0, operator_id: str = "op-1") -> Booking:
        return await store.create_booking(
            Booking(
                customer_id=customer.id,
                operator_id=operator_id,
                service_type="standard",
                start_date=clock.now,
                location="Kibera",
                price=Decimal(price),
                created_at=clock.now - timedelta(days=days_ago),
            )
        )

    recent = await book("500")
    older = await book("300", days_ago=10)
    other = await book("1000", operator_id="op-2")
    unpaid = await book("9999")
    failed = await book("8888")
    for paid in (recent, older, other):
        await store.transition_payment(paid.id, PaymentStatus.PAID, payment_reference=f"ref-{paid.id}")
    await store.transition_payment(failed.id, PaymentStatus.FAILED, failure_reason="cancelled")
    assert unpaid.payment_status == PaymentStatus.PENDING

    everything = await store.revenue_stats()
    op1 = await store.revenue_stats("op-1")
    this_week = await store.revenue_stats("op-1", start=clock.now - timedelta(days=7), end=clock.now)

    assert (everything.total_revenue, everything.transaction_count) == (Decimal("1800"), 3)
    assert everything.average_booking_value == Decimal("600")
    assert (op1.total_revenue, op1.transaction_count) == (Decimal("800"), 2)
    assert (this_week.total_revenue, this_week.transaction_count) == (Decimal("500"), 1)
    assert await store.revenue_stats("op-3") == RevenueStats()
