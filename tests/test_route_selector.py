from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import FakeClock, make_unit

from smartsan.config import SmartSanConfig
from smartsan.models.route import RouteNotNeeded, RoutePlan
from smartsan.models.telemetry import FillLevel, TelemetrySample
from smartsan.routing import RouteSelector, select_units
from smartsan.state.store import InMemoryStateStore


async def _unit_with_fill(store: InMemoryStateStore, clock: FakeClock, serial: str, fill: float, **kwargs: str) -> str:
    unit = await store.create_unit(make_unit(serial, id=f"u-{serial}", **kwargs))
    await store.append_sample(TelemetrySample(unit_id=unit.id, timestamp=clock.now, fill_level_pct=fill))
    return unit.id


@pytest.fixture
def selector(store: InMemoryStateStore, config: SmartSanConfig, clock: FakeClock) -> RouteSelector:
    return RouteSelector(store, config, clock=clock)


def test_select_units_threshold_is_exclusive_and_ordered(clock: FakeClock) -> None:
    levels = [
        FillLevel(unit_id="b", fill_level=75.0, last_update=clock.now),
        FillLevel(unit_id="a", fill_level=75.0, last_update=clock.now),
        FillLevel(unit_id="c", fill_level=60.0, last_update=clock.now),
        FillLevel(unit_id="d", fill_level=99.0, last_update=clock.now),
    ]

    assert [level.unit_id for level in select_units(levels, 60.0)] == ["d", "a", "b"]


@pytest.mark.asyncio
async def test_empty_snapshot_returns_route_not_needed(selector: RouteSelector, store: InMemoryStateStore) -> None:
    result = await selector.plan_daily("op-1")

    assert isinstance(result, RouteNotNeeded)
    assert result.message == "No units require service"
    assert await store.list_routes() == []


@pytest.mark.asyncio
async def test_no_unit_above_threshold_returns_route_not_needed(
    selector: RouteSelector,
    store: InMemoryStateStore,
    clock: FakeClock,
) -> None:
    await _unit_with_fill(store, clock, "A", 60.0)
    await _unit_with_fill(store, clock, "B", 12.0)

    assert isinstance(await selector.plan_daily(), RouteNotNeeded)


@pytest.mark.parametrize("count", [1, 3, 7])
@pytest.mark.asyncio
async def test_n_units_give_n_stops_and_fixed_cost(
    count: int,
    selector: RouteSelector,
    store: InMemoryStateStore,
    clock: FakeClock,
) -> None:
    for i in range(count):
        await _unit_with_fill(store, clock, f"S{i}", 61.0 + i)
    await _unit_with_fill(store, clock, "LOW", 30.0)

    result = await selector.plan_daily("op-1")

    assert isinstance(result, RoutePlan)
    assert result.units_to_service == count
    assert len(result.route.stops) == count
    assert result.estimated_duration == count * 30
    assert result.route.total_distance == pytest.approx(count * 5.0)
    assert [stop.stop_order for stop in result.route.stops] == list(range(1, count + 1))
    assert result.route.name == "Daily Route 2026-03-02"
    assert await store.get_route(result.route.id) == result.route


@pytest.mark.asyncio
async def test_stops_fullest_first_and_operator_scoped(
    selector: RouteSelector,
    store: InMemoryStateStore,
    clock: FakeClock,
) -> None:
    await _unit_with_fill(store, clock, "A", 70.0)
    await _unit_with_fill(store, clock, "B", 95.0)
    await _unit_with_fill(store, clock, "X", 99.0, operator_id="op-2")

    result = await selector.plan_daily("op-1")

    assert isinstance(result, RoutePlan)
    assert [stop.unit_id for stop in result.route.stops] == ["u-B", "u-A"]
    assert [stop.fill_level for stop in result.route.stops] == [95.0, 70.0]


@pytest.mark.asyncio
async def test_latest_fill_reading_wins(selector: RouteSelector, store: InMemoryStateStore, clock: FakeClock) -> None:
    unit_id = await _unit_with_fill(store, clock, "A", 90.0)
    await store.append_sample(
        TelemetrySample(unit_id=unit_id, timestamp=clock.now + timedelta(minutes=5), fill_level_pct=10.0)
    )

    assert isinstance(await selector.plan_daily(), RouteNotNeeded)


@pytest.mark.asyncio
async def test_distance_ceiling_is_flagged_not_enforced(
    selector: RouteSelector,
    store: InMemoryStateStore,
    clock: FakeClock,
) -> None:
    for i in range(3):
        await _unit_with_fill(store, clock, f"S{i}", 80.0)

    result = await selector.plan_daily("op-1", max_distance=10.0)

    assert isinstance(result, RoutePlan)
    assert result.max_distance == 10.0
    assert result.exceeds_max_distance
    assert len(result.route.stops) == 3


@pytest.mark.asyncio
async def test_plan_is_deterministic_for_same_snapshot(
    selector: RouteSelector,
    store: InMemoryStateStore,
    clock: FakeClock,
) -> None:
    for serial, fill in (("A", 80.0), ("B", 80.0), ("C", 91.0)):
        await _unit_with_fill(store, clock, serial, fill)

    first = await selector.plan_daily()
    second = await selector.plan_daily()

    assert isinstance(first, RoutePlan) and isinstance(second, RoutePlan)
    assert [s.unit_id for s in first.route.stops] == [s.unit_id for s in second.route.stops]
    assert first.estimated_duration == second.estimated_duration
