"""Daily service route selection.

The cost model here is a fixed per-stop placeholder: every selected unit
adds ``minutes_per_stop`` minutes and ``km_per_stop`` kilometres.  There is
no distance matrix behind it and stop order is simply fullest first, so the
result is deterministic for a given fill-level snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from smartsan.config import SmartSanConfig
from smartsan.models.route import Route, RouteNotNeeded, RoutePlan, RouteStop
from smartsan.models.telemetry import FillLevel
from smartsan.state.store import StateStore

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def select_units(fill_levels: Iterable[FillLevel], threshold: float) -> list[FillLevel]:
    """Units strictly above *threshold*, fullest first, ties by unit id."""
    selected = [level for level in fill_levels if level.fill_level > threshold]
    return sorted(selected, key=lambda level: (-level.fill_level, level.unit_id))


class RouteSelector:
    """Builds one route per operator and day from the latest fill levels."""

    def __init__(
        self,
        store: StateStore,
        config: SmartSanConfig,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    async def plan_daily(
        self,
        operator_id: str | None = None,
        max_distance: float | None = None,
    ) -> RoutePlan | RouteNotNeeded:
        """Select units needing service and persist a route for today.

        Parameters
        ----------
        operator_id : str or None
            Restrict selection to one operator's units.
        max_distance : float or None
            Distance ceiling in kilometres.  Reported back and flagged when
            the estimate exceeds it; the route is not shortened.

        Returns
        -------
        RoutePlan or RouteNotNeeded
            ``RouteNotNeeded`` when no unit qualifies. A zero-stop route is
            never created.
        """
        ceiling = self._config.default_max_distance_km if max_distance is None else max_distance
        selected = select_units(await self._store.list_fill_levels(operator_id), self._config.route_fill_pct)
        if not selected:
            _logger.info("No units require service (operator=%s)", operator_id)
            return RouteNotNeeded(operator_id=operator_id)

        now = self._clock()
        count = len(selected)
        route = Route(
            operator_id=operator_id,
            name=f"Daily Route {now.date().isoformat()}",
            scheduled_date=now,
            estimated_duration=count * self._config.minutes_per_stop,
            total_distance=count * self._config.km_per_stop,
            created_at=now,
        )
        stops = tuple(
            RouteStop(route_id=route.id, unit_id=level.unit_id, stop_order=order, fill_level=level.fill_level)
            for order, level in enumerate(selected, start=1)
        )
        route = await self._store.create_route(route.model_copy(update={"stops": stops}))

        exceeds = route.total_distance > ceiling
        if exceeds:
            _logger.warning(
                "Route %s estimate %.1f km exceeds ceiling %.1f km",
                route.id,
                route.total_distance,
                ceiling,
            )
        _logger.info("Route %s planned with %d stops (operator=%s)", route.id, count, operator_id)
        return RoutePlan(
            route=route,
            units_to_service=count,
            estimated_duration=route.estimated_duration,
            max_distance=ceiling,
            exceeds_max_distance=exceeds,
        )
