"""Alert engine.

:func:`evaluate_alerts` is a pure function of a fleet snapshot and a
supplied ``now``: identical input always yields the identical alert list.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from smartsan.models.alert import Alert, AlertKind, alert_id
from smartsan.models.telemetry import TelemetrySample
from smartsan.models.unit import Unit, UnitState
from smartsan.state.policy import is_stale
from smartsan.state.store import StateStore


@dataclasses.dataclass(frozen=True)
class UnitSnapshot:
    """A unit together with its latest telemetry sample."""

    unit: Unit
    latest: TelemetrySample | None = None


def _urgent(snapshot: UnitSnapshot, fill: float) -> Alert:
    unit = snapshot.unit
    assert snapshot.latest is not None  # noqa: S101
    return Alert(
        id=alert_id(AlertKind.URGENT, unit.id),
        kind=AlertKind.URGENT,
        title=f"Unit {unit.serial_no} at {fill:.0f}% capacity",
        description="Requires immediate servicing",
        unit_id=unit.id,
        location=unit.location,
        timestamp=snapshot.latest.timestamp,
    )


def _offline(unit: Unit, now: datetime, offline_after: timedelta) -> Alert:
    hours = offline_after.total_seconds() / 3600
    return Alert(
        id=alert_id(AlertKind.OFFLINE, unit.id),
        kind=AlertKind.OFFLINE,
        title=f"Unit {unit.serial_no} offline",
        description=f"Last seen over {hours:g} hours ago",
        unit_id=unit.id,
        location=unit.location,
        timestamp=unit.last_seen_at or now,
    )


def _maintenance(unit: Unit, now: datetime) -> Alert:
    return Alert(
        id=alert_id(AlertKind.MAINTENANCE, unit.id),
        kind=AlertKind.MAINTENANCE,
        title=f"Maintenance due: Unit {unit.serial_no}",
        description="Scheduled maintenance is overdue",
        unit_id=unit.id,
        location=unit.location,
        timestamp=now,
    )


def _info(now: datetime) -> Alert:
    return Alert(
        id=alert_id(AlertKind.INFO, None),
        kind=AlertKind.INFO,
        title="No active alerts",
        description="All units are operating normally",
        timestamp=now,
    )


def evaluate_alerts(
    snapshots: Iterable[UnitSnapshot],
    *,
    now: datetime,
    maintenance_due: Iterable[str] = (),
    offline_after: timedelta = timedelta(hours=2),
    urgent_fill_pct: float = 85.0,
    max_alerts: int = 5,
) -> list[Alert]:
    """Derive the alert set for a fleet snapshot.

    Parameters
    ----------
    snapshots
        Units with their latest sample.
    now
        Reference time for staleness; the only clock input.
    maintenance_due
        Ids of units with overdue maintenance (supplied by the store).
    offline_after
        A unit silent for longer than this is reported offline even if its
        stored state has not been swept yet.
    urgent_fill_pct
        Fill level at or above which an ``urgent`` alert is raised.
    max_alerts
        Cap on the returned list; the most severe alerts are kept.

    Returns
    -------
    list[Alert]
        At most one alert per ``(unit, kind)``, ordered urgent, maintenance,
        offline, then by unit id. When no condition holds, a single ``info``
        placeholder.
    """
    if max_alerts < 1:
        raise ValueError("max_alerts must be >= 1")

    due = set(maintenance_due)
    alerts: dict[str, Alert] = {}

    for snapshot in snapshots:
        unit = snapshot.unit
        fill = snapshot.latest.fill_level_pct if snapshot.latest is not None else None
        if fill is not None and fill >= urgent_fill_pct:
            alert = _urgent(snapshot, fill)
            alerts.setdefault(alert.id, alert)

        if unit.state == UnitState.OFFLINE or is_stale(unit.last_seen_at, now, offline_after):
            alert = _offline(unit, now, offline_after)
            alerts.setdefault(alert.id, alert)

        if unit.id in due:
            alert = _maintenance(unit, now)
            alerts.setdefault(alert.id, alert)

    if not alerts:
        return [_info(now)]

    ordered = sorted(alerts.values(), key=lambda a: (a.kind.severity, a.unit_id or "", a.id))
    return ordered[:max_alerts]


async def collect_snapshots(store: StateStore, operator_id: str | None = None) -> list[UnitSnapshot]:
    """Build alert-engine input from the store."""
    units = await store.list_units(operator_id)
    return [UnitSnapshot(unit=unit, latest=await store.latest_sample(unit.id)) for unit in units]


async def evaluate_fleet(
    store: StateStore,
    *,
    now: datetime,
    operator_id: str | None = None,
    offline_after: timedelta = timedelta(hours=2),
    maintenance_window: timedelta = timedelta(days=30),
    urgent_fill_pct: float = 85.0,
    max_alerts: int = 5,
) -> list[Alert]:
    """Evaluate alerts for the whole fleet (or one operator) from the store."""
    snapshots = await collect_snapshots(store, operator_id)
    overdue = await store.overdue_maintenance_units(now, maintenance_window)
    return evaluate_alerts(
        snapshots,
        now=now,
        maintenance_due=[unit.id for unit in overdue],
        offline_after=offline_after,
        urgent_fill_pct=urgent_fill_pct,
        max_alerts=max_alerts,
    )


def alerts_for_unit(alerts: Sequence[Alert], unit_id: str) -> list[Alert]:
    return [alert for alert in alerts if alert.unit_id == unit_id]
