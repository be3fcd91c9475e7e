"""Deterministic unit state policy.

This module contains *no* payload parsing. The ingestion/Pydantic boundary
is responsible for producing validated samples.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from smartsan.models.unit import UnitState


def derive_unit_state(
    current: UnitState,
    fill_level_pct: float | None,
    *,
    urgent_fill_pct: float = 85.0,
    recovered_fill_pct: float = 60.0,
) -> UnitState:
    """Derive the unit state after a new sample.

    Policy:
    - fill >= urgent threshold: ``needs_service``.
    - unit offline: ``active``. Any accepted sample proves it is reporting
      again, with or without a fill reading.
    - unit needs_service and fill < recovered threshold: ``active``.
    - otherwise: unchanged.
    """
    if fill_level_pct is not None and fill_level_pct >= urgent_fill_pct:
        return UnitState.NEEDS_SERVICE
    if current == UnitState.OFFLINE:
        return UnitState.ACTIVE
    if current == UnitState.NEEDS_SERVICE and fill_level_pct is not None and fill_level_pct < recovered_fill_pct:
        return UnitState.ACTIVE
    return current


def is_stale(last_seen_at: datetime | None, now: datetime, window: timedelta) -> bool:
    """Whether a unit last heard from at *last_seen_at* counts as silent.

    Units that have never reported are not stale; they are simply new.
    """
    if last_seen_at is None:
        return False
    return now - last_seen_at > window
