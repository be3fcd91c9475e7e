"""Alert models."""

from __future__ import annotations

from enum import StrEnum

from smartsan.models._base import SmartSanBaseModel, UtcDatetime


class AlertKind(StrEnum):
    URGENT = "urgent"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"
    INFO = "info"

    @property
    def severity(self) -> int:
        """Lower sorts first."""
        return _SEVERITY[self]


_SEVERITY: dict[AlertKind, int] = {
    AlertKind.URGENT: 0,
    AlertKind.MAINTENANCE: 1,
    AlertKind.OFFLINE: 2,
    AlertKind.INFO: 3,
}


def alert_id(kind: AlertKind, unit_id: str | None) -> str:
    return f"{kind.value}-{unit_id or 'fleet'}"


class Alert(SmartSanBaseModel):
    """A derived alert.

    Alerts are regenerated on every evaluation; ``id`` is derived from the
    unit and kind so the same condition always has the same identity.
    """

    id: str
    kind: AlertKind
    title: str
    description: str = ""
    unit_id: str | None = None
    location: str | None = None
    timestamp: UtcDatetime
