"""Broadcast events.

Every notification fanned out to live subscribers is one of these events.
On the wire an event is a flat JSON object: ``{"type": ..., **payload}``.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from smartsan.models.alert import Alert
from smartsan.models.route import MaintenanceLog
from smartsan.models.telemetry import TelemetrySample
from smartsan.models.unit import Unit


class EventType(StrEnum):
    TELEMETRY_UPDATE = "telemetry_update"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    UNIT_ADDED = "unit_added"
    MAINTENANCE_SCHEDULED = "maintenance_scheduled"


class BroadcastEvent(BaseModel):
    """A notification to publish through the broadcast hub."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("payload")
    @classmethod
    def _no_type_key(cls, value: dict[str, Any]) -> dict[str, Any]:
        if "type" in value:
            raise ValueError("payload must not carry its own 'type' key")
        return value

    def to_message(self) -> dict[str, Any]:
        return {"type": self.type.value, **self.payload}

    def to_json(self) -> str:
        return json.dumps(self.to_message(), separators=(",", ":"), default=str)


def _amount(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def telemetry_update(unit_id: str, sample: TelemetrySample, alerts: Sequence[Alert] = ()) -> BroadcastEvent:
    return BroadcastEvent(
        type=EventType.TELEMETRY_UPDATE,
        payload={
            "unitId": unit_id,
            "data": sample.to_wire(),
            "alerts": [alert.to_wire() for alert in alerts],
        },
    )


def payment_success(booking_id: str, amount: Decimal | None, reference: str | None) -> BroadcastEvent:
    return BroadcastEvent(
        type=EventType.PAYMENT_SUCCESS,
        payload={"bookingId": booking_id, "amount": _amount(amount), "mpesaRef": reference},
    )


def payment_failed(booking_id: str, reason: str | None) -> BroadcastEvent:
    return BroadcastEvent(
        type=EventType.PAYMENT_FAILED,
        payload={"bookingId": booking_id, "reason": reason},
    )


def unit_added(unit: Unit) -> BroadcastEvent:
    return BroadcastEvent(type=EventType.UNIT_ADDED, payload={"data": unit.to_wire()})


def maintenance_scheduled(log: MaintenanceLog) -> BroadcastEvent:
    return BroadcastEvent(type=EventType.MAINTENANCE_SCHEDULED, payload={"data": log.to_wire()})
