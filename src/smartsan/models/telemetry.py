"""Telemetry models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from smartsan.ingestion.normalize import safe_float, safe_int
from smartsan.models._base import SmartSanBaseModel, UtcDatetime, new_id, utcnow
from smartsan.models.unit import Position

_READING_FIELDS = (
    "fill_level_pct",
    "door_open_count",
    "battery_voltage",
    "temperature",
    "air_quality",
    "gps_speed",
    "latitude",
)


class TelemetryPayload(SmartSanBaseModel):
    """A raw sample as uploaded by a device.

    Numeric fields accept numbers or numeric strings.  Unknown keys are
    ignored.  At least one reading must be present, and coordinates must
    come in pairs.
    """

    fill_level_pct: float | None = Field(
        default=None,
        ge=0.0,
        le=100.0,
        validation_alias=AliasChoices("fillLevelPct", "fill_level_pct", "fillLevel"),
    )
    door_open_count: int | None = Field(default=None, ge=0)
    battery_voltage: float | None = Field(default=None, ge=0.0)
    temperature: float | None = None
    air_quality: float | None = None
    gps_speed: float | None = Field(default=None, ge=0.0)
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float | None = Field(
        default=None,
        ge=-180.0,
        le=180.0,
        validation_alias=AliasChoices("longitude", "lng", "lon"),
    )
    timestamp: UtcDatetime | None = None

    @field_validator(
        "fill_level_pct",
        "battery_voltage",
        "temperature",
        "air_quality",
        "gps_speed",
        "latitude",
        "longitude",
        mode="before",
    )
    @classmethod
    def _coerce_floats(cls, value: Any) -> Any:
        if isinstance(value, str):
            parsed = safe_float(value)
            if parsed is None:
                raise ValueError(f"not a number: {value!r}")
            return parsed
        return value

    @field_validator("door_open_count", mode="before")
    @classmethod
    def _coerce_int(cls, value: Any) -> Any:
        if isinstance(value, str):
            parsed = safe_int(value)
            if parsed is None:
                raise ValueError(f"not an integer: {value!r}")
            return parsed
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> TelemetryPayload:
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        if all(getattr(self, name) is None for name in _READING_FIELDS):
            raise ValueError("sample carries no readings")
        return self

    @property
    def position(self) -> Position | None:
        if self.latitude is None or self.longitude is None:
            return None
        return Position(latitude=self.latitude, longitude=self.longitude)


class TelemetrySample(SmartSanBaseModel):
    """A stored telemetry sample. Immutable once stored."""

    id: str = Field(default_factory=new_id)
    unit_id: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    fill_level_pct: float | None = None
    door_open_count: int | None = None
    battery_voltage: float | None = None
    temperature: float | None = None
    air_quality: float | None = None
    gps_speed: float | None = None
    latitude: float | None = None
    longitude: float | None = None

    @classmethod
    def from_payload(cls, unit_id: str, payload: TelemetryPayload, *, received_at: datetime) -> TelemetrySample:
        data = payload.model_dump(exclude={"timestamp"})
        return cls(unit_id=unit_id, timestamp=payload.timestamp or received_at, **data)


class FillLevel(SmartSanBaseModel):
    """Latest fill reading for a unit."""

    unit_id: str
    fill_level: float
    last_update: UtcDatetime
