"""Unit (sanitation unit) models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator, model_validator

from smartsan.models._base import SmartSanBaseModel, UtcDatetime, new_id, utcnow


class UnitState(StrEnum):
    """Operational state of a unit."""

    ACTIVE = "active"
    IDLE = "idle"
    NEEDS_SERVICE = "needs_service"
    OFFLINE = "offline"


class Position(SmartSanBaseModel):
    """A WGS84 coordinate pair."""

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class Unit(SmartSanBaseModel):
    """A provisioned sanitation unit.

    ``serial_no`` is the device identifier used by telemetry uploads.
    Units are created by provisioning and never deleted by the core.
    """

    id: str = Field(default_factory=new_id)
    serial_no: str
    operator_id: str
    model: str | None = None
    location: str | None = None
    state: UnitState = Field(default=UnitState.ACTIVE, alias="status")
    position: Position | None = None
    last_seen_at: UtcDatetime | None = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


class NewUnit(SmartSanBaseModel):
    """Provisioning payload for a unit."""

    serial_no: str = Field(..., min_length=1)
    operator_id: str = Field(..., min_length=1)
    model: str | None = None
    location: str | None = None
    state: UnitState = Field(default=UnitState.ACTIVE, alias="status")
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)

    @field_validator("serial_no", "operator_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must be non-empty")
        return text

    @model_validator(mode="after")
    def _both_coordinates(self) -> NewUnit:
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self

    def to_unit(self) -> Unit:
        position = None
        if self.latitude is not None and self.longitude is not None:
            position = Position(latitude=self.latitude, longitude=self.longitude)
        return Unit(
            serial_no=self.serial_no,
            operator_id=self.operator_id,
            model=self.model,
            location=self.location,
            state=self.state,
            position=position,
        )
