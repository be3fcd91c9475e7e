"""Route and maintenance models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from smartsan.models._base import SmartSanBaseModel, UtcDatetime, new_id, utcnow


class RouteStatus(StrEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RouteStop(SmartSanBaseModel):
    id: str = Field(default_factory=new_id)
    route_id: str
    unit_id: str
    stop_order: int = Field(..., ge=1)
    fill_level: float | None = None
    service_completed: bool = False


class Route(SmartSanBaseModel):
    """A service route for one operator and day.

    ``estimated_duration`` is in minutes, ``total_distance`` in kilometres.
    """

    id: str = Field(default_factory=new_id)
    operator_id: str | None = None
    name: str
    scheduled_date: UtcDatetime
    status: RouteStatus = RouteStatus.SCHEDULED
    estimated_duration: int
    total_distance: float
    stops: tuple[RouteStop, ...] = ()
    created_at: UtcDatetime = Field(default_factory=utcnow)

    @property
    def is_complete(self) -> bool:
        return bool(self.stops) and all(stop.service_completed for stop in self.stops)


class RoutePlan(SmartSanBaseModel):
    """Result of a route selection that found work to do."""

    route: Route
    units_to_service: int
    estimated_duration: int
    max_distance: float
    exceeds_max_distance: bool = False


class RouteNotNeeded(SmartSanBaseModel):
    """Explicit "nothing to do" result of a route selection."""

    message: str = "No units require service"
    operator_id: str | None = None


class MaintenanceStatus(StrEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MaintenanceLog(SmartSanBaseModel):
    id: str = Field(default_factory=new_id)
    unit_id: str = Field(..., min_length=1)
    maintenance_type: str = Field(..., min_length=1)
    description: str | None = None
    scheduled_date: UtcDatetime | None = None
    completed_date: UtcDatetime | None = None
    status: MaintenanceStatus = MaintenanceStatus.SCHEDULED
    created_at: UtcDatetime = Field(default_factory=utcnow)
