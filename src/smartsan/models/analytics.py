"""Fleet and revenue summaries."""

from __future__ import annotations

from decimal import Decimal

from pydantic import field_serializer

from smartsan.models._base import SmartSanBaseModel


class FleetStats(SmartSanBaseModel):
    """Unit counts and mean fill for one operator (or the whole fleet).

    ``average_utilization`` is the mean of each unit's latest fill reading;
    units that never reported a fill do not count towards it.
    """

    total_units: int = 0
    active_units: int = 0
    units_needing_service: int = 0
    average_utilization: float = 0.0


class RevenueStats(SmartSanBaseModel):
    """Totals over paid bookings."""

    total_revenue: Decimal = Decimal("0")
    transaction_count: int = 0
    average_booking_value: Decimal = Decimal("0")

    @field_serializer("total_revenue", "average_booking_value")
    def _money_as_number(self, value: Decimal) -> float:
        return float(value)
