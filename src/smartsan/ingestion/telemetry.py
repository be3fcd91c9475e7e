"""Telemetry ingestion.

This module owns the path a device sample takes into the system:
resolve device -> validate -> persist -> derive unit state -> alerts ->
broadcast. It is shared by the HTTP endpoint and the MQTT listener.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from smartsan.alerts import UnitSnapshot, evaluate_alerts
from smartsan.broadcast import BroadcastHub
from smartsan.config import SmartSanConfig
from smartsan.exceptions import InvalidSampleError, UnknownDeviceError
from smartsan.models import events
from smartsan.models.alert import Alert
from smartsan.models.telemetry import TelemetryPayload, TelemetrySample
from smartsan.models.unit import NewUnit, Unit, UnitState
from smartsan.state.policy import derive_unit_state, is_stale
from smartsan.state.store import StateStore

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclasses.dataclass(frozen=True)
class IngestResult:
    """Outcome of one accepted sample."""

    sample: TelemetrySample
    unit: Unit
    previous_state: UnitState
    alerts: list[Alert]

    @property
    def state_changed(self) -> bool:
        return self.unit.state != self.previous_state


def parse_sample(raw: Any) -> TelemetryPayload:
    """Validate a raw device payload.

    Raises
    ------
    InvalidSampleError
        If the payload is not an object or violates the sample schema.
    """
    if not isinstance(raw, Mapping):
        raise InvalidSampleError("telemetry payload must be a JSON object")
    try:
        return TelemetryPayload.model_validate(dict(raw))
    except ValidationError as exc:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in exc.errors(include_url=False)
        ]
        summary = "; ".join(f"{e['loc'] or 'sample'}: {e['msg']}" for e in errors)
        raise InvalidSampleError(f"invalid telemetry sample: {summary}", errors=errors) from exc


class TelemetryIngestor:
    """Turns raw device samples into stored state and broadcast events.

    Samples for the same unit are serialized through a per-unit lock so
    state derivation never interleaves; different units ingest in parallel.
    """

    def __init__(
        self,
        store: StateStore,
        hub: BroadcastHub,
        config: SmartSanConfig,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._hub = hub
        self._config = config
        self._clock = clock
        self._unit_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def ingest(self, device_id: str, raw: Any) -> IngestResult:
        """Validate, persist and broadcast one sample for *device_id*.

        Raises
        ------
        UnknownDeviceError
            No unit is provisioned with serial *device_id*.
        InvalidSampleError
            The payload failed validation. Nothing is stored.
        """
        unit = await self._store.get_unit_by_serial(device_id)
        if unit is None:
            _logger.warning("Telemetry for unknown device %s rejected", device_id)
            raise UnknownDeviceError(device_id)

        try:
            payload = parse_sample(raw)
        except InvalidSampleError:
            _logger.warning("Invalid telemetry sample from %s rejected", device_id)
            raise

        async with self._unit_locks[unit.id]:
            received_at = self._clock()
            sample = TelemetrySample.from_payload(unit.id, payload, received_at=received_at)
            sample = await self._store.append_sample(sample)

            current = await self._store.get_unit(unit.id) or unit
            new_state = derive_unit_state(
                current.state,
                sample.fill_level_pct,
                urgent_fill_pct=self._config.urgent_fill_pct,
                recovered_fill_pct=self._config.recovered_fill_pct,
            )
            updated = await self._store.update_unit(
                unit.id,
                state=new_state if new_state != current.state else None,
                position=payload.position,
                last_seen_at=received_at,
            )
            latest = await self._store.latest_sample(unit.id)

        if updated.state != current.state:
            _logger.info(
                "Unit %s state %s -> %s (fill=%s)",
                updated.serial_no,
                current.state.value,
                updated.state.value,
                sample.fill_level_pct,
            )
        _logger.debug("Stored sample %s for unit %s", sample.id, updated.serial_no)

        unit_alerts = [
            alert
            for alert in evaluate_alerts(
                [UnitSnapshot(unit=updated, latest=latest)],
                now=received_at,
                offline_after=self._config.offline_after,
                urgent_fill_pct=self._config.urgent_fill_pct,
                max_alerts=self._config.max_alerts,
            )
            if alert.unit_id == unit.id
        ]

        await self._hub.publish(events.telemetry_update(unit.id, sample, unit_alerts))
        return IngestResult(sample=sample, unit=updated, previous_state=current.state, alerts=unit_alerts)

    async def mark_offline_units(self, now: datetime | None = None) -> list[Unit]:
        """Move units silent for longer than ``offline_after`` to ``offline``."""
        reference = now or self._clock()
        swept: list[Unit] = []
        for unit in await self._store.list_units():
            if unit.state == UnitState.OFFLINE:
                continue
            if not is_stale(unit.last_seen_at, reference, self._config.offline_after):
                continue
            async with self._unit_locks[unit.id]:
                current = await self._store.get_unit(unit.id)
                # A sample may have landed while we waited for the lock.
                if current is None or not is_stale(current.last_seen_at, reference, self._config.offline_after):
                    continue
                swept.append(await self._store.update_unit(unit.id, state=UnitState.OFFLINE))
            _logger.info("Unit %s marked offline (last seen %s)", unit.serial_no, unit.last_seen_at)
        return swept

    async def provision_unit(self, new_unit: NewUnit) -> Unit:
        """Create a unit and announce it to subscribers."""
        unit = await self._store.create_unit(new_unit.to_unit())
        _logger.info("Provisioned unit %s (%s)", unit.serial_no, unit.id)
        await self._hub.publish(events.unit_added(unit))
        return unit
