"""Service composition root.

:class:`SmartSanService` wires the store, broadcast hub, telemetry
ingestor, payment reconciler, route selector and the optional MQTT
listener together and owns their lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from smartsan.alerts import evaluate_fleet
from smartsan.broadcast import BroadcastHub
from smartsan.config import SmartSanConfig
from smartsan.ingestion.mqtt import MqttTelemetryListener
from smartsan.ingestion.telemetry import TelemetryIngestor
from smartsan.models import events
from smartsan.models.alert import Alert
from smartsan.models.route import MaintenanceLog
from smartsan.payments import PaymentReconciler
from smartsan.provider import IntaSendClient, PaymentProvider
from smartsan.routing import RouteSelector
from smartsan.state.store import InMemoryStateStore, StateStore

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SmartSanService:
    """Owns every core component for one running instance.

    Usage::

        async with SmartSanService(SmartSanConfig.from_env()) as service:
            app = create_app(service)

    Parameters
    ----------
    config : SmartSanConfig
        Service configuration.
    store : StateStore or None
        Record store. Defaults to :class:`InMemoryStateStore`.
    provider : PaymentProvider or None
        Payment provider. Defaults to an :class:`IntaSendClient` owned by
        the service and opened on ``__aenter__``.
    clock : callable
        Source of "now" shared by all components.
    """

    def __init__(
        self,
        config: SmartSanConfig,
        *,
        store: StateStore | None = None,
        provider: PaymentProvider | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.clock = clock
        self.store: StateStore = store if store is not None else InMemoryStateStore(clock=clock)
        self.hub = BroadcastHub(send_timeout=config.broadcast_send_timeout)

        self._owned_client: IntaSendClient | None = None
        if provider is None:
            self._owned_client = IntaSendClient(config.provider)
            provider = self._owned_client
        self.provider: PaymentProvider = provider

        self.ingestor = TelemetryIngestor(self.store, self.hub, config, clock=clock)
        self.reconciler = PaymentReconciler(self.store, self.hub, provider, config)
        self.selector = RouteSelector(self.store, config, clock=clock)
        self._mqtt: MqttTelemetryListener | None = None
        self._sweep_task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> SmartSanService:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    @property
    def mqtt(self) -> MqttTelemetryListener | None:
        return self._mqtt

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        if self._owned_client is not None:
            await self._owned_client.__aenter__()
        if self.config.mqtt_enabled:
            self._mqtt = MqttTelemetryListener(
                config=self.config,
                ingestor=self.ingestor,
                loop=loop,
                logger=logging.getLogger("smartsan.mqtt"),
            )
            await self._mqtt.start()
        if self.config.offline_sweep_interval > 0:
            self._sweep_task = loop.create_task(self._sweep_offline(), name="smartsan-offline-sweep")
        _logger.info("SmartSan core started (provider env=%s)", self.config.provider.environment)

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None
        if self._mqtt is not None:
            await self._mqtt.stop()
            self._mqtt = None
        await self.reconciler.aclose()
        await self.hub.close()
        if self._owned_client is not None:
            await self._owned_client.__aexit__(None, None, None)
        _logger.info("SmartSan core stopped")

    async def _sweep_offline(self) -> None:
        while True:
            await asyncio.sleep(self.config.offline_sweep_interval)
            try:
                await self.ingestor.mark_offline_units()
            except Exception:
                _logger.exception("Offline sweep failed")

    # ------------------------------------------------------------------
    # Operations that span components
    # ------------------------------------------------------------------

    async def current_alerts(self, operator_id: str | None = None) -> list[Alert]:
        """Alert set for the fleet as of now."""
        return await evaluate_fleet(
            self.store,
            now=self.clock(),
            operator_id=operator_id,
            offline_after=self.config.offline_after,
            maintenance_window=self.config.maintenance_window,
            urgent_fill_pct=self.config.urgent_fill_pct,
            max_alerts=self.config.max_alerts,
        )

    async def schedule_maintenance(self, log: MaintenanceLog) -> MaintenanceLog:
        """Persist a maintenance log and announce it to subscribers.

        Raises
        ------
        UnknownUnitError
            The log references a unit that does not exist.
        """
        stored = await self.store.create_maintenance_log(log)
        _logger.info("Maintenance %s scheduled for unit %s", stored.maintenance_type, stored.unit_id)
        await self.hub.publish(events.maintenance_scheduled(stored))
        return stored
