"""MQTT telemetry ingestion.

Devices that cannot make HTTP calls publish samples to
``smartsan/devices/<serial>/telemetry``. This module bridges those messages
into :class:`~smartsan.ingestion.telemetry.TelemetryIngestor`, the same
path the HTTP endpoint uses.
"""

from __future__ import annotations

import asyncio
import logging

from smartsan._mqtt import DeviceMessage, MqttSettings, TelemetryMqttRuntime
from smartsan.config import SmartSanConfig
from smartsan.exceptions import InvalidSampleError, UnknownDeviceError
from smartsan.ingestion.telemetry import TelemetryIngestor


class MqttTelemetryListener:
    def __init__(
        self,
        *,
        config: SmartSanConfig,
        ingestor: TelemetryIngestor,
        loop: asyncio.AbstractEventLoop,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._ingestor = ingestor
        self._loop = loop
        self._logger = logger
        self._runtime: TelemetryMqttRuntime | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def runtime(self) -> TelemetryMqttRuntime | None:
        return self._runtime

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def settings(self) -> MqttSettings:
        return MqttSettings(
            host=self._config.mqtt_host,
            port=self._config.mqtt_port,
            topic=self._config.mqtt_topic,
            keepalive=self._config.mqtt_keepalive,
            tls=self._config.mqtt_tls,
        )

    async def start(self) -> None:
        """Best-effort start; a broker outage must not take the HTTP API down."""
        if not self._config.mqtt_enabled:
            return
        try:
            runtime = TelemetryMqttRuntime(loop=self._loop, on_message=self.handle_message, logger=self._logger)
            await self._loop.run_in_executor(None, runtime.start, self.settings())
            self._runtime = runtime
        except Exception:
            self._logger.warning("MQTT telemetry listener failed to start", exc_info=True)

    async def stop(self) -> None:
        runtime = self._runtime
        self._runtime = None
        if runtime is not None:
            try:
                await self._loop.run_in_executor(None, runtime.stop)
            except Exception:
                self._logger.debug("MQTT runtime stop failed", exc_info=True)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def handle_message(self, message: DeviceMessage) -> None:
        """Schedule ingestion of one message (runs on the event loop thread)."""
        task = self._loop.create_task(self._ingest(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _ingest(self, message: DeviceMessage) -> None:
        try:
            await self._ingestor.ingest(message.device_id, message.payload)
        except (UnknownDeviceError, InvalidSampleError) as exc:
            # No caller to report to over MQTT; the ingestor already logged it.
            self._logger.debug("MQTT sample from %s dropped: %s", message.device_id, exc)
        except Exception:
            self._logger.exception("MQTT sample from %s failed", message.device_id)
