"""Internal MQTT runtime for device telemetry uploads."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from smartsan.exceptions import SmartSanError


@dataclass(frozen=True)
class MqttSettings:
    """Broker connection details."""

    host: str
    port: int
    topic: str
    client_id: str = "smartsan-core"
    username: str | None = None
    password: str | None = None
    keepalive: int = 60
    tls: bool = False


@dataclass(frozen=True)
class DeviceMessage:
    """A parsed telemetry message and the device it came from."""

    device_id: str
    topic: str
    payload: dict[str, Any]


def device_id_from_topic(pattern: str, topic: str) -> str | None:
    """Extract the ``+`` level of *pattern* from a concrete *topic*.

    >>> device_id_from_topic("smartsan/devices/+/telemetry", "smartsan/devices/SSN-001/telemetry")
    'SSN-001'
    """
    pattern_parts = pattern.split("/")
    topic_parts = topic.split("/")
    if len(pattern_parts) != len(topic_parts):
        return None
    device_id: str | None = None
    for expected, actual in zip(pattern_parts, topic_parts, strict=True):
        if expected == "+":
            device_id = actual or None
        elif expected != actual:
            return None
    return device_id


def decode_device_message(pattern: str, topic: str, payload: bytes) -> DeviceMessage:
    """Parse a raw MQTT publish into a :class:`DeviceMessage`."""
    device_id = device_id_from_topic(pattern, topic)
    if device_id is None:
        raise SmartSanError(f"topic {topic!r} does not match {pattern!r}")
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise SmartSanError("MQTT payload is not a JSON object")
    return DeviceMessage(device_id=device_id, topic=topic, payload=parsed)


class TelemetryMqttRuntime:
    """Background paho-mqtt client for device telemetry.

    paho runs its network loop on its own thread. Every decoded message is
    handed to *on_message* on *loop* via ``call_soon_threadsafe``, so the
    callback always runs on the event loop thread.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[DeviceMessage], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._deliver = on_message
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._pattern: str | None = None

    @property
    def is_running(self) -> bool:
        return self._client is not None

    def start(self, settings: MqttSettings) -> None:
        """Connect to the broker and subscribe to ``settings.topic``.

        Blocking; call from an executor. A previous connection is torn down
        first.
        """
        self.stop()
        self._logger.debug("Connecting to MQTT broker %s:%s (topic %s)", settings.host, settings.port, settings.topic)

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()
        client.on_connect = self._handle_connect
        client.on_message = self._handle_message
        client.on_disconnect = self._handle_disconnect

        self._pattern = settings.topic
        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()
        self._client = client

    def stop(self) -> None:
        """Disconnect and join the network thread. Safe to call repeatedly."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            self._pattern = None
            self._logger.debug("MQTT client stopped")

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _handle_connect(
        self, client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _props: Any
    ) -> None:
        if reason_code.is_failure:
            self._logger.warning("MQTT broker refused connection: %s", reason_code)
            return
        # Subscriptions do not survive a reconnect with a clean session.
        if self._pattern:
            client.subscribe(self._pattern, qos=1)
            self._logger.info("Subscribed to %s", self._pattern)

    def _handle_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        if self._pattern is None:
            return
        try:
            message = decode_device_message(self._pattern, msg.topic, msg.payload)
        except (SmartSanError, ValueError):
            self._logger.debug("Dropping undecodable MQTT message on %s", msg.topic, exc_info=True)
            return
        self._loop.call_soon_threadsafe(self._deliver, message)

    def _handle_disconnect(
        self, _client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _props: Any
    ) -> None:
        if self._client is not None:
            self._logger.info("MQTT connection lost (%s); paho will reconnect", reason_code)
