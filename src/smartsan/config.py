"""Service configuration for smartsan."""

from __future__ import annotations

import dataclasses
import os
from datetime import timedelta
from typing import Any

from smartsan._constants import PROVIDER_LIVE_URL, PROVIDER_SANDBOX_URL
from smartsan.exceptions import SmartSanConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class ProviderConfig:
    """Credentials and endpoint for the mobile-money provider (IntaSend).

    Parameters
    ----------
    secret_key : str
        API secret key, sent as a bearer token.
    public_key : str
        Publishable key.  Not used for server-side calls but required so a
        half-configured deployment fails at startup.
    environment : str
        ``"test"`` (sandbox) or ``"live"``.
    base_url : str
        API base URL.  Derived from *environment* when empty.
    host : str
        Host value sent with STK push requests.
    request_timeout : float
        Total timeout in seconds for a single provider request.
    """

    secret_key: str
    public_key: str
    environment: str = "test"
    base_url: str = ""
    host: str = "localhost"
    request_timeout: float = 15.0

    def __post_init__(self) -> None:
        if not self.secret_key or not self.secret_key.strip():
            raise SmartSanConfigError("Provider secret key is required (INTASEND_SECRET_KEY)")
        if not self.public_key or not self.public_key.strip():
            raise SmartSanConfigError("Provider public key is required (INTASEND_PUBLIC_KEY)")
        if self.environment not in {"test", "live"}:
            raise SmartSanConfigError(f"environment must be 'test' or 'live', got {self.environment!r}")
        if not self.base_url:
            url = PROVIDER_LIVE_URL if self.environment == "live" else PROVIDER_SANDBOX_URL
            object.__setattr__(self, "base_url", url)


@dataclasses.dataclass(frozen=True)
class PollConfig:
    """Schedule for the payment status poller.

    The first check happens after ``initial_delay`` seconds.  Each later check
    waits ``interval * backoff**n`` seconds, capped at ``max_interval``.
    Polling gives up after ``max_attempts`` provider queries.
    """

    initial_delay: float = 5.0
    interval: float = 10.0
    backoff: float = 1.5
    max_interval: float = 60.0
    max_attempts: int = 30

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise SmartSanConfigError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.interval < 0:
            raise SmartSanConfigError("poll delays must be non-negative")
        if self.backoff < 1.0:
            raise SmartSanConfigError("backoff must be >= 1.0")

    def delay_for(self, attempt: int) -> float:
        """Seconds to sleep before the given (1-based) attempt."""
        if attempt <= 1:
            return self.initial_delay
        return min(self.interval * (self.backoff ** (attempt - 2)), self.max_interval)


@dataclasses.dataclass(frozen=True)
class SmartSanConfig:
    """Service configuration.

    Parameters
    ----------
    provider : ProviderConfig
        Payment provider credentials.
    poll : PollConfig
        Payment status poll schedule.
    urgent_fill_pct : float
        Fill level at or above which a unit needs service and raises an
        ``urgent`` alert.
    recovered_fill_pct : float
        Fill level below which an offline/needs-service unit returns to
        ``active``.
    route_fill_pct : float
        Fill level a unit must exceed to be put on the daily route.
    offline_after : timedelta
        Staleness window after which a silent unit counts as offline.
    offline_sweep_interval : float
        Seconds between background sweeps that mark silent units offline.
        ``0`` disables the sweep.
    max_alerts : int
        Maximum number of alerts returned by one evaluation.
    minutes_per_stop : int
        Route cost model: estimated minutes per stop.
    km_per_stop : float
        Route cost model: estimated kilometres per stop.
    default_max_distance_km : float
        Distance ceiling used when a route request does not supply one.
    maintenance_window : timedelta
        A unit without completed maintenance inside this window is overdue.
    broadcast_send_timeout : float
        Seconds a single subscriber send may take before the subscriber is
        dropped.
    auto_poll_payments : bool
        Start a background status poller for every initiated payment.
    narrative_prefix : str
        Prefix of the STK push narrative.
    host, port : str, int
        HTTP server bind address.
    mqtt_enabled : bool
        Subscribe to device telemetry over MQTT in addition to HTTP.
    mqtt_host, mqtt_port, mqtt_keepalive, mqtt_topic, mqtt_tls
        MQTT broker settings.  ``mqtt_topic`` must contain a single ``+``
        level that carries the device serial.
    """

    provider: ProviderConfig
    poll: PollConfig = dataclasses.field(default_factory=PollConfig)
    urgent_fill_pct: float = 85.0
    recovered_fill_pct: float = 60.0
    route_fill_pct: float = 60.0
    offline_after: timedelta = timedelta(hours=2)
    offline_sweep_interval: float = 300.0
    max_alerts: int = 5
    minutes_per_stop: int = 30
    km_per_stop: float = 5.0
    default_max_distance_km: float = 50.0
    maintenance_window: timedelta = timedelta(days=30)
    broadcast_send_timeout: float = 5.0
    auto_poll_payments: bool = True
    narrative_prefix: str = "SmartSan"
    host: str = "0.0.0.0"
    port: int = 8080
    mqtt_enabled: bool = False
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_keepalive: int = 60
    mqtt_topic: str = "smartsan/devices/+/telemetry"
    mqtt_tls: bool = False

    def __post_init__(self) -> None:
        if self.max_alerts < 1:
            raise SmartSanConfigError("max_alerts must be >= 1")
        if not 0 <= self.recovered_fill_pct <= self.urgent_fill_pct <= 100:
            raise SmartSanConfigError("fill thresholds must satisfy 0 <= recovered <= urgent <= 100")
        if self.offline_sweep_interval < 0:
            raise SmartSanConfigError("offline_sweep_interval must be >= 0")
        if self.mqtt_topic.count("+") != 1:
            raise SmartSanConfigError("mqtt_topic must contain exactly one '+' wildcard level")

    @classmethod
    def from_env(cls, **overrides: Any) -> SmartSanConfig:
        """Create configuration from environment variables.

        Reads ``INTASEND_SECRET_KEY``, ``INTASEND_PUBLIC_KEY`` and
        ``INTASEND_ENVIRONMENT`` for the provider, plus optional
        ``SMARTSAN_*`` variables. Explicit keyword arguments override
        environment values.

        Raises
        ------
        SmartSanConfigError
            If provider credentials are missing.
        """
        env = os.environ

        provider = overrides.pop("provider", None)
        if not isinstance(provider, ProviderConfig):
            provider_kwargs: dict[str, Any] = {
                "secret_key": env.get("INTASEND_SECRET_KEY", ""),
                "public_key": env.get("INTASEND_PUBLIC_KEY", ""),
                "environment": env.get("INTASEND_ENVIRONMENT", "test"),
            }
            base_url = env.get("INTASEND_BASE_URL")
            if base_url is not None:
                provider_kwargs["base_url"] = base_url
            host = env.get("SMARTSAN_PUBLIC_HOST")
            if host is not None:
                provider_kwargs["host"] = host
            if isinstance(provider, dict):
                provider_kwargs.update(provider)
            provider = ProviderConfig(**provider_kwargs)

        config_kwargs: dict[str, Any] = {"provider": provider}

        _ENV_FLOAT_MAP = {
            "SMARTSAN_URGENT_FILL_PCT": "urgent_fill_pct",
            "SMARTSAN_RECOVERED_FILL_PCT": "recovered_fill_pct",
            "SMARTSAN_ROUTE_FILL_PCT": "route_fill_pct",
            "SMARTSAN_KM_PER_STOP": "km_per_stop",
            "SMARTSAN_MAX_DISTANCE_KM": "default_max_distance_km",
            "SMARTSAN_BROADCAST_TIMEOUT": "broadcast_send_timeout",
            "SMARTSAN_OFFLINE_SWEEP_SECONDS": "offline_sweep_interval",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        _ENV_INT_MAP = {
            "SMARTSAN_MAX_ALERTS": "max_alerts",
            "SMARTSAN_MINUTES_PER_STOP": "minutes_per_stop",
            "SMARTSAN_PORT": "port",
            "SMARTSAN_MQTT_PORT": "mqtt_port",
            "SMARTSAN_MQTT_KEEPALIVE": "mqtt_keepalive",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(val)

        _ENV_STR_MAP = {
            "SMARTSAN_HOST": "host",
            "SMARTSAN_NARRATIVE_PREFIX": "narrative_prefix",
            "SMARTSAN_MQTT_HOST": "mqtt_host",
            "SMARTSAN_MQTT_TOPIC": "mqtt_topic",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        # offline window is given in minutes
        offline_env = env.get("SMARTSAN_OFFLINE_AFTER_MINUTES")
        if offline_env is not None and "offline_after" not in overrides:
            config_kwargs["offline_after"] = timedelta(minutes=float(offline_env))

        if "auto_poll_payments" not in overrides:
            config_kwargs["auto_poll_payments"] = _env_bool(env.get("SMARTSAN_AUTO_POLL"), True)
        if "mqtt_enabled" not in overrides:
            config_kwargs["mqtt_enabled"] = _env_bool(env.get("SMARTSAN_MQTT_ENABLED"), False)
        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("SMARTSAN_MQTT_TLS"), False)

        poll_kwargs: dict[str, Any] = {}
        for env_key, field_name in (
            ("SMARTSAN_POLL_INITIAL_DELAY", "initial_delay"),
            ("SMARTSAN_POLL_INTERVAL", "interval"),
            ("SMARTSAN_POLL_BACKOFF", "backoff"),
            ("SMARTSAN_POLL_MAX_INTERVAL", "max_interval"),
        ):
            val = env.get(env_key)
            if val is not None:
                poll_kwargs[field_name] = float(val)
        attempts_env = env.get("SMARTSAN_POLL_MAX_ATTEMPTS")
        if attempts_env is not None:
            poll_kwargs["max_attempts"] = int(attempts_env)
        if poll_kwargs and "poll" not in overrides:
            config_kwargs["poll"] = PollConfig(**poll_kwargs)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
