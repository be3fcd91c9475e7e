"""Ingestion layer.

This package contains the adapters through which device telemetry enters
the system (HTTP and MQTT) and the ingestor that turns a raw sample into
stored state, derived unit status and a broadcast event.
"""

__all__: list[str] = []
