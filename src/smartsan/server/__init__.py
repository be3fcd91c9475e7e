"""HTTP and WebSocket surface."""

from smartsan.server.app import create_app, error_middleware
from smartsan.server.keys import SERVICE_KEY

__all__ = ["SERVICE_KEY", "create_app", "error_middleware"]
