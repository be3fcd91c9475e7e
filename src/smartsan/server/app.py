"""aiohttp application factory."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from aiohttp import web

from smartsan._constants import API_PREFIX
from smartsan.exceptions import (
    DuplicateCheckoutError,
    InvalidBookingError,
    InvalidSampleError,
    PaymentProviderUnavailableError,
    ProviderError,
    SmartSanError,
    UnknownBookingError,
    UnknownDeviceError,
    UnknownRouteError,
    UnknownUnitError,
)
from smartsan.server import handlers
from smartsan.server.keys import SERVICE_KEY
from smartsan.service import SmartSanService

_logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

# First match wins.
_ERROR_STATUS: tuple[tuple[type[SmartSanError], int], ...] = (
    (UnknownDeviceError, 404),
    (UnknownUnitError, 404),
    (UnknownBookingError, 404),
    (UnknownRouteError, 404),
    (InvalidSampleError, 400),
    (InvalidBookingError, 400),
    (DuplicateCheckoutError, 409),
    (PaymentProviderUnavailableError, 503),
    (ProviderError, 502),
)


def status_for(exc: SmartSanError) -> int:
    for exc_type, status in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Render core errors as ``{"message", "errors"?}`` JSON bodies."""
    try:
        return await handler(request)
    except SmartSanError as exc:
        status = status_for(exc)
        if status >= 500:
            _logger.warning("%s %s failed: %s", request.method, request.path, exc, exc_info=status == 500)
        body: dict[str, object] = {"message": str(exc)}
        errors = getattr(exc, "errors", None)
        if errors:
            body["errors"] = errors
        return web.json_response(body, status=status)


def create_app(service: SmartSanService) -> web.Application:
    """Build the HTTP application around an already constructed service.

    The service lifecycle is not tied to the application; callers start
    and stop it (see :func:`smartsan.__main__.main`).
    """
    app = web.Application(middlewares=[error_middleware])
    app[SERVICE_KEY] = service

    p = API_PREFIX
    app.router.add_post(f"{p}/devices/{{deviceId}}/telemetry", handlers.post_telemetry)

    app.router.add_get(f"{p}/units", handlers.list_units)
    app.router.add_post(f"{p}/units", handlers.post_unit)
    app.router.add_get(f"{p}/units/{{unitId}}", handlers.get_unit)

    app.router.add_get(f"{p}/bookings", handlers.list_bookings)
    app.router.add_post(f"{p}/bookings", handlers.post_booking)
    app.router.add_patch(f"{p}/bookings/{{bookingId}}/status", handlers.patch_booking_status)

    app.router.add_post(f"{p}/payments/webhook", handlers.post_payment_webhook)
    app.router.add_post(f"{p}/payments/instasend/webhook", handlers.post_payment_webhook)
    app.router.add_post(f"{p}/bookings/{{bookingId}}/checkout-link", handlers.post_checkout_link)
    app.router.add_get(f"{p}/payments/{{checkoutId}}/status", handlers.get_payment_status)

    app.router.add_get(f"{p}/routes", handlers.list_routes)
    app.router.add_post(f"{p}/routes/daily", handlers.post_daily_route)
    app.router.add_patch(f"{p}/routes/{{routeId}}/status", handlers.patch_route_status)
    app.router.add_post(f"{p}/routes/{{routeId}}/stops/{{unitId}}/complete", handlers.post_stop_completed)

    app.router.add_get(f"{p}/maintenance", handlers.list_maintenance)
    app.router.add_post(f"{p}/maintenance", handlers.post_maintenance)
    app.router.add_get(f"{p}/maintenance/overdue", handlers.list_overdue_maintenance)

    app.router.add_get(f"{p}/alerts", handlers.get_alerts)
    app.router.add_get(f"{p}/analytics/fleet-stats", handlers.get_fleet_stats)
    app.router.add_get(f"{p}/analytics/revenue", handlers.get_revenue_stats)
    app.router.add_get("/ws", handlers.websocket)
    return app
