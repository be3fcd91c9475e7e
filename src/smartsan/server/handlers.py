"""Request handlers for the ``/api/v1`` surface."""

from __future__ import annotations

import json
import logging
from datetime import date
from enum import StrEnum
from typing import Any, TypeVar

from aiohttp import WSMsgType, web
from pydantic import ValidationError

from smartsan.ingestion.normalize import parse_timestamp, safe_float
from smartsan.models.booking import BookingStatus
from smartsan.models.route import MaintenanceLog, RouteNotNeeded, RouteStatus
from smartsan.models.unit import NewUnit
from smartsan.server.keys import SERVICE_KEY

_logger = logging.getLogger(__name__)

_S = TypeVar("_S", bound=StrEnum)


def _bad_request(message: str, errors: list[dict[str, Any]] | None = None) -> web.HTTPBadRequest:
    body: dict[str, Any] = {"message": message}
    if errors:
        body["errors"] = errors
    return web.HTTPBadRequest(text=json.dumps(body), content_type="application/json")


def _validation_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in exc.errors(include_url=False)
    ]


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise _bad_request("request body is not valid JSON") from exc


async def _read_object(request: web.Request) -> dict[str, Any]:
    body = await _read_json(request)
    if not isinstance(body, dict):
        raise _bad_request("request body must be a JSON object")
    return body


def _query_timestamp(request: web.Request, name: str) -> Any:
    raw = request.query.get(name)
    if raw is None:
        return None
    try:
        return parse_timestamp(raw)
    except ValueError as exc:
        raise _bad_request(f"invalid {name!r} timestamp: {raw!r}") from exc


async def _read_status(request: web.Request, status_type: type[_S]) -> _S:
    body = await _read_object(request)
    try:
        return status_type(body.get("status"))
    except ValueError as exc:
        allowed = ", ".join(s.value for s in status_type)
        raise _bad_request(f"status must be one of: {allowed}") from exc


# ----------------------------------------------------------------------
# Telemetry and units
# ----------------------------------------------------------------------


async def post_telemetry(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    device_id = request.match_info["deviceId"]
    body = await _read_json(request)
    result = await service.ingestor.ingest(device_id, body)
    return web.json_response({"success": True, "id": result.sample.id})


async def list_units(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    units = await service.store.list_units(request.query.get("operatorId"))
    status = request.query.get("status")
    if status:
        units = [unit for unit in units if unit.state.value == status]
    payload = []
    for unit in units:
        latest = await service.store.latest_sample(unit.id)
        payload.append({**unit.to_wire(), "latestTelemetry": latest.to_wire() if latest else None})
    return web.json_response(payload)


async def get_unit(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    unit = await service.store.get_unit(request.match_info["unitId"])
    if unit is None:
        raise web.HTTPNotFound(text=json.dumps({"message": "Unit not found"}), content_type="application/json")
    start = _query_timestamp(request, "from")
    end = _query_timestamp(request, "to")
    history = []
    if start is not None and end is not None:
        history = [s.to_wire() for s in await service.store.sample_history(unit.id, start, end)]
    return web.json_response({**unit.to_wire(), "telemetryHistory": history})


async def post_unit(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _read_object(request)
    try:
        new_unit = NewUnit.model_validate(body)
    except ValidationError as exc:
        raise _bad_request("invalid unit", _validation_errors(exc)) from exc
    try:
        unit = await service.ingestor.provision_unit(new_unit)
    except ValueError as exc:
        raise web.HTTPConflict(text=json.dumps({"message": str(exc)}), content_type="application/json") from exc
    return web.json_response(unit.to_wire(), status=201)


# ----------------------------------------------------------------------
# Bookings and payments
# ----------------------------------------------------------------------


async def list_bookings(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    limit_raw = request.query.get("limit", "50")
    try:
        limit = int(limit_raw)
    except ValueError as exc:
        raise _bad_request(f"invalid limit: {limit_raw!r}") from exc
    bookings = await service.store.list_bookings(request.query.get("operatorId"), limit=limit)
    return web.json_response([booking.to_wire() for booking in bookings])


async def post_booking(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _read_object(request)
    created = await service.reconciler.create_booking(body)
    payload: dict[str, Any] = {"booking": created.booking.to_wire()}
    if created.payment is not None:
        payload["paymentRequest"] = {
            "checkoutId": created.payment.checkout_id,
            "status": created.payment.status,
            "message": created.payment.message,
        }
    elif created.payment_error is not None:
        payload["paymentError"] = created.payment_error.reason
    return web.json_response(payload, status=201)


async def patch_booking_status(request: web.Request) -> web.Response:
    """Move the service axis of a booking. The payment axis is not touchable here."""
    service = request.app[SERVICE_KEY]
    status = await _read_status(request, BookingStatus)
    booking = await service.store.update_booking_status(request.match_info["bookingId"], status)
    return web.json_response(booking.to_wire())


async def post_checkout_link(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _read_object(request) if request.can_read_body else {}
    redirect_url = body.get("redirectUrl")
    if redirect_url is not None and not isinstance(redirect_url, str):
        raise _bad_request("redirectUrl must be a string")
    link = await service.reconciler.checkout_link(request.match_info["bookingId"], redirect_url=redirect_url)
    return web.json_response(link.to_wire(), status=201)


async def post_payment_webhook(request: web.Request) -> web.Response:
    """Always acknowledged; the booking's own state is the observable outcome."""
    service = request.app[SERVICE_KEY]
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        _logger.warning("Payment webhook with unparseable body acknowledged")
        return web.json_response({"received": True})
    if isinstance(body, dict):
        outcome = await service.reconciler.handle_webhook(body)
        _logger.debug("Payment webhook outcome=%s", outcome.value)
    else:
        _logger.warning("Payment webhook body is not an object; acknowledged")
    return web.json_response({"received": True})


async def get_payment_status(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    status = await service.reconciler.check_status(request.match_info["checkoutId"])
    return web.json_response(
        {
            "status": status.status,
            "amount": float(status.amount) if status.amount is not None else None,
            "mpesaReference": status.reference,
            "failedReason": status.failure_reason,
        }
    )


# ----------------------------------------------------------------------
# Routes, maintenance, alerts
# ----------------------------------------------------------------------


async def list_routes(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    on = None
    raw_date = request.query.get("date")
    if raw_date:
        try:
            on = date.fromisoformat(raw_date)
        except ValueError as exc:
            raise _bad_request(f"invalid date: {raw_date!r}") from exc
    routes = await service.store.list_routes(request.query.get("operatorId"), on)
    return web.json_response([route.to_wire() for route in routes])


async def post_daily_route(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _read_json(request) if request.can_read_body else {}
    if not isinstance(body, dict):
        raise _bad_request("request body must be a JSON object")
    max_distance = None
    if body.get("maxDistance") is not None:
        max_distance = safe_float(body["maxDistance"])
        if max_distance is None or max_distance < 0:
            raise _bad_request("maxDistance must be a non-negative number")
    result = await service.selector.plan_daily(body.get("operatorId"), max_distance)
    if isinstance(result, RouteNotNeeded):
        return web.json_response({"message": result.message})
    return web.json_response(result.to_wire())


async def patch_route_status(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    status = await _read_status(request, RouteStatus)
    route = await service.store.update_route_status(request.match_info["routeId"], status)
    return web.json_response(route.to_wire())


async def post_stop_completed(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    route = await service.store.complete_stop(request.match_info["routeId"], request.match_info["unitId"])
    return web.json_response(route.to_wire())


async def list_maintenance(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    logs = await service.store.list_maintenance_logs(request.query.get("unitId"))
    return web.json_response([log.to_wire() for log in logs])


async def list_overdue_maintenance(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    units = await service.store.overdue_maintenance_units(service.clock(), service.config.maintenance_window)
    operator_id = request.query.get("operatorId")
    if operator_id:
        units = [unit for unit in units if unit.operator_id == operator_id]
    return web.json_response([unit.to_wire() for unit in units])


async def post_maintenance(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _read_object(request)
    try:
        log = MaintenanceLog.model_validate(body)
    except ValidationError as exc:
        raise _bad_request("invalid maintenance log", _validation_errors(exc)) from exc
    stored = await service.schedule_maintenance(log)
    return web.json_response(stored.to_wire(), status=201)


async def get_alerts(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    alerts = await service.current_alerts(request.query.get("operatorId"))
    return web.json_response([alert.to_wire() for alert in alerts])


# ----------------------------------------------------------------------
# Analytics
# ----------------------------------------------------------------------


async def get_fleet_stats(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    stats = await service.store.fleet_stats(
        request.query.get("operatorId"),
        service_fill_pct=service.config.urgent_fill_pct,
    )
    return web.json_response(stats.to_wire())


async def get_revenue_stats(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    stats = await service.store.revenue_stats(
        request.query.get("operatorId"),
        _query_timestamp(request, "from"),
        _query_timestamp(request, "to"),
    )
    return web.json_response(stats.to_wire())


# ----------------------------------------------------------------------
# Live events
# ----------------------------------------------------------------------


async def websocket(request: web.Request) -> web.WebSocketResponse:
    service = request.app[SERVICE_KEY]
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)
    service.hub.register(ws)
    try:
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                _logger.debug("WebSocket closed with error", exc_info=ws.exception())
                break
    finally:
        service.hub.unregister(ws)
    return ws
