from __future__ import annotations

from collections.abc import AsyncIterator
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from smartsan.config import ProviderConfig
from smartsan.exceptions import ProviderApiError, ProviderTransportError, SmartSanError
from smartsan.provider import IntaSendClient


class _FakeTransport:
    def __init__(self, response: dict[str, Any]) -> None:
        self.response = response
        self.requests: list[tuple[str, str, Any, Any]] = []

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        payload: Any = None,
        params: Any = None,
    ) -> dict[str, Any]:
        self.requests.append((method, endpoint, payload, params))
        return self.response


def _config(**overrides: Any) -> ProviderConfig:
    values: dict[str, Any] = {"secret_key": "ISSecretKey_test_abc", "public_key": "ISPubKey_test_abc"}
    values.update(overrides)
    return ProviderConfig(**values)


@pytest.mark.asyncio
async def test_initiate_posts_stk_push() -> None:
    transport = _FakeTransport({"id": "req-1", "checkout_id": "ck_1", "status": "PENDING"})

    async with IntaSendClient(_config(host="smartsan.example"), transport=transport) as client:
        initiation = await client.initiate("254712345678", Decimal("525"), "SmartSan standard service")

    assert initiation.checkout_id == "ck_1"
    assert transport.requests == [
        (
            "POST",
            "/payment/mpesa-stk-push/",
            {
                "phone_number": "254712345678",
                "amount": 525,
                "narrative": "SmartSan standard service",
                "host": "smartsan.example",
            },
            None,
        )
    ]


@pytest.mark.asyncio
async def test_initiate_without_checkout_id_is_a_transport_error() -> None:
    async with IntaSendClient(_config(), transport=_FakeTransport({"status": "PENDING"})) as client:
        with pytest.raises(ProviderTransportError):
            await client.initiate("254712345678", Decimal("10.50"), "x")


@pytest.mark.asyncio
async def test_status_fills_in_checkout_id() -> None:
    transport = _FakeTransport({"invoice": {"state": "FAILED", "failed_reason": "Insufficient balance"}})

    async with IntaSendClient(_config(), transport=transport) as client:
        status = await client.status("ck_1")

    assert status.checkout_id == "ck_1"
    assert status.is_terminal and not status.is_complete
    assert status.failure_reason == "Insufficient balance"
    assert transport.requests[0][3] == {"checkout_id": "ck_1"}


@pytest.mark.asyncio
async def test_create_checkout_link() -> None:
    transport = _FakeTransport({"id": "cl-1", "url": "https://pay.example/cl-1", "qr_code": "data:image/png"})

    async with IntaSendClient(_config(), transport=transport) as client:
        link = await client.create_checkout_link(Decimal("1200"), narrative="Event hire", redirect_url="https://x.test")

    assert link.url == "https://pay.example/cl-1"
    assert transport.requests[0][2]["redirect_url"] == "https://x.test"
    assert transport.requests[0][2]["currency"] == "KES"


@pytest.mark.asyncio
async def test_client_requires_context_manager() -> None:
    client = IntaSendClient(_config())

    with pytest.raises(SmartSanError):
        await client.status("ck_1")


# ----------------------------------------------------------------------
# Real transport against a local HTTP server
# ----------------------------------------------------------------------


_SEEN = web.AppKey("seen", list)


@pytest_asyncio.fixture
async def provider_server() -> AsyncIterator[TestServer]:
    seen: list[dict[str, Any]] = []

    async def stk_push(request: web.Request) -> web.Response:
        body = await request.json()
        seen.append({"auth": request.headers.get("Authorization"), "body": body})
        if body["phone_number"] == "000":
            return web.json_response({"detail": "Invalid phone number"}, status=400)
        if body["phone_number"] == "500":
            return web.Response(text="upstream exploded", status=502)
        if body["phone_number"] == "garbage":
            return web.Response(text="<html>", content_type="text/html")
        if body["phone_number"] == "binary":
            return web.Response(body=b"\xff\xfe\xfa", content_type="application/json", charset="utf-8")
        return web.json_response({"invoice": {"invoice_id": "INV-7", "state": "PENDING"}})

    app = web.Application()
    app[_SEEN] = seen
    app.router.add_post("/api/v1/payment/mpesa-stk-push/", stk_push)
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_transport_sends_bearer_and_parses_json(provider_server: TestServer) -> None:
    config = _config(base_url=str(provider_server.make_url("/api/v1")))

    async with IntaSendClient(config) as client:
        initiation = await client.initiate("254712345678", Decimal("525"), "n")

    assert initiation.checkout_id == "INV-7"
    [seen] = provider_server.app[_SEEN]
    assert seen["auth"] == "Bearer ISSecretKey_test_abc"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("phone", "error"),
    [
        ("000", ProviderApiError),
        ("500", ProviderTransportError),
        ("garbage", ProviderTransportError),
        ("binary", ProviderTransportError),
    ],
)
async def test_transport_error_mapping(provider_server: TestServer, phone: str, error: type[Exception]) -> None:
    config = _config(base_url=str(provider_server.make_url("/api/v1")))

    async with IntaSendClient(config) as client:
        with pytest.raises(error) as excinfo:
            await client.initiate(phone, Decimal("1"), "n")

    if isinstance(excinfo.value, ProviderApiError):
        assert excinfo.value.detail == "Invalid phone number"
    assert excinfo.value.endpoint == "/payment/mpesa-stk-push/"  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_transport_unreachable_host_is_transport_error() -> None:
    config = _config(base_url="http://127.0.0.1:9/api/v1", request_timeout=2.0)

    async with IntaSendClient(config) as client:
        with pytest.raises(ProviderTransportError):
            await client.status("ck_1")
