from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest

from smartsan.broadcast import BroadcastHub
from smartsan.config import PollConfig, ProviderConfig, SmartSanConfig
from smartsan.models.payment import CheckoutLink, PaymentInitiation, ProviderPaymentStatus
from smartsan.models.unit import Unit
from smartsan.state.store import InMemoryStateStore


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeSubscriber:
    def __init__(self, *, fail: bool = False, delay: float = 0.0) -> None:
        self.messages: list[str] = []
        self.closed = False
        self._fail = fail
        self._delay = delay

    async def send_str(self, data: str) -> None:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._fail:
            raise ConnectionResetError("peer went away")
        self.messages.append(data)

    async def close(self) -> None:
        self.closed = True

    @property
    def events(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.messages]


class FakeProvider:
    def __init__(self, checkout_id: str = "ck_1") -> None:
        self.checkout_id = checkout_id
        self.initiations: list[tuple[str, Decimal, str]] = []
        self.status_calls: list[str] = []
        self.statuses: dict[str, ProviderPaymentStatus] = {}
        self.initiate_error: Exception | None = None
        self.status_error: Exception | None = None
        self.checkout_links: list[tuple[Decimal, str, str | None]] = []
        self.checkout_error: Exception | None = None

    async def initiate(self, phone: str, amount: Decimal, narrative: str) -> PaymentInitiation:
        self.initiations.append((phone, amount, narrative))
        if self.initiate_error is not None:
            raise self.initiate_error
        return PaymentInitiation(checkout_id=self.checkout_id, status="PENDING", message="STK push sent")

    async def status(self, checkout_id: str) -> ProviderPaymentStatus:
        self.status_calls.append(checkout_id)
        if self.status_error is not None:
            raise self.status_error
        return self.statuses.get(checkout_id, ProviderPaymentStatus(checkout_id=checkout_id, status="PENDING"))

    async def create_checkout_link(
        self,
        amount: Decimal,
        *,
        currency: str = "KES",
        narrative: str,
        redirect_url: str | None = None,
    ) -> CheckoutLink:
        self.checkout_links.append((amount, narrative, redirect_url))
        if self.checkout_error is not None:
            raise self.checkout_error
        link_id = f"cl_{len(self.checkout_links)}"
        return CheckoutLink(id=link_id, url=f"https://pay.example/{link_id}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 8, 0, tzinfo=UTC))


@pytest.fixture
def config() -> SmartSanConfig:
    return SmartSanConfig(
        provider=ProviderConfig(secret_key="ISSecretKey_test_abc", public_key="ISPubKey_test_abc"),
        poll=PollConfig(initial_delay=0.0, interval=0.0, backoff=1.0, max_attempts=3),
        auto_poll_payments=False,
        offline_sweep_interval=0.0,
    )


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStateStore:
    return InMemoryStateStore(clock=clock)


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub(send_timeout=0.5)


@pytest.fixture
def subscriber(hub: BroadcastHub) -> FakeSubscriber:
    sub = FakeSubscriber()
    hub.register(sub)
    return sub


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


def make_unit(serial: str = "SSN-001", operator_id: str = "op-1", **kwargs: Any) -> Unit:
    return Unit(serial_no=serial, operator_id=operator_id, location="Kibera Block 4", **kwargs)
