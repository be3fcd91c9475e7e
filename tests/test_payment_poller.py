from __future__ import annotations

import asyncio

import pytest

from smartsan.config import PollConfig
from smartsan.exceptions import PaymentProviderUnavailableError
from smartsan.payments.poller import PaymentPoller


class _Recorder:
    def __init__(self, results: list[bool | Exception]) -> None:
        self._results = list(results)
        self.calls: list[str] = []

    async def __call__(self, checkout_id: str) -> bool:
        self.calls.append(checkout_id)
        result = self._results.pop(0) if self._results else False
        if isinstance(result, Exception):
            raise result
        return result


def _config(**overrides: float) -> PollConfig:
    values: dict = {"initial_delay": 0.0, "interval": 0.0, "backoff": 1.0, "max_attempts": 5}
    values.update(overrides)
    return PollConfig(**values)


def test_delay_schedule_backs_off_and_caps() -> None:
    config = PollConfig(initial_delay=5.0, interval=10.0, backoff=2.0, max_interval=35.0, max_attempts=10)

    assert [config.delay_for(n) for n in range(1, 6)] == [5.0, 10.0, 20.0, 35.0, 35.0]


@pytest.mark.asyncio
async def test_stops_once_check_reports_done() -> None:
    check = _Recorder([False, False, True])
    poller = PaymentPoller(check, _config())

    await poller.start("ck_1")

    assert check.calls == ["ck_1"] * 3
    assert poller.active == frozenset()


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts() -> None:
    check = _Recorder([])
    poller = PaymentPoller(check, _config(max_attempts=4))

    await poller.start("ck_1")

    assert len(check.calls) == 4


@pytest.mark.asyncio
async def test_provider_outage_is_retried() -> None:
    check = _Recorder([PaymentProviderUnavailableError("ck_1", "HTTP 502"), True])
    poller = PaymentPoller(check, _config())

    await poller.start("ck_1")

    assert len(check.calls) == 2


@pytest.mark.asyncio
async def test_unexpected_error_stops_polling() -> None:
    check = _Recorder([RuntimeError("boom"), True])
    poller = PaymentPoller(check, _config())

    await poller.start("ck_1")

    assert len(check.calls) == 1


@pytest.mark.asyncio
async def test_sleeps_follow_schedule() -> None:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    poller = PaymentPoller(
        _Recorder([False, False, True]),
        PollConfig(initial_delay=5.0, interval=10.0, backoff=1.5, max_attempts=10),
        sleep=fake_sleep,
    )

    await poller.start("ck_1")

    assert sleeps == [5.0, 10.0, 15.0]


@pytest.mark.asyncio
async def test_start_is_idempotent_and_cancel_stops_task() -> None:
    poller = PaymentPoller(_Recorder([]), _config(initial_delay=10.0))

    first = poller.start("ck_1")
    second = poller.start("ck_1")

    assert first is second
    assert poller.active == frozenset({"ck_1"})
    assert poller.cancel("ck_1") is True
    with pytest.raises(asyncio.CancelledError):
        await first
    assert poller.active == frozenset()
    assert poller.cancel("ck_1") is False


@pytest.mark.asyncio
async def test_aclose_cancels_everything() -> None:
    poller = PaymentPoller(_Recorder([]), _config(initial_delay=10.0))
    tasks = [poller.start("ck_1"), poller.start("ck_2")]

    await poller.aclose()

    assert all(task.cancelled() for task in tasks)
    assert poller.active == frozenset()
