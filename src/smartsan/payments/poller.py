"""Background payment status polling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from smartsan.config import PollConfig
from smartsan.exceptions import PaymentProviderUnavailableError

_logger = logging.getLogger(__name__)

PollCheck = Callable[[str], Awaitable[bool]]
"""Coroutine taking a checkout id and returning ``True`` once polling can stop."""


class PaymentPoller:
    """One cancellable polling task per checkout id.

    Each task sleeps according to :meth:`PollConfig.delay_for`, calls *check*
    and stops as soon as the check reports completion, the attempt ceiling
    is reached, or the task is cancelled.  Provider outages
    (:class:`PaymentProviderUnavailableError`) count as an attempt and are
    retried on the next tick.
    """

    def __init__(
        self,
        check: PollCheck,
        config: PollConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._check = check
        self._config = config
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def active(self) -> frozenset[str]:
        """Checkout ids with a live polling task."""
        return frozenset(cid for cid, task in self._tasks.items() if not task.done())

    def start(self, checkout_id: str) -> asyncio.Task[None]:
        """Start polling *checkout_id*; returns the existing task if one is live."""
        existing = self._tasks.get(checkout_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.get_running_loop().create_task(self._run(checkout_id), name=f"payment-poll:{checkout_id}")
        self._tasks[checkout_id] = task
        _logger.debug("Payment poll started checkout=%s", checkout_id)
        return task

    def cancel(self, checkout_id: str) -> bool:
        """Stop polling *checkout_id*. Returns ``True`` if a task was stopped."""
        task = self._tasks.pop(checkout_id, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            # The poll itself resolved the payment; the loop exits on its own.
            return False
        task.cancel()
        _logger.debug("Payment poll cancelled checkout=%s", checkout_id)
        return True

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, checkout_id: str) -> None:
        try:
            for attempt in range(1, self._config.max_attempts + 1):
                await self._sleep(self._config.delay_for(attempt))
                try:
                    done = await self._check(checkout_id)
                except PaymentProviderUnavailableError as exc:
                    _logger.debug(
                        "Payment poll attempt=%d checkout=%s provider unavailable: %s",
                        attempt,
                        checkout_id,
                        exc.reason,
                    )
                    continue
                except Exception:
                    _logger.exception("Payment poll checkout=%s aborted", checkout_id)
                    return
                if done:
                    _logger.debug("Payment poll finished checkout=%s after %d attempts", checkout_id, attempt)
                    return
            _logger.warning(
                "Payment poll gave up checkout=%s after %d attempts; awaiting webhook",
                checkout_id,
                self._config.max_attempts,
            )
        finally:
            if self._tasks.get(checkout_id) is asyncio.current_task():
                del self._tasks[checkout_id]
