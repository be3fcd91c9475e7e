"""Best-effort fan-out of events to live subscribers."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from smartsan.models.events import BroadcastEvent

_logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    """Structural subscriber interface.

    :class:`aiohttp.web.WebSocketResponse` satisfies it directly; tests use
    small fakes.
    """

    @property
    def closed(self) -> bool: ...

    async def send_str(self, data: str) -> None: ...


class BroadcastHub:
    """Registry of live subscribers with at-most-once, best-effort delivery.

    There is no backlog: a subscriber only receives events published while it
    is registered. A subscriber that is closed, raises, or does not accept a
    message within ``send_timeout`` seconds is dropped from the registry.

    Usage::

        hub = BroadcastHub()
        hub.register(ws)
        await hub.publish(event)
    """

    def __init__(self, *, send_timeout: float = 5.0) -> None:
        self._send_timeout = send_timeout
        self._subscribers: set[Subscriber] = set()

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber: object) -> bool:
        return subscriber in self._subscribers

    def register(self, subscriber: Subscriber) -> None:
        self._subscribers.add(subscriber)
        _logger.debug("Subscriber registered (%d live)", len(self._subscribers))

    def unregister(self, subscriber: Subscriber) -> None:
        """Remove a subscriber. Safe to call twice or for unknown subscribers."""
        if subscriber in self._subscribers:
            self._subscribers.discard(subscriber)
            _logger.debug("Subscriber unregistered (%d live)", len(self._subscribers))

    async def _deliver(self, subscriber: Subscriber, message: str) -> bool:
        if subscriber.closed:
            return False
        try:
            await asyncio.wait_for(subscriber.send_str(message), self._send_timeout)
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.debug("Broadcast delivery failed; dropping subscriber", exc_info=True)
            return False
        return True

    async def publish(self, event: BroadcastEvent) -> int:
        """Deliver *event* to every registered subscriber.

        The event is serialized once. Sends run concurrently against a
        snapshot of the registry, so a slow subscriber costs at most
        ``send_timeout`` and never blocks the others. Never raises.

        Returns
        -------
        int
            Number of subscribers the event was delivered to.
        """
        snapshot = tuple(self._subscribers)
        if not snapshot:
            return 0

        message = event.to_json()
        results = await asyncio.gather(*(self._deliver(sub, message) for sub in snapshot))

        delivered = 0
        for subscriber, ok in zip(snapshot, results, strict=True):
            if ok:
                delivered += 1
            else:
                self.unregister(subscriber)
        _logger.debug("Published %s to %d/%d subscribers", event.type.value, delivered, len(snapshot))
        return delivered

    async def close(self) -> None:
        """Close every subscriber that supports it and clear the registry."""
        snapshot = tuple(self._subscribers)
        self._subscribers.clear()
        for subscriber in snapshot:
            close = getattr(subscriber, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception:
                _logger.debug("Subscriber close failed", exc_info=True)
