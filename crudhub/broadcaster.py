"""Fan-out of record mutation events to connected listeners."""

from __future__ import annotations

import asyncio
import logging
import secrets
import threading
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger("crudhub.broadcaster")

USER_ADDED = "UserAdded"
USER_UPDATED = "UserUpdated"
USER_DELETED = "UserDeleted"
DATABASE_RESET = "DatabaseReset"
CONNECTED = "Connected"

CONNECTED_MESSAGE = "Connected to the user event stream"
DEFAULT_QUEUE_SIZE = 100


@dataclass(frozen=True)
class Event:
    """A named notification delivered to every listener."""

    name: str
    sequence: int
    payload: Any
    emitted_at: datetime

    def to_message(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "sequence": self.sequence,
            "payload": self.payload,
            "emittedAt": self.emitted_at.isoformat(),
        }


class Listener(Protocol):
    async def send(self, event: Event) -> None:
        ...


@dataclass
class _Subscription:
    handle: str
    listener: Listener
    queue: "asyncio.Queue[Event]"
    loop: asyncio.AbstractEventLoop
    task: Optional["asyncio.Task[None]"] = None


class Broadcaster:
    """Track connected listeners and push events to each of them.

    Every listener owns a bounded queue drained by its own delivery task, so a
    slow or broken connection never holds up the publisher or the other
    listeners. Delivery is at-most-once: events that do not fit in a
    listener's queue are dropped for that listener, and a listener whose send
    fails is disconnected.
    """

    def __init__(self, *, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        if queue_size < 1:
            raise ValueError("Listener queue size must be at least 1")
        self._queue_size = queue_size
        self._subscriptions: Dict[str, _Subscription] = {}
        self._sequence = 0
        self._lock = threading.Lock()

    @property
    def last_sequence(self) -> int:
        with self._lock:
            return self._sequence

    def listener_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    async def connect(self, listener: Listener) -> str:
        """Register ``listener`` and queue its ``Connected`` acknowledgement."""

        loop = asyncio.get_running_loop()
        handle = secrets.token_urlsafe(16)
        subscription = _Subscription(
            handle=handle,
            listener=listener,
            queue=asyncio.Queue(maxsize=self._queue_size),
            loop=loop,
        )

        with self._lock:
            # The acknowledgement carries the last committed sequence so the
            # listener knows which events it has missed.
            subscription.queue.put_nowait(
                Event(CONNECTED, self._sequence, CONNECTED_MESSAGE, _utcnow())
            )
            self._subscriptions[handle] = subscription

        subscription.task = loop.create_task(self._deliver(subscription))
        logger.info("Listener %s connected", handle)
        return handle

    def disconnect(self, handle: str) -> bool:
        """Remove a listener. Returns ``False`` if it was already gone."""

        subscription = self._remove(handle)
        if subscription is None:
            return False

        task = subscription.task
        if task is not None and not task.done():
            with suppress(RuntimeError):
                subscription.loop.call_soon_threadsafe(task.cancel)
        logger.info("Listener %s disconnected", handle)
        return True

    def close(self) -> None:
        """Disconnect every listener."""

        with self._lock:
            handles = list(self._subscriptions)
        for handle in handles:
            self.disconnect(handle)

    def publish(self, name: str, payload: Any = None) -> Event:
        """Hand ``payload`` to every connected listener without waiting.

        Safe to call from any thread. Events are queued in the order this
        method is called.
        """

        with self._lock:
            self._sequence += 1
            event = Event(name, self._sequence, payload, _utcnow())
            targets: List[_Subscription] = list(self._subscriptions.values())
            for subscription in targets:
                try:
                    subscription.loop.call_soon_threadsafe(self._offer, subscription, event)
                except RuntimeError:
                    logger.warning(
                        "Listener %s has no running event loop; dropping %s #%s",
                        subscription.handle,
                        event.name,
                        event.sequence,
                    )

        logger.debug("Published %s #%s to %d listener(s)", name, event.sequence, len(targets))
        return event

    def _offer(self, subscription: _Subscription, event: Event) -> None:
        with self._lock:
            if self._subscriptions.get(subscription.handle) is not subscription:
                return
        try:
            subscription.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Listener %s is not keeping up; dropping %s #%s",
                subscription.handle,
                event.name,
                event.sequence,
            )

    async def _deliver(self, subscription: _Subscription) -> None:
        while True:
            event = await subscription.queue.get()
            try:
                await subscription.listener.send(event)
            except Exception as exc:
                logger.warning(
                    "Failed to deliver %s #%s to listener %s: %s",
                    event.name,
                    event.sequence,
                    subscription.handle,
                    exc,
                )
                if self._remove(subscription.handle) is not None:
                    logger.info("Listener %s disconnected after a failed delivery", subscription.handle)
                return

    def _remove(self, handle: str) -> Optional[_Subscription]:
        with self._lock:
            return self._subscriptions.pop(handle, None)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "Broadcaster",
    "CONNECTED",
    "DATABASE_RESET",
    "Event",
    "Listener",
    "USER_ADDED",
    "USER_DELETED",
    "USER_UPDATED",
]
