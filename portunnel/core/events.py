"""Event Bus and typed event definitions.

The tunnel controller and the inventory watcher publish here; control
planes subscribe and render. Nothing in core knows how events are shown.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, TypeVar

if TYPE_CHECKING:
    from portunnel.capabilities.tunnel.base import FailureKind, TunnelState
    from portunnel.inventory.models import ContainerRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventBus:
    """Simple in-process asyncio pub/sub event bus.

    Publishers call publish(event). Subscribers receive events via
    subscribe() which returns an asyncio.Queue, or iter_events() for
    convenient async iteration.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[asyncio.Queue]] = {}

    def subscribe(self, event_type: type[T]) -> asyncio.Queue[T]:
        """Subscribe to events of a specific type. Returns a Queue."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(event_type, []).append(queue)
        return queue

    def unsubscribe(self, event_type: type[T], queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(event_type, [])
        if queue in queues:
            queues.remove(queue)

    def subscriber_count(self, event_type: type) -> int:
        return len(self._subscribers.get(event_type, []))

    def publish(self, event: object) -> None:
        """Publish an event to all subscribers of its type."""
        for queue in self._subscribers.get(type(event), []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event queue full, dropping %s", type(event).__name__)

    async def iter_events(self, event_type: type[T]) -> AsyncIterator[T]:
        """Async iterator for events of a specific type."""
        queue = self.subscribe(event_type)
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(event_type, queue)


# ---------------------------------------------------------------------------
# Event level: how loudly a control plane should surface an event
# ---------------------------------------------------------------------------

class EventLevel(Enum):
    PROGRESS = "progress"   # intermediate transitions (starting, polling)
    NOTIFY = "notify"       # terminal outcomes the user must see


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TunnelStateChangedEvent:
    """A tunnel session moved to a new state."""
    session_name: str
    port: int
    state: TunnelState
    url: str | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None
    level: EventLevel = EventLevel.PROGRESS


@dataclass(frozen=True)
class TunnelNotificationEvent:
    """Single human-readable message for a terminal tunnel outcome."""
    session_name: str
    text: str
    success: bool
    level: EventLevel = EventLevel.NOTIFY


@dataclass(frozen=True)
class ContainersChangedEvent:
    """The exposable-container inventory was re-listed."""
    containers: tuple[ContainerRecord, ...]
