from __future__ import annotations

import asyncio
import logging
from dataclasses import FrozenInstanceError

import pytest

from portunnel.capabilities.tunnel.base import FailureKind, TunnelState
from portunnel.core.events import (
    ContainersChangedEvent,
    EventBus,
    EventLevel,
    TunnelNotificationEvent,
    TunnelStateChangedEvent,
)


def _state_event(state: TunnelState = TunnelState.POLLING, **kwargs) -> TunnelStateChangedEvent:
    return TunnelStateChangedEvent(session_name="portunnel-8080-abcd1234", port=8080, state=state, **kwargs)


class TestEventBus:
    def test_subscribe_and_publish(self):
        bus = EventBus()
        queue = bus.subscribe(TunnelStateChangedEvent)
        bus.publish(_state_event())
        assert not queue.empty()
        assert queue.get_nowait().state is TunnelState.POLLING

    def test_multiple_subscribers(self):
        bus = EventBus()
        q1 = bus.subscribe(TunnelStateChangedEvent)
        q2 = bus.subscribe(TunnelStateChangedEvent)
        bus.publish(_state_event(TunnelState.STARTING))
        assert q1.get_nowait().state is TunnelState.STARTING
        assert q2.get_nowait().state is TunnelState.STARTING

    def test_publish_no_subscribers(self):
        bus = EventBus()
        # Should not raise
        bus.publish(_state_event())

    def test_publish_different_types_isolated(self):
        bus = EventBus()
        q_state = bus.subscribe(TunnelStateChangedEvent)
        q_notify = bus.subscribe(TunnelNotificationEvent)
        bus.publish(_state_event())
        assert not q_state.empty()
        assert q_notify.empty()

    def test_unsubscribe(self):
        bus = EventBus()
        queue = bus.subscribe(ContainersChangedEvent)
        bus.unsubscribe(ContainersChangedEvent, queue)
        bus.publish(ContainersChangedEvent(containers=()))
        assert queue.empty()

    def test_unsubscribe_unknown_queue(self):
        bus = EventBus()
        other_queue: asyncio.Queue = asyncio.Queue()
        # Should not raise
        bus.unsubscribe(ContainersChangedEvent, other_queue)

    def test_subscriber_count(self):
        bus = EventBus()
        assert bus.subscriber_count(TunnelNotificationEvent) == 0
        queue = bus.subscribe(TunnelNotificationEvent)
        assert bus.subscriber_count(TunnelNotificationEvent) == 1
        bus.unsubscribe(TunnelNotificationEvent, queue)
        assert bus.subscriber_count(TunnelNotificationEvent) == 0

    def test_queue_full_logs_warning(self, caplog):
        bus = EventBus()
        bus.subscribe(TunnelStateChangedEvent)
        # Replace the queue with a size-1 queue
        bus._subscribers[TunnelStateChangedEvent] = [asyncio.Queue(maxsize=1)]
        small_queue = bus._subscribers[TunnelStateChangedEvent][0]

        small_queue.put_nowait(_state_event())  # Fill it
        with caplog.at_level(logging.WARNING):
            bus.publish(_state_event(TunnelState.ACTIVE))  # Should warn, not raise
        assert "queue full" in caplog.text.lower()

    async def test_iter_events(self):
        bus = EventBus()
        received = []

        async def consumer():
            async for ev in bus.iter_events(TunnelStateChangedEvent):
                received.append(ev.state)
                if ev.state.is_terminal:
                    break

        task = asyncio.create_task(consumer())
        await asyncio.sleep(0.01)

        bus.publish(_state_event(TunnelState.POLLING))
        bus.publish(_state_event(TunnelState.ACTIVE, url="https://a.ngrok.app"))
        await task

        assert received == [TunnelState.POLLING, TunnelState.ACTIVE]

    async def test_iter_events_cleanup_on_cancel(self):
        bus = EventBus()

        async def consumer():
            async for _ in bus.iter_events(TunnelNotificationEvent):
                pass

        task = asyncio.create_task(consumer())
        await asyncio.sleep(0.01)

        assert bus.subscriber_count(TunnelNotificationEvent) == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # After cancel, the subscription should be cleaned up
        assert bus.subscriber_count(TunnelNotificationEvent) == 0


class TestEventTypes:
    def test_state_event_defaults(self):
        event = _state_event()
        assert event.level is EventLevel.PROGRESS
        assert event.url is None
        assert event.failure_kind is None

    def test_failed_state_event(self):
        event = _state_event(
            TunnelState.FAILED, error="bad token", failure_kind=FailureKind.RUNTIME,
            level=EventLevel.NOTIFY,
        )
        assert event.failure_kind is FailureKind.RUNTIME
        assert event.level is EventLevel.NOTIFY

    def test_notification_is_notify_level(self):
        event = TunnelNotificationEvent(session_name="s", text="Tunnel ready", success=True)
        assert event.level is EventLevel.NOTIFY

    def test_events_are_frozen(self):
        with pytest.raises(FrozenInstanceError):
            _state_event().state = TunnelState.ACTIVE
