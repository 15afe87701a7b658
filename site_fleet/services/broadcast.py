"""Fan-out of engine snapshots and events to observers."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, List, Optional

import structlog

from site_fleet.enterprise.core import EngineEvent, EventType, WorldSnapshot

logger = structlog.get_logger(__name__)


class SnapshotSubscriber:
    """Observer of engine output.

    Callbacks run on the engine's tick; implementations must return quickly
    and must not mutate what they receive.
    """

    wants_snapshots: bool = True

    def on_snapshot(self, snapshot: WorldSnapshot) -> None:
        return None

    def on_event(self, event: EngineEvent) -> None:
        return None


@dataclass
class _Registration:
    subscriber: SnapshotSubscriber
    failures: int = 0


class SnapshotBroadcaster:
    """Delivers each published batch to every subscriber, isolating failures.

    A subscriber that raises on ``max_failures`` consecutive publications is
    unsubscribed.
    """

    def __init__(self, max_failures: int = 3) -> None:
        self.max_failures = max_failures
        self._registrations: List[_Registration] = []

    def subscribe(self, subscriber: SnapshotSubscriber) -> SnapshotSubscriber:
        if not any(reg.subscriber is subscriber for reg in self._registrations):
            self._registrations.append(_Registration(subscriber))
        return subscriber

    def unsubscribe(self, subscriber: SnapshotSubscriber) -> None:
        self._registrations = [reg for reg in self._registrations if reg.subscriber is not subscriber]

    @property
    def wants_snapshots(self) -> bool:
        return any(reg.subscriber.wants_snapshots for reg in self._registrations)

    def __len__(self) -> int:
        return len(self._registrations)

    def publish(self, snapshot: Optional[WorldSnapshot], events: List[EngineEvent]) -> None:
        for registration in list(self._registrations):
            subscriber = registration.subscriber
            try:
                for event in events:
                    subscriber.on_event(event)
                if snapshot is not None and subscriber.wants_snapshots:
                    subscriber.on_snapshot(snapshot)
            except Exception:
                registration.failures += 1
                logger.warning(
                    "subscriber_failed",
                    subscriber=type(subscriber).__name__,
                    failures=registration.failures,
                    exc_info=True,
                )
                if registration.failures >= self.max_failures:
                    self.unsubscribe(subscriber)
                    logger.warning("subscriber_dropped", subscriber=type(subscriber).__name__)
            else:
                registration.failures = 0


@dataclass
class StreamMessage:
    """Envelope pushed to streaming clients."""

    kind: str
    payload: Any
    sent_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "payload": self.payload, "sent_at": self.sent_at.isoformat()}


class QueueSubscriber(SnapshotSubscriber):
    """Buffers output in an :class:`asyncio.Queue` for a streaming client.

    When the client falls behind the oldest message is discarded so the tick
    never waits on a slow consumer.
    """

    def __init__(self, maxsize: int = 256, include_snapshots: bool = True) -> None:
        self.queue: "asyncio.Queue[StreamMessage]" = asyncio.Queue(maxsize=maxsize)
        self.wants_snapshots = include_snapshots
        self.dropped = 0

    def push(self, kind: str, payload: Any) -> None:
        message = StreamMessage(kind=kind, payload=payload)
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(message)

    def on_snapshot(self, snapshot: WorldSnapshot) -> None:
        self.push("snapshot", snapshot.model_dump(mode="json"))

    def on_event(self, event: EngineEvent) -> None:
        self.push("event", event.model_dump(mode="json"))

    async def get(self) -> StreamMessage:
        return await self.queue.get()

    def drain(self) -> List[StreamMessage]:
        messages = []
        while not self.queue.empty():
            messages.append(self.queue.get_nowait())
        return messages


class EventLog(SnapshotSubscriber):
    """Ring buffer of the most recent engine events."""

    wants_snapshots = False

    def __init__(self, maxlen: int = 500) -> None:
        self._events: Deque[EngineEvent] = deque(maxlen=maxlen)

    def on_event(self, event: EngineEvent) -> None:
        self._events.append(event)

    def recent(self, limit: int = 50, event_type: Optional[EventType] = None) -> List[EngineEvent]:
        """Newest first."""

        events = [event for event in reversed(self._events) if event_type is None or event.type == event_type]
        return events[:limit]

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
