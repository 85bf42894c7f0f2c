"""In-process pub/sub of request change events, scoped by request id."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal
from uuid import UUID

from app.core.logging import get_logger
from app.core.time import utcnow

logger = get_logger(__name__)

RequestChangeKind = Literal[
    "created",
    "updated",
    "assigned",
    "unassigned",
    "stage_changed",
    "note_added",
    "attachment_added",
    "attachment_deleted",
    "watchers_changed",
    "viewed",
]
SUBSCRIBER_QUEUE_SIZE = 256


@dataclass(frozen=True)
class RequestChangeEvent:
    """A committed change to one request; carries enough to scope invalidation."""

    kind: RequestChangeKind
    request_id: UUID
    submitter_id: UUID | None = None
    assigned_to: UUID | None = None
    previous_assigned_to: UUID | None = None
    stage: str | None = None
    actor_id: UUID | None = None
    occurred_at: datetime = field(default_factory=utcnow)

    def involves(self, user_id: UUID) -> bool:
        return user_id in {self.submitter_id, self.assigned_to, self.previous_assigned_to}

    def to_message(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "request_id": str(self.request_id),
            "submitter_id": str(self.submitter_id) if self.submitter_id else None,
            "assigned_to": str(self.assigned_to) if self.assigned_to else None,
            "stage": self.stage,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "occurred_at": self.occurred_at.isoformat(),
        }


EventFilter = Callable[[RequestChangeEvent], bool]
EventListener = Callable[[RequestChangeEvent], None]


@dataclass
class _Subscription:
    queue: asyncio.Queue[RequestChangeEvent]
    accepts: EventFilter


def filter_for_user(user_id: UUID, *, include_all: bool = False) -> EventFilter:
    """Events about requests the user submitted or is (or was) assigned to."""
    if include_all:
        return lambda _event: True
    return lambda event: event.involves(user_id)


def filter_for_request(request_id: UUID) -> EventFilter:
    return lambda event: event.request_id == request_id


class RequestEventBus:
    """Fan out change events to synchronous listeners and bounded async queues."""

    def __init__(self, *, queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscriptions: list[_Subscription] = []
        self._listeners: list[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: RequestChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "request_events.listener_failed",
                    extra={"request_id": str(event.request_id), "kind": event.kind},
                )
        for subscription in list(self._subscriptions):
            if not subscription.accepts(event):
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                # Slow consumers lose events; they refetch on reconnect.
                logger.warning(
                    "request_events.subscriber_overflow",
                    extra={"request_id": str(event.request_id), "kind": event.kind},
                )

    @asynccontextmanager
    async def subscribe(
        self,
        accepts: EventFilter | None = None,
    ) -> AsyncIterator[asyncio.Queue[RequestChangeEvent]]:
        subscription = _Subscription(
            queue=asyncio.Queue(maxsize=self._queue_size),
            accepts=accepts or (lambda _event: True),
        )
        self._subscriptions.append(subscription)
        try:
            yield subscription.queue
        finally:
            self._subscriptions.remove(subscription)


request_event_bus = RequestEventBus()


def get_request_event_bus() -> RequestEventBus:
    return request_event_bus
