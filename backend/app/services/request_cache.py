"""Keyed read cache for request lists and details with scoped invalidation."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any, TypeVar
from uuid import UUID

from app.core.config import settings
from app.core.logging import get_logger
from app.services.request_events import RequestChangeEvent, RequestEventBus

logger = get_logger(__name__)

T = TypeVar("T")
CacheKey = tuple[Hashable, ...]
UNASSIGNED = "unassigned"

# Sub-resources invalidated per event kind. Created notes and attachments are
# appended to their cached lists by the writer, so only activity is dropped.
_DETAIL_SUBKEYS: dict[str, tuple[str, ...]] = {
    "note_added": ("activity",),
    "attachment_added": ("activity",),
    "attachment_deleted": ("attachments", "activity"),
    "watchers_changed": ("watchers",),
    "viewed": (),
}
# Event kinds that never change which rows a list returns or how they render.
_LIST_NEUTRAL_KINDS = frozenset({"watchers_changed", "viewed"})


@dataclass(frozen=True)
class ListScope:
    """Describes which rows a cached list can contain."""

    owner_id: UUID | None = None
    assigned_to: UUID | str | None = None

    def may_contain(self, event: RequestChangeEvent) -> bool:
        if self.owner_id is not None and not event.involves(self.owner_id):
            return False
        if isinstance(self.assigned_to, UUID):
            return self.assigned_to in {event.assigned_to, event.previous_assigned_to}
        if self.assigned_to == UNASSIGNED:
            return event.assigned_to is None or event.previous_assigned_to is None
        return True


@dataclass
class _Entry:
    value: Any
    fetched_at: float
    stale_seconds: float
    scope: ListScope | None = None

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.stale_seconds


def list_key(scope: str, **filters: object) -> CacheKey:
    """Build ('requests', scope, *sorted filters), dropping unset filters."""
    items = tuple(sorted((name, str(value)) for name, value in filters.items() if value is not None))
    return ("requests", scope, *items)


def detail_key(request_id: UUID, *parts: object) -> CacheKey:
    """Build ('request', id, *parts); parts name the sub-resource and the viewer."""
    return ("request", str(request_id), *(str(part) for part in parts))


class RequestQueryCache:
    """Entries expire by age or when a change event can affect them."""

    def __init__(
        self,
        *,
        list_stale_seconds: float | None = None,
        detail_stale_seconds: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.list_stale_seconds = (
            list_stale_seconds if list_stale_seconds is not None else settings.request_list_stale_seconds
        )
        self.detail_stale_seconds = (
            detail_stale_seconds
            if detail_stale_seconds is not None
            else settings.request_detail_stale_seconds
        )
        self.max_entries = max_entries or settings.request_cache_max_entries
        self._clock = clock
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def _default_stale(self, key: CacheKey) -> float:
        return self.list_stale_seconds if key[0] == "requests" else self.detail_stale_seconds

    def _store(self, key: CacheKey, entry: _Entry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def peek(self, key: CacheKey) -> Any | None:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    async def get_or_fetch(
        self,
        key: CacheKey,
        fetch: Callable[[], Awaitable[T]],
        *,
        fresh: bool = False,
        stale_seconds: float | None = None,
        scope: ListScope | None = None,
    ) -> T:
        """Return the cached value unless stale or ``fresh`` forces a refetch."""
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and not fresh and entry.is_fresh(now):
            self._entries.move_to_end(key)
            return entry.value
        value = await fetch()
        self._store(
            key,
            _Entry(
                value=value,
                fetched_at=self._clock(),
                stale_seconds=stale_seconds if stale_seconds is not None else self._default_stale(key),
                scope=scope,
            ),
        )
        return value

    def replace(self, key: CacheKey, value: object) -> None:
        """Write a value the caller already has, e.g. the row a mutation returned."""
        existing = self._entries.get(key)
        self._store(
            key,
            _Entry(
                value=value,
                fetched_at=self._clock(),
                stale_seconds=existing.stale_seconds if existing else self._default_stale(key),
                scope=existing.scope if existing else None,
            ),
        )

    def append(self, key: CacheKey, item: object, *, at_start: bool = False) -> int:
        """Add ``item`` to every cached list under ``key``; returns how many lists grew."""
        grown = 0
        for existing, entry in self._entries.items():
            if existing[: len(key)] == key and isinstance(entry.value, list):
                entry.value = [item, *entry.value] if at_start else [*entry.value, item]
                grown += 1
        return grown

    def invalidate(self, key: CacheKey) -> int:
        """Drop every entry whose key starts with ``key``."""
        doomed = [existing for existing in self._entries if existing[: len(key)] == key]
        for existing in doomed:
            del self._entries[existing]
        return len(doomed)

    def invalidate_lists(self) -> int:
        return self.invalidate(("requests",))

    def clear(self) -> None:
        self._entries.clear()

    def handle_event(self, event: RequestChangeEvent) -> None:
        """Invalidate only what the change can affect."""
        dropped = 0
        subkeys = _DETAIL_SUBKEYS.get(event.kind)
        if subkeys is None:
            dropped += self.invalidate(detail_key(event.request_id))
        else:
            if event.kind in {"note_added", "attachment_added", "attachment_deleted"}:
                dropped += self.invalidate(detail_key(event.request_id, "row"))
            for part in subkeys:
                dropped += self.invalidate(detail_key(event.request_id, part))

        if event.kind not in _LIST_NEUTRAL_KINDS:
            doomed = [
                key
                for key, entry in self._entries.items()
                if key[0] == "requests" and (entry.scope is None or entry.scope.may_contain(event))
            ]
            for key in doomed:
                del self._entries[key]
            dropped += len(doomed)
        logger.debug(
            "request_cache.invalidated",
            extra={"request_id": str(event.request_id), "kind": event.kind, "dropped": dropped},
        )

    def bind(self, bus: RequestEventBus) -> None:
        bus.add_listener(self.handle_event)


request_query_cache = RequestQueryCache()


def get_request_query_cache() -> RequestQueryCache:
    return request_query_cache
