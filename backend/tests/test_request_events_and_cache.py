# ruff: noqa: S101
from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from app.services.request_cache import ListScope, RequestQueryCache, detail_key, list_key
from app.services.request_events import (
    RequestChangeEvent,
    RequestEventBus,
    filter_for_request,
    filter_for_user,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _event(kind: str = "updated", **overrides) -> RequestChangeEvent:
    values = {
        "kind": kind,
        "request_id": uuid4(),
        "submitter_id": uuid4(),
        "assigned_to": None,
        "previous_assigned_to": None,
        "stage": "new",
        "actor_id": None,
    }
    values.update(overrides)
    return RequestChangeEvent(**values)


@pytest.mark.asyncio
async def test_subscribers_receive_only_matching_events() -> None:
    bus = RequestEventBus()
    user_id = uuid4()
    mine = _event(submitter_id=user_id)
    other = _event()

    async with bus.subscribe(filter_for_user(user_id)) as queue:
        assert bus.subscriber_count == 1
        bus.publish(other)
        bus.publish(mine)
        received = await asyncio.wait_for(queue.get(), timeout=1)
        assert received is mine
        assert queue.empty()

    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_previous_assignee_still_hears_about_reassignment() -> None:
    bus = RequestEventBus()
    old_assignee = uuid4()
    event = _event("assigned", assigned_to=uuid4(), previous_assigned_to=old_assignee)

    async with bus.subscribe(filter_for_user(old_assignee)) as queue:
        bus.publish(event)
        assert queue.get_nowait() is event


def test_request_filter_and_overflow_drop_events_without_raising() -> None:
    bus = RequestEventBus(queue_size=1)
    target = _event()

    async def _run() -> int:
        async with bus.subscribe(filter_for_request(target.request_id)) as queue:
            bus.publish(target)
            bus.publish(target)
            bus.publish(_event())
            return queue.qsize()

    assert asyncio.run(_run()) == 1


def test_listener_failures_are_contained() -> None:
    bus = RequestEventBus()
    seen: list[RequestChangeEvent] = []

    def _broken(_event: RequestChangeEvent) -> None:
        raise RuntimeError("listener bug")

    bus.add_listener(_broken)
    bus.add_listener(seen.append)
    bus.add_listener(seen.append)
    event = _event()
    bus.publish(event)

    assert seen == [event]


@pytest.mark.asyncio
async def test_cache_serves_fresh_entries_and_refetches_when_stale_or_forced() -> None:
    clock = _Clock()
    cache = RequestQueryCache(list_stale_seconds=30, detail_stale_seconds=60, clock=clock)
    calls = {"count": 0}

    async def fetch() -> list[int]:
        calls["count"] += 1
        return [calls["count"]]

    key = list_key("all", stage="new")
    assert await cache.get_or_fetch(key, fetch) == [1]
    clock.now += 29
    assert await cache.get_or_fetch(key, fetch) == [1]
    clock.now += 2
    assert await cache.get_or_fetch(key, fetch) == [2]
    assert await cache.get_or_fetch(key, fetch, fresh=True) == [3]

    detail = detail_key(uuid4(), "row", "viewer")
    assert await cache.get_or_fetch(detail, fetch) == [4]
    clock.now += 45
    assert await cache.get_or_fetch(detail, fetch) == [4]


@pytest.mark.asyncio
async def test_change_event_invalidates_only_matching_lists_and_that_request() -> None:
    cache = RequestQueryCache(list_stale_seconds=30, detail_stale_seconds=60)
    owner = uuid4()
    stranger = uuid4()
    request_id = uuid4()
    other_request_id = uuid4()

    async def fetch() -> list[str]:
        return ["rows"]

    mine = list_key("mine", owner_id=owner)
    theirs = list_key("mine", owner_id=stranger)
    everything = list_key("all")
    await cache.get_or_fetch(mine, fetch, scope=ListScope(owner_id=owner))
    await cache.get_or_fetch(theirs, fetch, scope=ListScope(owner_id=stranger))
    await cache.get_or_fetch(everything, fetch, scope=ListScope())
    await cache.get_or_fetch(detail_key(request_id, "row", owner), fetch)
    await cache.get_or_fetch(detail_key(other_request_id, "row", owner), fetch)

    cache.handle_event(_event("stage_changed", request_id=request_id, submitter_id=owner))

    assert mine not in cache
    assert everything not in cache
    assert theirs in cache
    assert detail_key(request_id, "row", owner) not in cache
    assert detail_key(other_request_id, "row", owner) in cache


@pytest.mark.asyncio
async def test_new_note_appends_to_cached_lists_and_keeps_them() -> None:
    cache = RequestQueryCache()
    bus = RequestEventBus()
    cache.bind(bus)
    request_id = uuid4()

    async def fetch() -> list[str]:
        return ["first"]

    public_key = detail_key(request_id, "notes", "public", "viewer-a")
    internal_key = detail_key(request_id, "notes", "internal", "viewer-b")
    activity_key = detail_key(request_id, "activity", "viewer-a")
    await cache.get_or_fetch(public_key, fetch)
    await cache.get_or_fetch(internal_key, fetch)
    await cache.get_or_fetch(activity_key, fetch)

    assert cache.append(detail_key(request_id, "notes", "internal"), "secret") == 1
    assert cache.append(detail_key(request_id, "notes"), "hello") == 2
    bus.publish(_event("note_added", request_id=request_id))

    assert cache.peek(public_key) == ["first", "hello"]
    assert cache.peek(internal_key) == ["first", "secret", "hello"]
    assert activity_key not in cache


def test_unassigned_scope_only_reacts_to_assignment_changes() -> None:
    scope = ListScope(assigned_to="unassigned")
    assert scope.may_contain(_event("updated")) is True
    assert scope.may_contain(_event("assigned", assigned_to=uuid4(), previous_assigned_to=uuid4())) is False
    assert scope.may_contain(_event("unassigned", previous_assigned_to=uuid4())) is True


def test_cache_evicts_least_recently_used_entries() -> None:
    cache = RequestQueryCache(max_entries=2)
    cache.replace(("request", "a"), 1)
    cache.replace(("request", "b"), 2)
    cache.peek(("request", "a"))
    cache.replace(("request", "c"), 3)
    assert len(cache) == 2
    assert ("request", "c") in cache
