# ruff: noqa: S101
from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import (
    InvalidStageTransitionError,
    PermissionDeniedError,
    RequestNotFoundError,
    RequestValidationError,
)
from app.models.request_rules import AssignmentRule
from app.models.users import User
from app.schemas.notifications import RequestNotificationPayload
from app.schemas.requests import RequestCreate, RequestNoteCreate
from app.services.request_events import RequestChangeEvent, RequestEventBus
from app.services.requests import RequestService, sort_requests


async def _create_schema(engine: AsyncEngine) -> None:
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)


class _Harness:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.sent: list[RequestNotificationPayload] = []
        self.events: list[RequestChangeEvent] = []
        self.bus = RequestEventBus()
        self.bus.add_listener(self.events.append)

    def _notify(self, payload: RequestNotificationPayload) -> bool:
        self.sent.append(payload)
        return True

    def service(self, actor: User) -> RequestService:
        return RequestService(self.session, actor=actor, events=self.bus, notify=self._notify)


async def _users(session: AsyncSession) -> dict[str, User]:
    users = {
        "sales": User(id=uuid4(), email="sales@example.com", full_name="Sam Sales"),
        "other_sales": User(id=uuid4(), email="other@example.com", full_name="Oscar Other"),
        "ops": User(id=uuid4(), email="ops@example.com", full_name="Olive Ops", role="operations"),
        "admin": User(id=uuid4(), email="admin@example.com", full_name="Ada Admin", role="admin"),
    }
    session.add_all(users.values())
    await session.commit()
    return users


def _pricing(title: str = "Cedar fence quote") -> RequestCreate:
    return RequestCreate(request_type="pricing", title=title, customer_name="Jordan Lee")


@pytest.mark.asyncio
async def test_create_applies_assignment_rule_without_counting_a_response() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        session.add(AssignmentRule(request_type="pricing", assignee_id=users["admin"].id, priority=1))
        session.add(AssignmentRule(request_type="pricing", assignee_id=users["ops"].id, priority=5))
        await session.commit()
        harness = _Harness(session)

        row = await harness.service(users["sales"]).create_request(_pricing())

        assert row.stage == "new"
        assert row.assigned_to == users["ops"].id
        assert row.assigned_at is not None
        assert row.first_response_at is None
        assert row.sla_target_hours is not None
        assert [event.kind for event in harness.events] == ["created"]
        assert harness.sent == []

        activity = await harness.service(users["sales"]).get_activity(row.id)
        assert {entry.action for entry in activity} == {"created", "auto_assigned"}
    await engine.dispose()


@pytest.mark.asyncio
async def test_assignment_resets_stage_and_stamps_first_response_once() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        row = await harness.service(users["sales"]).create_request(_pricing())
        admin = harness.service(users["admin"])

        assigned = await admin.assign_request(row.id, users["ops"].id)
        first_response = assigned.first_response_at
        assert first_response is not None
        assert harness.sent[-1].type == "assignment"

        opened = await harness.service(users["ops"]).mark_viewed(row.id)
        assert opened.stage == "pending"

        reassigned = await admin.assign_request(row.id, users["admin"].id)
        assert reassigned.stage == "new"
        assert reassigned.first_response_at == first_response
        assert harness.events[-1].previous_assigned_to == users["ops"].id
        # Self-assignment is not announced.
        assert [payload.type for payload in harness.sent] == ["assignment"]

        with pytest.raises(PermissionDeniedError):
            await harness.service(users["sales"]).assign_request(row.id, users["ops"].id)
    await engine.dispose()


@pytest.mark.asyncio
async def test_viewing_by_someone_other_than_assignee_keeps_stage() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        row = await harness.service(users["sales"]).create_request(_pricing())
        await harness.service(users["admin"]).assign_request(row.id, users["ops"].id)

        viewed = await harness.service(users["sales"]).mark_viewed(row.id)

        assert viewed.stage == "new"
        assert harness.events[-1].kind == "viewed"
        seen = await harness.service(users["sales"]).get_view_status([row.id, uuid4()])
        assert seen == {row.id}
    await engine.dispose()


@pytest.mark.asyncio
async def test_stage_rules_and_quotes() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        pricing = await harness.service(users["sales"]).create_request(_pricing())
        support = await harness.service(users["sales"]).create_request(
            RequestCreate(request_type="support", title="Gate latch broken"),
        )
        ops = harness.service(users["ops"])

        with pytest.raises(InvalidStageTransitionError):
            await ops.change_stage(support.id, "completed", quote_status="won")
        with pytest.raises(RequestValidationError):
            await ops.add_quote(support.id, 1200.0)
        with pytest.raises(PermissionDeniedError):
            await harness.service(users["sales"]).change_stage(pricing.id, "pending")

        quoted = await ops.add_quote(pricing.id, 4250.0)
        assert quoted.stage == "completed"
        assert quoted.quote_status == "awaiting"
        assert quoted.quoted_by == users["ops"].id
        assert quoted.completed_at is not None

        won = await ops.change_stage(pricing.id, "completed", quote_status="won")
        assert won.quote_status == "won"
        assert harness.sent[-1].type == "status_change"

        archived = await ops.archive_request(support.id, "duplicate")
        assert archived.stage == "archived"

        archive_entry = next(entry for entry in await ops.get_activity(support.id) if entry.action == "archived")
        assert archive_entry.details == {"from": "new", "to": "archived", "reason": "duplicate"}
        quote_entry = next(entry for entry in await ops.get_activity(pricing.id) if entry.action == "quoted")
        assert quote_entry.details == {"from": "new", "to": "completed", "quoted_price": 4250.0}
    await engine.dispose()


@pytest.mark.asyncio
async def test_outsiders_see_requests_as_missing() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        row = await harness.service(users["sales"]).create_request(_pricing())
        outsider = harness.service(users["other_sales"])

        with pytest.raises(RequestNotFoundError):
            await outsider.get_request(row.id)
        with pytest.raises(RequestNotFoundError):
            await outsider.get_notes(row.id)

        assert await harness.service(users["ops"]).add_watcher(row.id, users["other_sales"].id) is True
        assert (await outsider.get_request(row.id)).id == row.id
        assert await outsider.get_watched_request_ids() == {row.id}
        assert harness.sent[-1].type == "watcher_added"
    await engine.dispose()


@pytest.mark.asyncio
async def test_internal_notes_are_hidden_and_silent() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        sales = harness.service(users["sales"])
        ops = harness.service(users["ops"])
        row = await sales.create_request(_pricing())

        await ops.add_note(row.id, RequestNoteCreate(content="Margin is thin", note_type="internal"))
        await ops.add_note(row.id, RequestNoteCreate(content="Measuring Tuesday"))

        assert [note.content for note in await sales.get_notes(row.id)] == ["Measuring Tuesday"]
        assert len(await harness.service(users["admin"]).get_notes(row.id)) == 2
        assert [payload.type for payload in harness.sent] == ["comment"]

        with pytest.raises(PermissionDeniedError):
            await sales.add_note(row.id, RequestNoteCreate(content="psst", note_type="internal"))
    await engine.dispose()


@pytest.mark.asyncio
async def test_unread_counts_follow_last_view() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        sales = harness.service(users["sales"])
        ops = harness.service(users["ops"])
        admin = harness.service(users["admin"])
        row = await sales.create_request(_pricing())
        quiet = await sales.create_request(_pricing("Picket fence"))

        await sales.add_note(row.id, RequestNoteCreate(content="Own notes never count"))
        await ops.add_note(row.id, RequestNoteCreate(content="Any photos?"))
        await ops.add_note(row.id, RequestNoteCreate(content="Ops only", note_type="internal"))

        assert await sales.get_unread_counts([row.id, quiet.id]) == {row.id: 1}
        assert await admin.get_unread_count(row.id) == 3
        assert await sales.get_unread_counts([]) == {}

        await sales.mark_viewed(row.id)
        assert await sales.get_unread_count(row.id) == 0
    await engine.dispose()


@pytest.mark.asyncio
async def test_pins_toggle_and_sort_ahead() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        sales = harness.service(users["sales"])
        older = await sales.create_request(_pricing("Older"))
        await sales.create_request(_pricing("Newer"))

        assert await sales.toggle_pin(older.id) is True
        pinned = await sales.get_pinned_request_ids()
        assert pinned == {older.id}

        rows = await sales.list_my_requests()
        assert [row.title for row in sort_requests(rows, pinned, "newest")] == ["Older", "Newer"]
        assert [row.title for row in sort_requests(rows, set(), "newest")] == ["Newer", "Older"]

        assert await sales.toggle_pin(older.id) is False
        assert await sales.get_pinned_request_ids() == set()
    await engine.dispose()


@pytest.mark.asyncio
async def test_admin_tables_require_privilege() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)

        with pytest.raises(PermissionDeniedError):
            await harness.service(users["sales"]).list_assignment_rules()
        with pytest.raises(PermissionDeniedError):
            await harness.service(users["sales"]).get_analytics()

        row = await harness.service(users["sales"]).create_request(_pricing())
        analytics = await harness.service(users["admin"]).get_analytics()
        assert analytics.counts_by_stage.get("new") == 1
        assert await harness.service(users["admin"]).auto_assign_request(row.id) is None
    await engine.dispose()


@pytest.mark.parametrize("sort_by", ["newest", "oldest", "updated"])
def test_pinned_rows_lead_for_every_sort(sort_by: str) -> None:
    base = datetime(2026, 3, 1, 9, 0)
    rows = [
        SimpleNamespace(
            id=uuid4(),
            submitted_at=base + timedelta(hours=index),
            updated_at=base + timedelta(hours=10 - index),
        )
        for index in range(6)
    ]
    pinned = {rows[1].id, rows[4].id}

    ordered = sort_requests(rows, pinned, sort_by)

    assert {row.id for row in ordered[:2]} == pinned
    assert not any(row.id in pinned for row in ordered[2:])


@pytest.mark.asyncio
async def test_failing_notification_sink_never_fails_the_change() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        row = await harness.service(users["sales"]).create_request(_pricing())

        def _broken_sink(payload: RequestNotificationPayload) -> bool:
            raise RuntimeError(f"outbox unavailable for {payload.type}")

        admin = RequestService(session, actor=users["admin"], events=harness.bus, notify=_broken_sink)

        assigned = await admin.assign_request(row.id, users["ops"].id)
        assert assigned.assigned_to == users["ops"].id
        note = await admin.add_note(row.id, RequestNoteCreate(content="Site visit booked"))
        assert note.content == "Site visit booked"
        completed = await admin.change_stage(row.id, "completed")
        assert completed.stage == "completed"
        assert [event.kind for event in harness.events][-3:] == ["assigned", "note_added", "stage_changed"]
    await engine.dispose()


@pytest.mark.asyncio
async def test_activity_log_failure_keeps_the_committed_change() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        async with engine.begin() as conn:
            await conn.execute(text("DROP TABLE request_activity_log"))

        row = await harness.service(users["sales"]).create_request(_pricing())
        assert row.title == "Cedar fence quote"
        assert row.stage == "new"

        assigned = await harness.service(users["admin"]).assign_request(row.id, users["ops"].id)
        assert assigned.assigned_to == users["ops"].id
        assert [event.kind for event in harness.events] == ["created", "assigned"]
        assert [payload.type for payload in harness.sent] == ["assignment"]

        stored = await harness.service(users["ops"]).get_request(row.id)
        assert stored.assigned_to == users["ops"].id
    await engine.dispose()


@pytest.mark.asyncio
async def test_badge_queries_degrade_to_empty_on_database_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        harness = _Harness(session)
        sales = harness.service(users["sales"])
        row = await sales.create_request(_pricing())

        async def _failing_exec(*_args: object, **_kwargs: object) -> object:
            raise SQLAlchemyError("database unavailable")

        monkeypatch.setattr(session, "exec", _failing_exec)

        assert await sales.get_unread_counts([row.id]) == {}
        assert await sales.get_view_status([row.id]) == set()
    await engine.dispose()


@pytest.mark.asyncio
async def test_naive_utc_timestamps_round_trip() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_maker() as session:
        users = await _users(session)
        row = await _Harness(session).service(users["sales"]).create_request(_pricing())

    async with session_maker() as session:
        stored = await RequestService(session, actor=users["sales"]).get_request(row.id)
        assert stored.submitted_at.tzinfo is None
        assert stored.submitted_at == row.submitted_at
    await engine.dispose()
