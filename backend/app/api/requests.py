"""Request (ticket) API: lifecycle, collaboration, tracking and the change stream."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sse_starlette.sse import EventSourceResponse

from app.api.deps import USER_DEP, require_privileged_user
from app.core.errors import PermissionDeniedError, RequestNotFoundError, RequestValidationError
from app.db.session import get_session
from app.models.users import User
from app.schemas.common import OkResponse
from app.schemas.requests import (
    AssignmentRuleRead,
    AssignmentRuleUpsert,
    RequestActivityRead,
    RequestAnalyticsRead,
    RequestArchive,
    RequestAssign,
    RequestAttachmentRead,
    RequestCreate,
    RequestIdsQuery,
    RequestIdsRead,
    RequestListItem,
    RequestNoteCreate,
    RequestNoteRead,
    RequestPinToggleResponse,
    RequestQuoteCreate,
    RequestRead,
    RequestSort,
    RequestStage,
    RequestStageUpdate,
    RequestType,
    RequestUpdate,
    RequestWatcherCreate,
    RequestWatcherRead,
    SLADefaultRead,
    SLADefaultUpsert,
    SLAStatus,
    UnreadCountRead,
    UnreadCountsRead,
    UserSummary,
)
from app.services.request_cache import (
    UNASSIGNED,
    ListScope,
    RequestQueryCache,
    detail_key,
    get_request_query_cache,
    list_key,
)
from app.services.request_events import (
    RequestEventBus,
    filter_for_request,
    filter_for_user,
    get_request_event_bus,
)
from app.services.requests import RequestFilters, RequestService, sort_requests
from app.services.storage import AttachmentStorage, get_attachment_storage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.models.request_activity import RequestActivity
    from app.models.request_attachments import RequestAttachment
    from app.models.request_notes import RequestNote
    from app.models.request_rules import AssignmentRule, SLADefault
    from app.models.request_watchers import RequestWatcher
    from app.models.requests import Request as RequestRow

router = APIRouter(prefix="/requests", tags=["requests"])
SESSION_DEP = Depends(get_session)
PRIVILEGED_DEP = Depends(require_privileged_user)
BUS_DEP = Depends(get_request_event_bus)
CACHE_DEP = Depends(get_request_query_cache)
STORAGE_DEP = Depends(get_attachment_storage)
FRESH_QUERY = Query(default=False)
SCOPE_QUERY = Query(default="mine")
SORT_QUERY = Query(default="newest")
STAGE_QUERY = Query(default=None)
TYPE_QUERY = Query(default=None)
ASSIGNED_TO_QUERY = Query(default=None)
SUBMITTER_QUERY = Query(default=None)
SLA_STATUS_QUERY = Query(default=None)
SEARCH_QUERY = Query(default=None, max_length=200)
STREAM_REQUEST_QUERY = Query(default=None)
UPLOAD_FILE = File(...)
UPLOAD_DESCRIPTION = Form(default=None)
STREAM_WAIT_SECONDS = 5
MAX_ATTACHMENT_BYTES = 25 * 1024 * 1024
_RUNTIME_TYPE_REFERENCES = (UUID, User, RequestService, RequestQueryCache, RequestEventBus)


def get_request_service(
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
    events: RequestEventBus = BUS_DEP,
    storage: AttachmentStorage = STORAGE_DEP,
) -> RequestService:
    return RequestService(session, actor=user, events=events, storage=storage)


SERVICE_DEP = Depends(get_request_service)


def _as_read(row: RequestRow, viewer: User) -> RequestRead:
    read = RequestRead.model_validate(row, from_attributes=True)
    if not viewer.is_privileged:
        read.internal_notes = None
    return read


def _note_read(note: RequestNote) -> RequestNoteRead:
    return RequestNoteRead.model_validate(note, from_attributes=True)


def _activity_read(entry: RequestActivity) -> RequestActivityRead:
    return RequestActivityRead.model_validate(entry, from_attributes=True)


def _attachment_read(attachment: RequestAttachment) -> RequestAttachmentRead:
    return RequestAttachmentRead.model_validate(attachment, from_attributes=True)


def _watcher_read(watcher: RequestWatcher, user: User | None) -> RequestWatcherRead:
    read = RequestWatcherRead.model_validate(watcher, from_attributes=True)
    if user is not None:
        read.user = UserSummary(id=user.id, full_name=user.full_name, email=user.email)
    return read


def _rule_read(rule: AssignmentRule) -> AssignmentRuleRead:
    return AssignmentRuleRead.model_validate(rule, from_attributes=True)


def _sla_default_read(row: SLADefault) -> SLADefaultRead:
    return SLADefaultRead.model_validate(row, from_attributes=True)


def _list_scope(scope: str, filters: RequestFilters, user: User) -> ListScope:
    if scope == "mine":
        return ListScope(owner_id=user.id)
    if filters.assigned_to == UNASSIGNED:
        return ListScope(assigned_to=UNASSIGNED)
    if filters.assigned_to:
        try:
            return ListScope(assigned_to=UUID(filters.assigned_to))
        except ValueError:
            return ListScope()
    return ListScope()


def _remember_row(cache: RequestQueryCache, read: RequestRead, user: User) -> RequestRead:
    # The change event already dropped every viewer's copy; keep the actor's fresh one.
    cache.replace(detail_key(read.id, "row", user.id), read)
    return read


@router.get("", response_model=list[RequestListItem])
async def list_requests(
    scope: Literal["mine", "all"] = SCOPE_QUERY,
    stage: RequestStage | None = STAGE_QUERY,
    request_type: RequestType | None = TYPE_QUERY,
    assigned_to: str | None = ASSIGNED_TO_QUERY,
    submitter_id: UUID | None = SUBMITTER_QUERY,
    sla_status: SLAStatus | None = SLA_STATUS_QUERY,
    search: str | None = SEARCH_QUERY,
    sort: RequestSort = SORT_QUERY,
    fresh: bool = FRESH_QUERY,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> list[RequestListItem]:
    """List the caller's requests, or every request for operations staff.

    Pinned requests always come first; each row carries the caller's unread count.
    """
    if scope == "all" and not user.is_privileged:
        raise PermissionDeniedError("Operations or admin role required")
    filters = RequestFilters(
        stage=stage,
        request_type=request_type,
        assigned_to=assigned_to.strip() if assigned_to else None,
        submitter_id=submitter_id,
        sla_status=sla_status,
        search=search.strip() if search and search.strip() else None,
    )
    key = list_key(
        scope,
        owner_id=user.id if scope == "mine" else None,
        stage=filters.stage,
        request_type=filters.request_type,
        assigned_to=filters.assigned_to,
        submitter_id=filters.submitter_id,
        sla_status=filters.sla_status,
        search=filters.search,
    )

    async def fetch() -> list[RequestRead]:
        if scope == "all":
            rows = await service.list_all_requests(filters)
        else:
            rows = await service.list_my_requests(filters)
        return [_as_read(row, user) for row in rows]

    rows = await cache.get_or_fetch(key, fetch, fresh=fresh, scope=_list_scope(scope, filters, user))
    pinned_ids = await service.get_pinned_request_ids()
    unread = await service.get_unread_counts([row.id for row in rows])
    return [
        RequestListItem(
            **row.model_dump(),
            is_pinned=row.id in pinned_ids,
            unread_count=unread.get(row.id, 0),
        )
        for row in sort_requests(rows, pinned_ids, sort)
    ]


@router.post("", response_model=RequestRead, status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: RequestCreate,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    """Submit a new request; the assignment rule for its type applies immediately."""
    row = await service.create_request(payload)
    return _remember_row(cache, _as_read(row, user), user)


@router.get("/stream")
async def stream_request_changes(
    request: Request,
    request_id: UUID | None = STREAM_REQUEST_QUERY,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    bus: RequestEventBus = BUS_DEP,
) -> EventSourceResponse:
    """Stream change events for the caller's requests (or one request) over server-sent events."""
    if request_id is not None:
        await service.get_request(request_id)
        accepts = filter_for_request(request_id)
    else:
        accepts = filter_for_user(user.id, include_all=user.is_privileged)

    async def event_generator() -> AsyncIterator[dict[str, str]]:
        async with bus.subscribe(accepts) as queue:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=STREAM_WAIT_SECONDS)
                except TimeoutError:
                    continue
                yield {"event": "request", "data": json.dumps(event.to_message())}

    return EventSourceResponse(event_generator(), ping=15)


@router.get("/pinned", response_model=RequestIdsRead)
async def list_pinned_requests(service: RequestService = SERVICE_DEP) -> RequestIdsRead:
    return RequestIdsRead(request_ids=sorted(await service.get_pinned_request_ids(), key=str))


@router.get("/watched", response_model=RequestIdsRead)
async def list_watched_requests(service: RequestService = SERVICE_DEP) -> RequestIdsRead:
    return RequestIdsRead(request_ids=sorted(await service.get_watched_request_ids(), key=str))


@router.post("/unread-counts", response_model=UnreadCountsRead)
async def get_unread_counts(
    payload: RequestIdsQuery,
    service: RequestService = SERVICE_DEP,
) -> UnreadCountsRead:
    """Unread note counts for many requests at once; requests with none are omitted."""
    counts = await service.get_unread_counts(payload.request_ids)
    return UnreadCountsRead(counts={str(request_id): count for request_id, count in counts.items()})


@router.post("/view-status", response_model=RequestIdsRead)
async def get_view_status(
    payload: RequestIdsQuery,
    service: RequestService = SERVICE_DEP,
) -> RequestIdsRead:
    """Which of the given requests the caller has opened at least once."""
    viewed = await service.get_view_status(payload.request_ids)
    return RequestIdsRead(request_ids=[request_id for request_id in payload.request_ids if request_id in viewed])


@router.get("/analytics", response_model=RequestAnalyticsRead)
async def get_request_analytics(
    _user: User = PRIVILEGED_DEP,
    service: RequestService = SERVICE_DEP,
) -> RequestAnalyticsRead:
    analytics = await service.get_analytics()
    return RequestAnalyticsRead(
        counts_by_stage=analytics.counts_by_stage,
        average_response_hours=round(analytics.average_response_hours, 2),
        sla_compliance=round(analytics.sla_compliance, 1),
    )


@router.get("/assignment-rules", response_model=list[AssignmentRuleRead])
async def list_assignment_rules(
    _user: User = PRIVILEGED_DEP,
    service: RequestService = SERVICE_DEP,
) -> list[AssignmentRuleRead]:
    return [_rule_read(rule) for rule in await service.list_assignment_rules()]


@router.put("/assignment-rules", response_model=AssignmentRuleRead)
async def upsert_assignment_rule(
    payload: AssignmentRuleUpsert,
    _user: User = PRIVILEGED_DEP,
    service: RequestService = SERVICE_DEP,
) -> AssignmentRuleRead:
    return _rule_read(await service.upsert_assignment_rule(payload))


@router.get("/sla-defaults", response_model=list[SLADefaultRead])
async def list_sla_defaults(service: RequestService = SERVICE_DEP) -> list[SLADefaultRead]:
    return [_sla_default_read(row) for row in await service.list_sla_defaults()]


@router.put("/sla-defaults", response_model=SLADefaultRead)
async def upsert_sla_default(
    payload: SLADefaultUpsert,
    _user: User = PRIVILEGED_DEP,
    service: RequestService = SERVICE_DEP,
) -> SLADefaultRead:
    return _sla_default_read(await service.upsert_sla_default(payload))


@router.delete("/attachments/{attachment_id}", response_model=OkResponse)
async def delete_attachment(
    attachment_id: UUID,
    service: RequestService = SERVICE_DEP,
) -> OkResponse:
    """Remove an attachment; the uploader or operations staff only."""
    await service.delete_attachment(attachment_id)
    return OkResponse()


@router.get("/{request_id}", response_model=RequestRead)
async def get_request(
    request_id: UUID,
    fresh: bool = FRESH_QUERY,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    async def fetch() -> RequestRead:
        return _as_read(await service.get_request(request_id), user)

    return await cache.get_or_fetch(detail_key(request_id, "row", user.id), fetch, fresh=fresh)


@router.patch("/{request_id}", response_model=RequestRead)
async def update_request(
    request_id: UUID,
    payload: RequestUpdate,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    row = await service.update_request(request_id, payload)
    return _remember_row(cache, _as_read(row, user), user)


@router.post("/{request_id}/assign", response_model=RequestRead)
async def assign_request(
    request_id: UUID,
    payload: RequestAssign,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    """Assign (or reassign) the request; the stage resets to 'new'."""
    row = await service.assign_request(request_id, payload.assignee_id)
    return _remember_row(cache, _as_read(row, user), user)


@router.post("/{request_id}/unassign", response_model=RequestRead)
async def unassign_request(
    request_id: UUID,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    row = await service.unassign_request(request_id)
    return _remember_row(cache, _as_read(row, user), user)


@router.post("/{request_id}/auto-assign", response_model=RequestRead)
async def auto_assign_request(
    request_id: UUID,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    """Apply the active assignment rule for the request's type."""
    row = await service.auto_assign_request(request_id)
    if row is None:
        raise RequestValidationError("No active assignment rule for this request type")
    return _remember_row(cache, _as_read(row, user), user)


@router.post("/{request_id}/stage", response_model=RequestRead)
async def change_request_stage(
    request_id: UUID,
    payload: RequestStageUpdate,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    row = await service.change_stage(request_id, payload.stage, quote_status=payload.quote_status)
    return _remember_row(cache, _as_read(row, user), user)


@router.post("/{request_id}/quote", response_model=RequestRead)
async def add_request_quote(
    request_id: UUID,
    payload: RequestQuoteCreate,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    row = await service.add_quote(request_id, payload.quoted_price)
    return _remember_row(cache, _as_read(row, user), user)


@router.post("/{request_id}/archive", response_model=RequestRead)
async def archive_request(
    request_id: UUID,
    payload: RequestArchive,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    row = await service.archive_request(request_id, payload.reason)
    return _remember_row(cache, _as_read(row, user), user)


@router.post("/{request_id}/view", response_model=RequestRead)
async def mark_request_viewed(
    request_id: UUID,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestRead:
    """Record that the caller opened the request; clears its unread badge."""
    row = await service.mark_viewed(request_id)
    return _remember_row(cache, _as_read(row, user), user)


@router.post("/{request_id}/pin", response_model=RequestPinToggleResponse)
async def toggle_request_pin(
    request_id: UUID,
    service: RequestService = SERVICE_DEP,
) -> RequestPinToggleResponse:
    pinned = await service.toggle_pin(request_id)
    return RequestPinToggleResponse(request_id=request_id, pinned=pinned)


@router.get("/{request_id}/unread-count", response_model=UnreadCountRead)
async def get_unread_count(
    request_id: UUID,
    service: RequestService = SERVICE_DEP,
) -> UnreadCountRead:
    await service.get_request(request_id)
    return UnreadCountRead(request_id=request_id, unread_count=await service.get_unread_count(request_id))


@router.get("/{request_id}/notes", response_model=list[RequestNoteRead])
async def list_request_notes(
    request_id: UUID,
    fresh: bool = FRESH_QUERY,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> list[RequestNoteRead]:
    """Notes oldest first; internal notes are visible to operations staff only."""

    async def fetch() -> list[RequestNoteRead]:
        return [_note_read(note) for note in await service.get_notes(request_id)]

    visibility = "internal" if user.is_privileged else "public"
    return await cache.get_or_fetch(detail_key(request_id, "notes", visibility, user.id), fetch, fresh=fresh)


@router.post("/{request_id}/notes", response_model=RequestNoteRead, status_code=status.HTTP_201_CREATED)
async def add_request_note(
    request_id: UUID,
    payload: RequestNoteCreate,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestNoteRead:
    note = _note_read(await service.add_note(request_id, payload))
    if note.note_type == "internal":
        cache.append(detail_key(request_id, "notes", "internal"), note)
    else:
        cache.append(detail_key(request_id, "notes"), note)
    return note


@router.get("/{request_id}/activity", response_model=list[RequestActivityRead])
async def list_request_activity(
    request_id: UUID,
    fresh: bool = FRESH_QUERY,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> list[RequestActivityRead]:
    async def fetch() -> list[RequestActivityRead]:
        return [_activity_read(entry) for entry in await service.get_activity(request_id)]

    return await cache.get_or_fetch(detail_key(request_id, "activity", user.id), fetch, fresh=fresh)


@router.get("/{request_id}/attachments", response_model=list[RequestAttachmentRead])
async def list_request_attachments(
    request_id: UUID,
    fresh: bool = FRESH_QUERY,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> list[RequestAttachmentRead]:
    async def fetch() -> list[RequestAttachmentRead]:
        return [_attachment_read(item) for item in await service.list_attachments(request_id)]

    return await cache.get_or_fetch(detail_key(request_id, "attachments", user.id), fetch, fresh=fresh)


@router.post(
    "/{request_id}/attachments",
    response_model=RequestAttachmentRead,
    status_code=status.HTTP_201_CREATED,
)
async def upload_request_attachment(
    request_id: UUID,
    file: UploadFile = UPLOAD_FILE,
    description: str | None = UPLOAD_DESCRIPTION,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> RequestAttachmentRead:
    """Store an uploaded file and attach it to the request."""
    content = await file.read()
    if not content:
        raise RequestValidationError("Uploaded file is empty")
    if len(content) > MAX_ATTACHMENT_BYTES:
        raise RequestValidationError("Uploaded file exceeds the 25 MB limit")
    attachment = await service.add_attachment(
        request_id,
        file_name=file.filename or "upload",
        content=content,
        mime_type=file.content_type or "application/octet-stream",
        description=description.strip() if description and description.strip() else None,
    )
    read = _attachment_read(attachment)
    cache.append(detail_key(request_id, "attachments"), read, at_start=True)
    return read


@router.get("/{request_id}/watchers", response_model=list[RequestWatcherRead])
async def list_request_watchers(
    request_id: UUID,
    fresh: bool = FRESH_QUERY,
    user: User = USER_DEP,
    service: RequestService = SERVICE_DEP,
    cache: RequestQueryCache = CACHE_DEP,
) -> list[RequestWatcherRead]:
    async def fetch() -> list[RequestWatcherRead]:
        return [_watcher_read(watcher, member) for watcher, member in await service.list_watchers(request_id)]

    return await cache.get_or_fetch(detail_key(request_id, "watchers", user.id), fetch, fresh=fresh)


@router.post("/{request_id}/watchers", response_model=OkResponse)
async def add_request_watcher(
    request_id: UUID,
    payload: RequestWatcherCreate,
    service: RequestService = SERVICE_DEP,
) -> OkResponse:
    """Subscribe a user to the request; adding an existing watcher is a no-op."""
    await service.add_watcher(request_id, payload.user_id)
    return OkResponse()


@router.delete("/{request_id}/watchers/{user_id}", response_model=OkResponse)
async def remove_request_watcher(
    request_id: UUID,
    user_id: UUID,
    service: RequestService = SERVICE_DEP,
) -> OkResponse:
    if not await service.remove_watcher(request_id, user_id):
        raise RequestNotFoundError(f"User {user_id} is not watching request {request_id}")
    return OkResponse()
