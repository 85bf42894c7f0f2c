"""Request command handlers: lifecycle, collaboration, tracking and admin reads.

Every mutation follows the same order. The primary write (including derived
assignment, stage, SLA and priority columns) commits in one transaction and
propagates failures. Activity logging, change events and notification enqueue
run afterwards and never fail the caller.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import UUID

from sqlalchemy import delete, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col, select

from app.core.errors import (
    InvalidStageTransitionError,
    PermissionDeniedError,
    RequestNotFoundError,
    RequestValidationError,
)
from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.request_activity import RequestActivity
from app.models.request_attachments import RequestAttachment
from app.models.request_notes import RequestNote
from app.models.request_rules import AssignmentRule, SLADefault
from app.models.request_views import RequestPin, RequestView
from app.models.request_watchers import RequestWatcher
from app.models.requests import Request
from app.models.users import User
from app.services.notifications.payloads import (
    build_assignment_notification,
    build_attachment_notification,
    build_comment_notification,
    build_status_change_notification,
    build_watcher_added_notification,
)
from app.services.notifications.queue import enqueue_request_notification
from app.services.request_events import RequestChangeEvent, RequestEventBus, request_event_bus
from app.services.request_lifecycle import (
    AUTO_VIEW_REASON,
    stage_after_assignment,
    stage_after_view,
    validate_stage_change,
)
from app.services.request_sla import CLOSED_STAGES, apply_derived_fields
from app.services.storage import AttachmentStorage, build_object_path, classify_file_type

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.schemas.notifications import RequestNotificationPayload
    from app.schemas.requests import (
        AssignmentRuleUpsert,
        RequestCreate,
        RequestNoteCreate,
        RequestUpdate,
        SLADefaultUpsert,
    )

logger = get_logger(__name__)

UNASSIGNED_FILTER = "unassigned"
QUOTABLE_REQUEST_TYPE = "pricing"

RowT = TypeVar("RowT", bound=Any)
NotificationSink = Callable[["RequestNotificationPayload"], bool]


@dataclass(frozen=True)
class RequestFilters:
    """List filters; ``assigned_to`` accepts a user id or ``"unassigned"``."""

    stage: str | None = None
    request_type: str | None = None
    assigned_to: str | None = None
    submitter_id: UUID | None = None
    sla_status: str | None = None
    search: str | None = None


@dataclass(frozen=True)
class RequestAnalytics:
    counts_by_stage: dict[str, int]
    average_response_hours: float
    sla_compliance: float


def sort_requests(
    requests: Sequence[RowT],
    pinned_ids: set[UUID],
    sort_by: str = "newest",
) -> list[RowT]:
    """Order by the chosen criterion with every pinned request ahead of every unpinned one."""
    if sort_by == "oldest":
        ordered = sorted(requests, key=lambda row: row.submitted_at)
    elif sort_by == "updated":
        ordered = sorted(requests, key=lambda row: row.updated_at or row.submitted_at, reverse=True)
    else:
        ordered = sorted(requests, key=lambda row: row.submitted_at, reverse=True)
    # sorted() is stable, so the criterion order survives within each pin group.
    return sorted(ordered, key=lambda row: row.id not in pinned_ids)


def _search_clause(search: str) -> Any:
    pattern = f"%{search.strip()}%"
    return or_(
        col(Request.customer_name).ilike(pattern),
        col(Request.project_number).ilike(pattern),
        col(Request.title).ilike(pattern),
    )


class RequestService:
    """Command handlers scoped to one session and one acting user."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        actor: User,
        events: RequestEventBus | None = None,
        notify: NotificationSink | None = None,
        storage: AttachmentStorage | None = None,
    ) -> None:
        self.session = session
        self.actor = actor
        self.events = events or request_event_bus
        self.notify = notify or enqueue_request_notification
        self.storage = storage

    @property
    def actor_name(self) -> str:
        return self.actor.full_name or "Someone"

    # Shared helpers

    async def _require_request(self, request_id: UUID) -> Request:
        row = await Request.objects.by_id(request_id).first(self.session)
        if row is None:
            raise RequestNotFoundError(f"Request {request_id} not found")
        return row

    async def _can_read(self, row: Request) -> bool:
        if self.actor.is_privileged or self.actor.id in {row.submitter_id, row.assigned_to}:
            return True
        watcher = await RequestWatcher.objects.filter_by(
            request_id=row.id,
            user_id=self.actor.id,
        ).first(self.session)
        return watcher is not None

    async def _require_readable(self, request_id: UUID) -> Request:
        row = await self._require_request(request_id)
        if not await self._can_read(row):
            # Hidden rows look missing rather than forbidden.
            raise RequestNotFoundError(f"Request {request_id} not found")
        return row

    async def _require_operable(self, request_id: UUID) -> Request:
        row = await self._require_readable(request_id)
        if not (self.actor.is_privileged or row.assigned_to == self.actor.id):
            raise PermissionDeniedError("Only operations staff or the assignee may change this request")
        return row

    def _require_privileged(self) -> None:
        if not self.actor.is_privileged:
            raise PermissionDeniedError("Operations or admin role required")

    async def _sla_default(self, request_type: str) -> SLADefault | None:
        return await SLADefault.objects.filter_by(request_type=request_type).first(self.session)

    async def _refresh_derived(self, row: Request, *, now: datetime) -> None:
        apply_derived_fields(row, sla_default=await self._sla_default(row.request_type), now=now)

    async def _commit_row(self, row: Any) -> None:
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)

    async def log_activity(
        self,
        request_id: UUID,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append an audit entry; failures are logged and never raised."""
        try:
            self.session.add(
                RequestActivity(
                    request_id=request_id,
                    user_id=self.actor.id,
                    action=action,
                    details=details,
                ),
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.warning(
                "requests.activity.log_failed",
                extra={"request_id": str(request_id), "action": action, "error": str(exc)},
            )
            await self._reload_after_rollback()

    async def _reload_after_rollback(self) -> None:
        # A rollback expires every loaded row, including the one just committed.
        for instance in list(self.session.identity_map.values()):
            await self.session.refresh(instance)

    def _publish(
        self,
        kind: str,
        row: Request,
        *,
        previous_assigned_to: UUID | None = None,
        keep_assignee: bool = True,
    ) -> None:
        self.events.publish(
            RequestChangeEvent(
                kind=kind,  # type: ignore[arg-type]
                request_id=row.id,
                submitter_id=row.submitter_id,
                assigned_to=row.assigned_to,
                previous_assigned_to=row.assigned_to if keep_assignee else previous_assigned_to,
                stage=row.stage,
                actor_id=self.actor.id,
            ),
        )

    def _send(self, payload: RequestNotificationPayload) -> None:
        try:
            self.notify(payload)
        except Exception as exc:
            logger.warning(
                "requests.notification.enqueue_failed",
                extra={
                    "request_id": payload.request_id,
                    "notification_type": payload.type,
                    "error": str(exc),
                },
            )

    # Lifecycle

    async def _active_rule(self, request_type: str) -> AssignmentRule | None:
        return await (
            AssignmentRule.objects.filter_by(request_type=request_type, is_active=True)
            .order_by(col(AssignmentRule.priority).desc(), col(AssignmentRule.created_at).asc())
            .first(self.session)
        )

    async def create_request(self, data: RequestCreate) -> Request:
        """Insert a request in stage 'new', applying the assignment rule in the same transaction."""
        now = utcnow()
        row = Request.model_validate(
            {
                **data.model_dump(),
                "submitter_id": self.actor.id,
                "submitted_at": now,
                "stage": "new",
                "created_at": now,
                "updated_at": now,
            },
        )
        rule = await self._active_rule(row.request_type)
        if rule is not None:
            row.assigned_to = rule.assignee_id
            row.assigned_at = now
        await self._refresh_derived(row, now=now)
        await self._commit_row(row)
        logger.info(
            "requests.create.success",
            extra={
                "request_id": str(row.id),
                "request_type": row.request_type,
                "auto_assigned": rule is not None,
            },
        )

        await self.log_activity(row.id, "created", {"request_type": row.request_type})
        if rule is not None:
            await self.log_activity(
                row.id,
                "auto_assigned",
                {"assignee_id": str(rule.assignee_id), "rule_id": str(rule.id), "priority": rule.priority},
            )
        self._publish("created", row)
        return row

    async def list_my_requests(self, filters: RequestFilters | None = None) -> list[Request]:
        """Requests the actor submitted, newest first."""
        filters = filters or RequestFilters()
        statement = select(Request).where(col(Request.submitter_id) == self.actor.id)
        if filters.stage:
            statement = statement.where(col(Request.stage) == filters.stage)
        if filters.request_type:
            statement = statement.where(col(Request.request_type) == filters.request_type)
        if filters.search:
            statement = statement.where(_search_clause(filters.search))
        statement = statement.order_by(col(Request.created_at).desc())
        return list((await self.session.exec(statement)).all())

    async def list_all_requests(self, filters: RequestFilters | None = None) -> list[Request]:
        """Operations view across every request, highest priority first."""
        self._require_privileged()
        filters = filters or RequestFilters()
        statement = select(Request)
        if filters.stage:
            statement = statement.where(col(Request.stage) == filters.stage)
        if filters.request_type:
            statement = statement.where(col(Request.request_type) == filters.request_type)
        if filters.assigned_to == UNASSIGNED_FILTER:
            statement = statement.where(col(Request.assigned_to).is_(None))
        elif filters.assigned_to:
            try:
                assignee_id = UUID(filters.assigned_to)
            except ValueError as exc:
                raise RequestValidationError("assigned_to must be a user id or 'unassigned'") from exc
            statement = statement.where(col(Request.assigned_to) == assignee_id)
        if filters.submitter_id:
            statement = statement.where(col(Request.submitter_id) == filters.submitter_id)
        if filters.sla_status:
            statement = statement.where(col(Request.sla_status) == filters.sla_status)
        if filters.search:
            statement = statement.where(_search_clause(filters.search))
        statement = statement.order_by(col(Request.priority_score).desc(), col(Request.created_at).desc())
        return list((await self.session.exec(statement)).all())

    async def get_request(self, request_id: UUID) -> Request:
        return await self._require_readable(request_id)

    async def update_request(self, request_id: UUID, data: RequestUpdate) -> Request:
        row = await self._require_readable(request_id)
        if not (self.actor.is_privileged or self.actor.id in {row.submitter_id, row.assigned_to}):
            raise PermissionDeniedError("Not allowed to edit this request")
        changes = data.model_dump(exclude_unset=True)
        if "internal_notes" in changes and not self.actor.is_privileged:
            raise PermissionDeniedError("Internal notes are limited to operations staff")
        if "title" in changes and changes["title"] is None:
            raise RequestValidationError("Title cannot be cleared")
        for field_name, value in changes.items():
            setattr(row, field_name, value)
        now = utcnow()
        row.updated_at = now
        await self._refresh_derived(row, now=now)
        await self._commit_row(row)
        await self.log_activity(row.id, "updated", {"fields": sorted(changes)})
        self._publish("updated", row)
        return row

    async def assign_request(self, request_id: UUID, assignee_id: UUID) -> Request:
        """(Re)assign and force stage 'new' until the assignee opens the request."""
        self._require_privileged()
        row = await self._require_request(request_id)
        assignee = await User.objects.by_id(assignee_id).first(self.session)
        if assignee is None:
            raise RequestValidationError(f"Assignee {assignee_id} does not exist")

        previous_assignee = row.assigned_to
        now = utcnow()
        row.assigned_to = assignee_id
        row.assigned_at = now
        row.stage = stage_after_assignment(row.stage)
        if previous_assignee is None and row.first_response_at is None:
            row.first_response_at = now
        row.updated_at = now
        await self._refresh_derived(row, now=now)
        await self._commit_row(row)
        logger.info(
            "requests.assign.success",
            extra={
                "request_id": str(row.id),
                "assignee_id": str(assignee_id),
                "previous_assignee_id": str(previous_assignee) if previous_assignee else None,
            },
        )

        await self.log_activity(row.id, "assigned", {"assignee_id": str(assignee_id)})
        self._publish("assigned", row, previous_assigned_to=previous_assignee, keep_assignee=False)
        if assignee_id != self.actor.id:
            self._send(
                build_assignment_notification(
                    request_id=row.id,
                    request_title=row.title,
                    request_type=row.request_type,
                    urgency=row.urgency or "medium",
                    triggered_by_user_id=self.actor.id,
                    triggered_by_name=self.actor_name,
                    new_assignee_id=assignee_id,
                ),
            )
        return row

    async def unassign_request(self, request_id: UUID) -> Request:
        """Clear the assignee with a plain update; nobody is notified."""
        self._require_privileged()
        row = await self._require_request(request_id)
        previous_assignee = row.assigned_to
        row.assigned_to = None
        row.assigned_at = None
        row.updated_at = utcnow()
        await self._commit_row(row)
        await self.log_activity(
            row.id,
            "unassigned",
            {"previous_assignee_id": str(previous_assignee) if previous_assignee else None},
        )
        self._publish("unassigned", row, previous_assigned_to=previous_assignee, keep_assignee=False)
        return row

    async def auto_assign_request(self, request_id: UUID) -> Request | None:
        """Apply the highest-priority active rule; None when no rule matches."""
        row = await self._require_request(request_id)
        rule = await self._active_rule(row.request_type)
        if rule is None:
            return None
        return await self.assign_request(request_id, rule.assignee_id)

    async def change_stage(
        self,
        request_id: UUID,
        stage: str,
        quote_status: str | None = None,
    ) -> Request:
        row = await self._require_operable(request_id)
        result = validate_stage_change(
            current_stage=row.stage,
            target_stage=stage,
            request_type=row.request_type,
            quote_status=quote_status,
        )
        if not result.ok:
            raise InvalidStageTransitionError(result.reason or "Invalid stage transition")

        old_stage = row.stage
        now = utcnow()
        row.stage = stage
        if result.stamp_completed_at and (old_stage != "completed" or row.completed_at is None):
            row.completed_at = now
        if quote_status is not None:
            row.quote_status = quote_status
        row.updated_at = now
        await self._refresh_derived(row, now=now)
        await self._commit_row(row)

        await self.log_activity(
            row.id,
            "status_changed",
            {"from": old_stage, "to": stage, "quote_status": quote_status},
        )
        self._publish("stage_changed", row)
        self._send(
            build_status_change_notification(
                request_id=row.id,
                request_title=row.title,
                request_type=row.request_type,
                triggered_by_user_id=self.actor.id,
                triggered_by_name=self.actor_name,
                old_status=old_stage,
                new_status=stage,
            ),
        )
        return row

    async def add_quote(self, request_id: UUID, quoted_price: float) -> Request:
        """Record a price on a pricing request, completing it with quote status 'awaiting'."""
        row = await self._require_operable(request_id)
        if row.request_type != QUOTABLE_REQUEST_TYPE:
            raise RequestValidationError("Quotes apply only to pricing requests")
        if quoted_price <= 0:
            raise RequestValidationError("Quoted price must be positive")
        old_stage = row.stage
        now = utcnow()
        row.pricing_quote = quoted_price
        row.quoted_at = now
        row.quoted_by = self.actor.id
        if row.stage != "completed" or row.completed_at is None:
            row.completed_at = now
        row.stage = "completed"
        row.quote_status = "awaiting"
        row.updated_at = now
        await self._refresh_derived(row, now=now)
        await self._commit_row(row)
        await self.log_activity(
            row.id,
            "quoted",
            {"from": old_stage, "to": "completed", "quoted_price": quoted_price},
        )
        self._publish("stage_changed", row)
        return row

    async def archive_request(self, request_id: UUID, reason: str | None = None) -> Request:
        row = await self._require_operable(request_id)
        result = validate_stage_change(
            current_stage=row.stage,
            target_stage="archived",
            request_type=row.request_type,
        )
        if not result.ok:
            raise InvalidStageTransitionError(result.reason or "Invalid stage transition")
        old_stage = row.stage
        now = utcnow()
        row.stage = "archived"
        row.updated_at = now
        await self._refresh_derived(row, now=now)
        await self._commit_row(row)
        await self.log_activity(row.id, "archived", {"from": old_stage, "to": "archived", "reason": reason})
        self._publish("stage_changed", row)
        return row

    # Notes and activity

    async def add_note(self, request_id: UUID, data: RequestNoteCreate) -> RequestNote:
        """Append a note; only plain comments notify, internal notes never do."""
        row = await self._require_readable(request_id)
        if data.note_type == "internal" and not self.actor.is_privileged:
            raise PermissionDeniedError("Internal notes are limited to operations staff")
        now = utcnow()
        note = RequestNote(
            request_id=row.id,
            user_id=self.actor.id,
            note_type=data.note_type,
            content=data.content,
            file_url=data.file_url or None,
            file_name=data.file_name or None,
            file_type=data.file_type or None,
            created_at=now,
        )
        row.updated_at = now
        self.session.add(row)
        await self._commit_row(note)
        await self.session.refresh(row)

        await self.log_activity(row.id, "note_added", {"note_type": data.note_type})
        self._publish("note_added", row)
        if data.note_type == "comment":
            self._send(
                build_comment_notification(
                    request_id=row.id,
                    request_title=row.title,
                    request_type=row.request_type,
                    triggered_by_user_id=self.actor.id,
                    triggered_by_name=self.actor_name,
                    comment=data.content,
                ),
            )
        return note

    async def get_notes(self, request_id: UUID) -> list[RequestNote]:
        """Notes oldest first; internal notes only for privileged readers."""
        await self._require_readable(request_id)
        query = RequestNote.objects.filter_by(request_id=request_id)
        if not self.actor.is_privileged:
            query = query.filter(col(RequestNote.note_type) != "internal")
        return await query.order_by(col(RequestNote.created_at).asc()).all(self.session)

    async def get_activity(self, request_id: UUID) -> list[RequestActivity]:
        await self._require_readable(request_id)
        return await (
            RequestActivity.objects.filter_by(request_id=request_id)
            .order_by(col(RequestActivity.created_at).desc())
            .all(self.session)
        )

    # Attachments

    def _require_storage(self) -> AttachmentStorage:
        if self.storage is None:
            self.storage = AttachmentStorage()
        return self.storage

    async def add_attachment(
        self,
        request_id: UUID,
        *,
        file_name: str,
        content: bytes,
        mime_type: str,
        description: str | None = None,
    ) -> RequestAttachment:
        row = await self._require_readable(request_id)
        storage = self._require_storage()
        file_url = await storage.upload(build_object_path(row.id, file_name), content)
        file_type = classify_file_type(mime_type)
        attachment = RequestAttachment(
            request_id=row.id,
            user_id=self.actor.id,
            file_name=file_name,
            file_url=file_url,
            file_type=file_type,
            file_size=len(content),
            mime_type=mime_type,
            description=description,
        )
        await self._commit_row(attachment)

        await self.log_activity(row.id, "attachment_added", {"file_name": file_name, "file_type": file_type})
        self._publish("attachment_added", row)
        self._send(
            build_attachment_notification(
                request_id=row.id,
                request_title=row.title,
                request_type=row.request_type,
                triggered_by_user_id=self.actor.id,
                triggered_by_name=self.actor_name,
                attachment_name=file_name,
            ),
        )
        return attachment

    async def list_attachments(self, request_id: UUID) -> list[RequestAttachment]:
        await self._require_readable(request_id)
        return await (
            RequestAttachment.objects.filter_by(request_id=request_id)
            .order_by(col(RequestAttachment.uploaded_at).desc())
            .all(self.session)
        )

    async def delete_attachment(self, attachment_id: UUID) -> RequestAttachment:
        """Remove the stored object (best effort) and then the row."""
        attachment = await RequestAttachment.objects.by_id(attachment_id).first(self.session)
        if attachment is None:
            raise RequestNotFoundError(f"Attachment {attachment_id} not found")
        row = await self._require_readable(attachment.request_id)
        if not (self.actor.is_privileged or attachment.user_id == self.actor.id):
            raise PermissionDeniedError("Only the uploader or operations staff may delete attachments")

        storage = self._require_storage()
        try:
            await storage.remove(storage.object_path_from_url(attachment.file_url))
        except (OSError, ValueError) as exc:
            logger.warning(
                "requests.attachment.storage_delete_failed",
                extra={"attachment_id": str(attachment_id), "error": str(exc)},
            )
        await self.session.delete(attachment)
        await self.session.commit()

        await self.log_activity(row.id, "attachment_deleted", {"file_name": attachment.file_name})
        self._publish("attachment_deleted", row)
        return attachment

    # Watchers

    async def list_watchers(self, request_id: UUID) -> list[tuple[RequestWatcher, User | None]]:
        await self._require_readable(request_id)
        watchers = await (
            RequestWatcher.objects.filter_by(request_id=request_id)
            .order_by(col(RequestWatcher.added_at).asc())
            .all(self.session)
        )
        if not watchers:
            return []
        users = await User.objects.by_ids([watcher.user_id for watcher in watchers]).all(self.session)
        by_id = {user.id: user for user in users}
        return [(watcher, by_id.get(watcher.user_id)) for watcher in watchers]

    async def add_watcher(self, request_id: UUID, user_id: UUID) -> bool:
        """Subscribe a user; returns False when they were already watching."""
        row = await self._require_readable(request_id)
        if await User.objects.by_id(user_id).first(self.session) is None:
            raise RequestValidationError(f"User {user_id} does not exist")
        existing = await RequestWatcher.objects.filter_by(request_id=row.id, user_id=user_id).first(
            self.session,
        )
        if existing is not None:
            return False
        try:
            self.session.add(RequestWatcher(request_id=row.id, user_id=user_id, added_by=self.actor.id))
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            return False

        await self.log_activity(row.id, "watcher_added", {"user_id": str(user_id)})
        self._publish("watchers_changed", row)
        if user_id != self.actor.id:
            self._send(
                build_watcher_added_notification(
                    request_id=row.id,
                    request_title=row.title,
                    request_type=row.request_type,
                    triggered_by_user_id=self.actor.id,
                    triggered_by_name=self.actor_name,
                    watcher_id=user_id,
                ),
            )
        return True

    async def remove_watcher(self, request_id: UUID, user_id: UUID) -> bool:
        row = await self._require_readable(request_id)
        result = await self.session.execute(
            delete(RequestWatcher).where(
                col(RequestWatcher.request_id) == row.id,
                col(RequestWatcher.user_id) == user_id,
            ),
        )
        await self.session.commit()
        removed = bool(result.rowcount)
        if removed:
            await self.log_activity(row.id, "watcher_removed", {"user_id": str(user_id)})
            self._publish("watchers_changed", row)
        return removed

    async def get_watched_request_ids(self) -> set[UUID]:
        try:
            rows = await RequestWatcher.objects.filter_by(user_id=self.actor.id).all(self.session)
        except SQLAlchemyError as exc:
            logger.warning("requests.watchers.lookup_failed", extra={"error": str(exc)})
            return set()
        return {row.request_id for row in rows}

    # Pins

    async def toggle_pin(self, request_id: UUID) -> bool:
        """Flip the actor's pin and return the new state."""
        await self._require_readable(request_id)
        result = await self.session.execute(
            delete(RequestPin).where(
                col(RequestPin.request_id) == request_id,
                col(RequestPin.user_id) == self.actor.id,
            ),
        )
        if result.rowcount:
            await self.session.commit()
            return False
        try:
            self.session.add(RequestPin(request_id=request_id, user_id=self.actor.id))
            await self.session.commit()
        except IntegrityError:
            # A concurrent toggle pinned it first; the request is pinned either way.
            await self.session.rollback()
        return True

    async def get_pinned_request_ids(self) -> set[UUID]:
        try:
            rows = await RequestPin.objects.filter_by(user_id=self.actor.id).all(self.session)
        except SQLAlchemyError as exc:
            logger.warning("requests.pins.lookup_failed", extra={"error": str(exc)})
            return set()
        return {row.request_id for row in rows}

    # Views and unread tracking

    async def _touch_view(self, request_id: UUID, *, now: datetime) -> None:
        view = await RequestView.objects.filter_by(request_id=request_id, user_id=self.actor.id).first(
            self.session,
        )
        if view is None:
            view = RequestView(request_id=request_id, user_id=self.actor.id, last_viewed_at=now)
        else:
            view.last_viewed_at = now
        try:
            self.session.add(view)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            existing = await RequestView.objects.filter_by(
                request_id=request_id,
                user_id=self.actor.id,
            ).first(self.session)
            if existing is not None:
                existing.last_viewed_at = now
                self.session.add(existing)
                await self.session.commit()

    async def mark_viewed(self, request_id: UUID) -> Request:
        """Record the view and move 'new' to 'pending' when the assignee opens it."""
        row = await self._require_readable(request_id)
        now = utcnow()
        await self._touch_view(row.id, now=now)

        next_stage = stage_after_view(
            current_stage=row.stage,
            assigned_to=row.assigned_to,
            viewer_id=self.actor.id,
        )
        if next_stage is None:
            self._publish("viewed", row)
            return row

        old_stage = row.stage
        row.stage = next_stage
        row.updated_at = now
        await self._refresh_derived(row, now=now)
        await self._commit_row(row)
        await self.log_activity(
            row.id,
            "status_changed",
            {"from": old_stage, "to": next_stage, "reason": AUTO_VIEW_REASON},
        )
        self._publish("stage_changed", row)
        return row

    def _unread_statement(self, request_ids: Iterable[UUID]) -> Any:
        last_viewed = (
            select(RequestView.last_viewed_at)
            .where(
                col(RequestView.request_id) == col(RequestNote.request_id),
                col(RequestView.user_id) == self.actor.id,
            )
            .correlate(RequestNote)
            .scalar_subquery()
        )
        statement = (
            select(RequestNote.request_id, func.count())
            .where(
                col(RequestNote.request_id).in_(list(request_ids)),
                col(RequestNote.user_id) != self.actor.id,
                or_(last_viewed.is_(None), col(RequestNote.created_at) > last_viewed),
            )
            .group_by(col(RequestNote.request_id))
        )
        if not self.actor.is_privileged:
            statement = statement.where(col(RequestNote.note_type) != "internal")
        return statement

    async def get_unread_count(self, request_id: UUID) -> int:
        counts = await self.get_unread_counts([request_id])
        return counts.get(request_id, 0)

    async def get_unread_counts(self, request_ids: Sequence[UUID]) -> dict[UUID, int]:
        """Unread notes by others per request; requests with none are omitted."""
        if not request_ids:
            return {}
        try:
            rows = (await self.session.exec(self._unread_statement(request_ids))).all()
        except SQLAlchemyError as exc:
            logger.warning("requests.unread.batch_failed", extra={"error": str(exc)})
            return {}
        return {request_id: int(count) for request_id, count in rows if count > 0}

    async def get_view_status(self, request_ids: Sequence[UUID]) -> set[UUID]:
        """Which of the given requests the actor has ever opened."""
        if not request_ids:
            return set()
        try:
            views = await RequestView.objects.filter(
                col(RequestView.user_id) == self.actor.id,
                col(RequestView.request_id).in_(list(request_ids)),
            ).all(self.session)
        except SQLAlchemyError as exc:
            logger.warning("requests.views.batch_failed", extra={"error": str(exc)})
            return set()
        return {view.request_id for view in views}

    # Assignment rules and SLA defaults

    async def list_assignment_rules(self) -> list[AssignmentRule]:
        self._require_privileged()
        return await AssignmentRule.objects.all().order_by(
            col(AssignmentRule.request_type).asc(),
            col(AssignmentRule.priority).desc(),
        ).all(self.session)

    async def upsert_assignment_rule(self, data: AssignmentRuleUpsert) -> AssignmentRule:
        self._require_privileged()
        if await User.objects.by_id(data.assignee_id).first(self.session) is None:
            raise RequestValidationError(f"Assignee {data.assignee_id} does not exist")
        rule = None
        if data.id is not None:
            rule = await AssignmentRule.objects.by_id(data.id).first(self.session)
        now = utcnow()
        if rule is None:
            rule = AssignmentRule(created_at=now)
            if data.id is not None:
                rule.id = data.id
        rule.request_type = data.request_type
        rule.assignee_id = data.assignee_id
        rule.priority = data.priority
        rule.is_active = data.is_active
        rule.updated_at = now
        await self._commit_row(rule)
        logger.info(
            "requests.rules.upserted",
            extra={"rule_id": str(rule.id), "request_type": rule.request_type, "priority": rule.priority},
        )
        return rule

    async def list_sla_defaults(self) -> list[SLADefault]:
        return await SLADefault.objects.all().order_by(col(SLADefault.request_type).asc()).all(self.session)

    async def upsert_sla_default(self, data: SLADefaultUpsert) -> SLADefault:
        self._require_privileged()
        row = await self._sla_default(data.request_type)
        now = utcnow()
        if row is None:
            row = SLADefault(request_type=data.request_type, target_hours=data.target_hours, created_at=now)
        row.target_hours = data.target_hours
        row.urgent_target_hours = data.urgent_target_hours
        row.critical_target_hours = data.critical_target_hours
        row.updated_at = now
        await self._commit_row(row)
        return row

    # Analytics

    async def get_analytics(self) -> RequestAnalytics:
        self._require_privileged()
        stage_rows = (
            await self.session.exec(
                select(Request.stage, func.count()).group_by(col(Request.stage)),
            )
        ).all()
        counts_by_stage = {stage: int(count) for stage, count in stage_rows}

        responded = (
            await self.session.exec(
                select(Request.created_at, Request.first_response_at).where(
                    col(Request.first_response_at).is_not(None),
                ),
            )
        ).all()
        average_response_hours = 0.0
        if responded:
            total_hours = sum(
                (first_response_at - created_at).total_seconds() / 3600
                for created_at, first_response_at in responded
            )
            average_response_hours = total_hours / len(responded)

        closed_statuses = (
            await self.session.exec(
                select(Request.sla_status).where(col(Request.stage).in_(sorted(CLOSED_STAGES))),
            )
        ).all()
        sla_compliance = 100.0
        if closed_statuses:
            on_track = sum(1 for status in closed_statuses if status == "on_track")
            sla_compliance = on_track / len(closed_statuses) * 100
        return RequestAnalytics(
            counts_by_stage=counts_by_stage,
            average_response_hours=average_response_hours,
            sla_compliance=sla_compliance,
        )
