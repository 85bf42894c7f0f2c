"""Request stage transition policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

RequestStage = Literal["new", "pending", "completed", "archived"]
QuoteStatus = Literal["won", "lost", "awaiting"]

STAGES: tuple[str, ...] = ("new", "pending", "completed", "archived")
QUOTE_STATUSES: tuple[str, ...] = ("won", "lost", "awaiting")
QUOTABLE_REQUEST_TYPES = frozenset({"pricing"})
# Work in progress returns to "new" only through reassignment; closed requests may be reopened.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "new": {"new", "pending", "completed", "archived"},
    "pending": {"pending", "completed", "archived"},
    "completed": {"new", "pending", "completed", "archived"},
    "archived": {"new", "pending", "completed", "archived"},
}
AUTO_VIEW_REASON = "Auto-transitioned when assignee viewed request"


@dataclass(frozen=True)
class StageTransitionResult:
    ok: bool
    reason: str | None = None
    stamp_completed_at: bool = False


def validate_stage_change(
    *,
    current_stage: str,
    target_stage: str,
    request_type: str,
    quote_status: str | None = None,
) -> StageTransitionResult:
    """Validate an explicit operator stage change."""
    source = (current_stage or "new").strip().lower()
    target = (target_stage or "").strip().lower()

    if source not in ALLOWED_TRANSITIONS or target not in ALLOWED_TRANSITIONS:
        return StageTransitionResult(ok=False, reason=f"Unknown stage transition: {source} -> {target}")

    if target not in ALLOWED_TRANSITIONS[source]:
        if target == "new":
            return StageTransitionResult(
                ok=False,
                reason="An open request returns to 'new' only by being reassigned.",
            )
        return StageTransitionResult(ok=False, reason=f"Cannot transition request from '{source}' to '{target}'.")

    if quote_status is not None:
        if quote_status not in QUOTE_STATUSES:
            return StageTransitionResult(ok=False, reason=f"Unknown quote status: {quote_status}")
        if target != "completed":
            return StageTransitionResult(
                ok=False,
                reason="quote_status is recorded only when completing a request.",
            )
        if request_type not in QUOTABLE_REQUEST_TYPES:
            return StageTransitionResult(
                ok=False,
                reason="quote_status applies only to pricing requests.",
            )

    return StageTransitionResult(ok=True, stamp_completed_at=target == "completed")


def stage_after_assignment(current_stage: str) -> str:
    """Return the stage a request enters when (re)assigned: always 'new'."""
    del current_stage
    return "new"


def stage_after_view(
    *,
    current_stage: str,
    assigned_to: object | None,
    viewer_id: object,
) -> str | None:
    """Return the automatic stage for a view, or None when the view changes nothing."""
    if current_stage == "new" and assigned_to is not None and assigned_to == viewer_id:
        return "pending"
    return None
