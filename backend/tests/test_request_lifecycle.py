# ruff: noqa: S101
from __future__ import annotations

from uuid import uuid4

import pytest

from app.services.request_lifecycle import (
    stage_after_assignment,
    stage_after_view,
    validate_stage_change,
)


@pytest.mark.parametrize("current", ["completed", "archived"])
def test_closed_request_can_be_reopened_as_new(current: str) -> None:
    result = validate_stage_change(current_stage=current, target_stage="new", request_type="support")
    assert result.ok is True
    assert result.stamp_completed_at is False


def test_work_in_progress_returns_to_new_only_by_reassignment() -> None:
    result = validate_stage_change(current_stage="pending", target_stage="new", request_type="support")
    assert result.ok is False
    assert result.reason is not None


def test_completed_stamps_completion_time() -> None:
    result = validate_stage_change(current_stage="pending", target_stage="completed", request_type="support")
    assert result.ok is True
    assert result.stamp_completed_at is True


def test_same_stage_change_is_allowed() -> None:
    result = validate_stage_change(current_stage="pending", target_stage="pending", request_type="material")
    assert result.ok is True
    assert result.stamp_completed_at is False


def test_archived_request_can_be_reopened() -> None:
    result = validate_stage_change(current_stage="archived", target_stage="pending", request_type="other")
    assert result.ok is True


def test_quote_status_only_applies_to_pricing_requests() -> None:
    rejected = validate_stage_change(
        current_stage="pending",
        target_stage="completed",
        request_type="warranty",
        quote_status="won",
    )
    accepted = validate_stage_change(
        current_stage="pending",
        target_stage="completed",
        request_type="pricing",
        quote_status="won",
    )
    assert rejected.ok is False
    assert accepted.ok is True


@pytest.mark.parametrize("target", ["new", "pending", "archived"])
def test_quote_status_requires_completion(target: str) -> None:
    result = validate_stage_change(
        current_stage="completed",
        target_stage=target,
        request_type="pricing",
        quote_status="won",
    )
    assert result.ok is False
    assert result.reason is not None


def test_unknown_stage_is_rejected() -> None:
    result = validate_stage_change(current_stage="pending", target_stage="escalated", request_type="other")
    assert result.ok is False


def test_assignment_always_resets_to_new() -> None:
    for stage in ("new", "pending", "completed", "archived"):
        assert stage_after_assignment(stage) == "new"


def test_only_the_assignee_viewing_a_new_request_moves_it_to_pending() -> None:
    assignee = uuid4()
    assert stage_after_view(current_stage="new", assigned_to=assignee, viewer_id=assignee) == "pending"
    assert stage_after_view(current_stage="new", assigned_to=assignee, viewer_id=uuid4()) is None
    assert stage_after_view(current_stage="new", assigned_to=None, viewer_id=assignee) is None
    assert stage_after_view(current_stage="completed", assigned_to=assignee, viewer_id=assignee) is None
