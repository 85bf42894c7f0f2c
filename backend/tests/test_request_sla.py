# ruff: noqa: S101
from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

from app.models.request_rules import SLADefault
from app.models.requests import Request
from app.services.request_sla import (
    apply_derived_fields,
    compute_priority_score,
    evaluate_sla,
    resolve_target_hours,
)

NOW = datetime(2026, 3, 2, 12, 0, 0)
PRICING = SLADefault(request_type="pricing", target_hours=24, urgent_target_hours=8, critical_target_hours=4)


def test_target_hours_follow_urgency_tier() -> None:
    assert resolve_target_hours(urgency="critical", sla_default=PRICING) == 4
    assert resolve_target_hours(urgency="high", sla_default=PRICING) == 8
    assert resolve_target_hours(urgency="medium", sla_default=PRICING) == 24
    assert resolve_target_hours(urgency="low", sla_default=None) == 24


def test_open_request_moves_from_on_track_to_at_risk_to_breached() -> None:
    def status_after(hours: float) -> str:
        return evaluate_sla(
            stage="pending",
            urgency="medium",
            created_at=NOW - timedelta(hours=hours),
            completed_at=None,
            sla_default=PRICING,
            now=NOW,
        ).status

    assert status_after(10) == "on_track"
    assert status_after(19) == "at_risk"
    assert status_after(25) == "breached"


def test_closed_request_is_judged_by_completion_time() -> None:
    created = NOW - timedelta(hours=30)
    on_time = evaluate_sla(
        stage="completed",
        urgency="medium",
        created_at=created,
        completed_at=created + timedelta(hours=20),
        sla_default=PRICING,
        now=NOW,
    )
    late = evaluate_sla(
        stage="archived",
        urgency="medium",
        created_at=created,
        completed_at=None,
        sla_default=PRICING,
        now=NOW,
    )
    assert on_time.status == "on_track"
    assert late.status == "breached"


def test_priority_score_sums_urgency_value_and_age_points() -> None:
    score = compute_priority_score(
        urgency="critical",
        expected_value=60000,
        created_at=NOW - timedelta(hours=80),
        now=NOW,
    )
    assert score == 40 + 30 + 30

    fresh_low = compute_priority_score(urgency="low", expected_value=None, created_at=NOW, now=NOW)
    assert fresh_low == 10 + 0 + 5

    small_value = compute_priority_score(
        urgency="medium",
        expected_value=1200,
        created_at=NOW - timedelta(hours=7),
        now=NOW,
    )
    assert small_value == 20 + 10 + 10


def test_apply_derived_fields_reports_changes() -> None:
    row = Request(
        request_type="pricing",
        title="Quote for cedar fence",
        submitter_id=uuid4(),
        urgency="high",
        expected_value=25000,
        created_at=NOW - timedelta(hours=7),
    )
    assert apply_derived_fields(row, sla_default=PRICING, now=NOW) is True
    assert row.sla_target_hours == 8
    assert row.sla_status == "at_risk"
    assert row.priority_score == 30 + 25 + 10
    assert apply_derived_fields(row, sla_default=PRICING, now=NOW) is False
