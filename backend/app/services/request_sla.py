"""SLA target, SLA status and priority score computation for requests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from app.core.time import utcnow

if TYPE_CHECKING:
    from app.models.request_rules import SLADefault
    from app.models.requests import Request

DEFAULT_TARGET_HOURS = 24
AT_RISK_RATIO = 0.75
CLOSED_STAGES = frozenset({"completed", "archived"})
_URGENCY_POINTS = {"critical": 40, "high": 30, "medium": 20}
_VALUE_TIERS = ((50000, 30), (20000, 25), (10000, 20), (5000, 15))
_AGE_TIERS = ((72, 30), (48, 25), (24, 20), (12, 15), (6, 10))


@dataclass(frozen=True)
class SLAEvaluation:
    target_hours: int
    status: str


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def resolve_target_hours(*, urgency: str, sla_default: SLADefault | None) -> int:
    """Pick the target for the urgency tier, falling back to the base target."""
    if sla_default is None:
        return DEFAULT_TARGET_HOURS
    if urgency == "critical":
        target = sla_default.critical_target_hours
    elif urgency == "high":
        target = sla_default.urgent_target_hours
    else:
        target = sla_default.target_hours
    return target if target is not None else DEFAULT_TARGET_HOURS


def evaluate_sla(
    *,
    stage: str,
    urgency: str,
    created_at: datetime,
    completed_at: datetime | None,
    sla_default: SLADefault | None,
    now: datetime | None = None,
) -> SLAEvaluation:
    """Classify a request against its response target."""
    target = resolve_target_hours(urgency=urgency, sla_default=sla_default)
    if stage in CLOSED_STAGES:
        if completed_at is not None and _hours_between(created_at, completed_at) <= target:
            return SLAEvaluation(target_hours=target, status="on_track")
        return SLAEvaluation(target_hours=target, status="breached")

    age_hours = _hours_between(created_at, now or utcnow())
    if age_hours > target:
        status = "breached"
    elif age_hours > target * AT_RISK_RATIO:
        status = "at_risk"
    else:
        status = "on_track"
    return SLAEvaluation(target_hours=target, status=status)


def compute_priority_score(
    *,
    urgency: str,
    expected_value: float | None,
    created_at: datetime,
    now: datetime | None = None,
) -> int:
    """Score = urgency (10-40) + expected value (0-30) + age (5-30)."""
    urgency_points = _URGENCY_POINTS.get(urgency, 10)

    if expected_value is None:
        value_points = 0
    else:
        value_points = next((points for floor, points in _VALUE_TIERS if expected_value >= floor), 10)

    age_hours = _hours_between(created_at, now or utcnow())
    age_points = next((points for floor, points in _AGE_TIERS if age_hours > floor), 5)

    return urgency_points + value_points + age_points


def apply_derived_fields(
    request: Request,
    *,
    sla_default: SLADefault | None,
    now: datetime | None = None,
) -> bool:
    """Refresh SLA and priority columns in place; return whether anything changed."""
    current = now or utcnow()
    evaluation = evaluate_sla(
        stage=request.stage,
        urgency=request.urgency,
        created_at=request.created_at,
        completed_at=request.completed_at,
        sla_default=sla_default,
        now=current,
    )
    score = compute_priority_score(
        urgency=request.urgency,
        expected_value=request.expected_value,
        created_at=request.created_at,
        now=current,
    )
    changed = (
        request.sla_target_hours != evaluation.target_hours
        or request.sla_status != evaluation.status
        or request.priority_score != score
    )
    request.sla_target_hours = evaluation.target_hours
    request.sla_status = evaluation.status
    request.priority_score = score
    return changed
