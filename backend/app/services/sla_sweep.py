"""Periodic refresh of SLA status and priority score for open requests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlmodel import col

from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.request_rules import SLADefault
from app.models.requests import Request
from app.services.request_sla import CLOSED_STAGES, apply_derived_fields

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class SLASweepResult:
    scanned: int
    updated: int
    breached: int


class SLASweeper:
    """Recompute time-dependent derived columns; SLA status and age points drift without writes."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def run_once(self, *, now: datetime | None = None) -> SLASweepResult:
        current = now or utcnow()
        defaults = {row.request_type: row for row in await SLADefault.objects.all().all(self.session)}
        open_requests = await Request.objects.filter(
            col(Request.stage).not_in(sorted(CLOSED_STAGES)),
        ).all(self.session)

        updated = 0
        breached = 0
        for row in open_requests:
            if apply_derived_fields(row, sla_default=defaults.get(row.request_type), now=current):
                self.session.add(row)
                updated += 1
            if row.sla_status == "breached":
                breached += 1
        if updated:
            await self.session.commit()

        result = SLASweepResult(scanned=len(open_requests), updated=updated, breached=breached)
        logger.info(
            "requests.sla_sweep.complete",
            extra={"scanned": result.scanned, "updated": result.updated, "breached": result.breached},
        )
        return result
