# ruff: noqa: S101
from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.time import utcnow
from app.models.request_rules import SLADefault
from app.models.requests import Request
from app.models.users import User
from app.services.sla_sweep import SLASweeper


async def _create_schema(engine: AsyncEngine) -> None:
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)


@pytest.mark.asyncio
async def test_sweep_refreshes_open_requests_only() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    now = utcnow()
    async with session_maker() as session:
        submitter = User(id=uuid4(), email="sales@example.com")
        session.add(submitter)
        session.add(SLADefault(request_type="support", target_hours=8, urgent_target_hours=4))
        overdue = Request(
            request_type="support",
            title="Gate will not latch",
            urgency="high",
            submitter_id=submitter.id,
            created_at=now - timedelta(hours=5),
            sla_status="on_track",
        )
        fresh = Request(
            request_type="support",
            title="Hinge squeaks",
            submitter_id=submitter.id,
            created_at=now - timedelta(minutes=10),
        )
        closed = Request(
            request_type="support",
            title="Already fixed",
            submitter_id=submitter.id,
            stage="completed",
            created_at=now - timedelta(hours=30),
            sla_status="on_track",
        )
        session.add_all([overdue, fresh, closed])
        await session.commit()

        result = await SLASweeper(session).run_once(now=now)

        assert result.scanned == 2
        assert result.breached == 1
        assert result.updated >= 1
        assert overdue.sla_target_hours == 4
        assert overdue.sla_status == "breached"
        assert fresh.sla_status == "on_track"
        assert closed.sla_status == "on_track"

        again = await SLASweeper(session).run_once(now=now)
        assert again.updated == 0
    await engine.dispose()
