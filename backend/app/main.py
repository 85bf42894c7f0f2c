"""FastAPI application factory for the request desk API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.notifications import router as notifications_router
from app.api.otp import router as otp_router
from app.api.requests import router as requests_router
from app.api.transcriptions import router as transcriptions_router
from app.core.config import settings
from app.core.errors import install_error_handlers
from app.core.logging import configure_logging, get_logger
from app.db.session import init_db
from app.services.request_cache import request_query_cache
from app.services.request_events import request_event_bus

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    await init_db()
    logger.info("app.startup", extra={"environment": settings.environment})
    yield
    logger.info("app.shutdown")


def _health() -> dict[str, bool]:
    return {"ok": True}


def create_app() -> FastAPI:
    app = FastAPI(title="Request Desk API", lifespan=lifespan)

    origins = settings.allowed_cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    install_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(requests_router)
    api_v1.include_router(notifications_router)
    api_v1.include_router(otp_router)
    api_v1.include_router(transcriptions_router)
    api_v1.add_api_route("/health", _health, methods=["GET"], tags=["health"])
    app.include_router(api_v1)
    app.add_api_route("/health", _health, methods=["GET"], tags=["health"])
    app.add_api_route("/healthz", _health, methods=["GET"], tags=["health"])
    return app


# Cached reads are dropped by the same events the change stream publishes.
request_query_cache.bind(request_event_bus)
app = create_app()
