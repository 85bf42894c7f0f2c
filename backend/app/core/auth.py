"""User authentication helpers backed by shared-secret JWT verification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Literal
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.core.time import utcnow
from app.db.session import get_session
from app.models.users import User

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)
SECURITY_DEP = Depends(security)
SESSION_DEP = Depends(get_session)
DEFAULT_TOKEN_TTL = timedelta(hours=12)


class TokenPayload(BaseModel):
    """JWT claims payload shape required from identity tokens."""

    sub: UUID


@dataclass
class AuthContext:
    """Authenticated user context resolved from inbound auth headers."""

    actor_type: Literal["user"]
    user: User | None = None


def create_access_token(user_id: UUID, *, ttl: timedelta = DEFAULT_TOKEN_TTL) -> str:
    """Issue a signed token for a user id (used by tooling and tests)."""
    issued_at = utcnow()
    return jwt.encode(
        {"sub": str(user_id), "iat": issued_at, "exp": issued_at + ttl},
        settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
    )


def _decode_token(token: str) -> dict[str, object]:
    try:
        decoded = jwt.decode(
            token,
            key=settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            options={"verify_aud": False},
            leeway=settings.auth_jwt_leeway,
        )
    except jwt.PyJWTError as exc:
        logger.info("auth.token.rejected", extra={"error": type(exc).__name__})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED) from exc
    return {str(k): v for k, v in decoded.items()}


async def _resolve_user(
    credentials: HTTPAuthorizationCredentials | None,
    session: AsyncSession,
) -> User:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    claims = _decode_token(credentials.credentials)
    try:
        user_id = TokenPayload.model_validate(claims).sub
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED) from exc
    user = await User.objects.by_id(user_id).first(session)
    if user is None:
        logger.warning("auth.user.unknown", extra={"user_id": str(user_id)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return user


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials | None = SECURITY_DEP,
    session: AsyncSession = SESSION_DEP,
) -> AuthContext:
    """Resolve required authenticated user context from bearer token headers."""
    user = await _resolve_user(credentials, session)
    return AuthContext(actor_type="user", user=user)
