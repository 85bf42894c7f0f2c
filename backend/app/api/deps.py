"""Shared FastAPI dependencies for authenticated request routes."""

from __future__ import annotations

from fastapi import Depends

from app.core.auth import AuthContext, get_auth_context
from app.core.errors import NotAuthenticatedError, PermissionDeniedError
from app.models.users import User

AUTH_DEP = Depends(get_auth_context)


def require_user(auth: AuthContext = AUTH_DEP) -> User:
    """Return the authenticated user or fail before any mutation runs."""
    if auth.user is None:
        raise NotAuthenticatedError()
    return auth.user


USER_DEP = Depends(require_user)


def require_privileged_user(user: User = USER_DEP) -> User:
    """Operations and admin users only."""
    if not user.is_privileged:
        raise PermissionDeniedError("Operations or admin role required")
    return user
