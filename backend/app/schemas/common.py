"""Shared schema field types and response payloads."""

from __future__ import annotations

from typing import Annotated

from pydantic import StringConstraints
from sqlmodel import SQLModel

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class OkResponse(SQLModel):
    """Standard success response payload."""

    ok: bool = True
