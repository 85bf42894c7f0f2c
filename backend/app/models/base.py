"""Shared SQLModel base for table models with query helpers."""

from __future__ import annotations

from typing import Any, ClassVar

from sqlmodel import SQLModel

from app.db.query_manager import ManagerDescriptor


class QueryModel(SQLModel, table=False):
    """Base table model exposing `Model.objects` query helpers."""

    objects: ClassVar[ManagerDescriptor[Any]] = ManagerDescriptor()
