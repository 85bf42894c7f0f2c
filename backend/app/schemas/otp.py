"""Schemas for SMS one-time passcode issuance and verification."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.schemas.common import NonEmptyStr


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OtpIssueRequest(_CamelModel):
    user_id: UUID
    phone: NonEmptyStr


class OtpIssueResponse(_CamelModel):
    success: bool
    message: str
    phone: str


class OtpVerifyRequest(_CamelModel):
    user_id: UUID
    code: NonEmptyStr


class OtpVerifyResponse(_CamelModel):
    success: bool
    verified: bool
    phone: str | None = None
