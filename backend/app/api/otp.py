"""SMS one-time passcode endpoints for phone verification."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends

from app.api.deps import USER_DEP
from app.core.errors import PermissionDeniedError
from app.db.session import get_session
from app.models.users import User
from app.schemas.otp import OtpIssueRequest, OtpIssueResponse, OtpVerifyRequest, OtpVerifyResponse
from app.services.otp import OtpService

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(prefix="/auth/otp", tags=["auth"])
SESSION_DEP = Depends(get_session)
_RUNTIME_TYPE_REFERENCES = (User,)


def get_otp_service(session: AsyncSession = SESSION_DEP) -> OtpService:
    return OtpService(session)


OTP_SERVICE_DEP = Depends(get_otp_service)


def _require_self_or_privileged(user: User, target_user_id: object) -> None:
    if user.id != target_user_id and not user.is_privileged:
        raise PermissionDeniedError("Cannot verify a phone number for another user")


@router.post("", response_model=OtpIssueResponse)
async def issue_otp(
    payload: OtpIssueRequest,
    user: User = USER_DEP,
    service: OtpService = OTP_SERVICE_DEP,
) -> OtpIssueResponse:
    """Text a six-digit code to the given US number; at most three per ten minutes."""
    _require_self_or_privileged(user, payload.user_id)
    result = await service.issue(user_id=payload.user_id, phone=payload.phone)
    return OtpIssueResponse(success=True, message="Verification code sent", phone=result.masked_phone)


@router.post("/verify", response_model=OtpVerifyResponse)
async def verify_otp(
    payload: OtpVerifyRequest,
    user: User = USER_DEP,
    service: OtpService = OTP_SERVICE_DEP,
) -> OtpVerifyResponse:
    _require_self_or_privileged(user, payload.user_id)
    phone = await service.verify(user_id=payload.user_id, code=payload.code)
    return OtpVerifyResponse(success=True, verified=phone is not None, phone=phone)
