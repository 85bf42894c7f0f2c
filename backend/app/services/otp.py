"""SMS one-time passcode issuance with a rolling per-user rate limit."""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import func
from sqlmodel import col, select

from app.core.config import settings
from app.core.errors import BadRequestError, RateLimitedError, RequestNotFoundError, UpstreamServiceError
from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.otp_codes import OtpCode
from app.models.users import User
from app.services.notifications.delivery import DeliveryError, TwilioSmsSender

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

E164_US_PATTERN = re.compile(r"^\+1\d{10}$")
CODE_LENGTH = 6
RATE_LIMIT_MESSAGE = "Too many verification requests. Please try again later."


@dataclass(frozen=True)
class OtpIssueResult:
    otp_id: UUID
    masked_phone: str
    expires_at: datetime


def normalize_phone(raw: str) -> str:
    """Coerce to ``+1XXXXXXXXXX``; the result still needs :func:`validate_phone`."""
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return f"+1{digits}"


def validate_phone(phone: str) -> str:
    if not E164_US_PATTERN.match(phone):
        raise BadRequestError("Invalid phone number. Use a 10-digit US number.")
    return phone


def mask_phone(phone: str) -> str:
    """Keep only the last four digits visible."""
    return f"***-***-{phone[-4:]}"


def generate_code() -> str:
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


def otp_message(code: str) -> str:
    return (
        f"Your Discount Fence Hub verification code is {code}. "
        f"It expires in {settings.otp_ttl_minutes} minutes."
    )


class OtpService:
    def __init__(self, session: AsyncSession, *, sms_sender: TwilioSmsSender | None = None) -> None:
        self.session = session
        self.sms_sender = sms_sender or TwilioSmsSender()

    async def _recent_issue_count(self, user_id: UUID, *, since: datetime) -> int:
        statement = select(func.count()).select_from(OtpCode).where(
            col(OtpCode.user_id) == user_id,
            col(OtpCode.created_at) >= since,
        )
        return int((await self.session.exec(statement)).one())

    async def issue(self, *, user_id: UUID, phone: str, now: datetime | None = None) -> OtpIssueResult:
        """Persist a fresh code and text it to the normalized number."""
        normalized = validate_phone(normalize_phone(phone))
        if await User.objects.by_id(user_id).first(self.session) is None:
            raise RequestNotFoundError(f"User {user_id} not found")

        current = now or utcnow()
        window_start = current - timedelta(minutes=settings.otp_window_minutes)
        if await self._recent_issue_count(user_id, since=window_start) >= settings.otp_max_requests:
            logger.info("otp.issue.rate_limited", extra={"user_id": str(user_id)})
            raise RateLimitedError(RATE_LIMIT_MESSAGE)

        code = generate_code()
        row = OtpCode(
            user_id=user_id,
            phone=normalized,
            code=code,
            expires_at=current + timedelta(minutes=settings.otp_ttl_minutes),
            created_at=current,
        )
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)

        try:
            await self.sms_sender.send(to=normalized, body=otp_message(code))
        except (DeliveryError, OSError) as exc:
            logger.warning(
                "otp.issue.sms_failed",
                extra={"user_id": str(user_id), "error": str(exc)},
            )
            raise UpstreamServiceError("Failed to send verification code") from exc

        logger.info("otp.issue.sent", extra={"user_id": str(user_id), "otp_id": str(row.id)})
        return OtpIssueResult(otp_id=row.id, masked_phone=mask_phone(normalized), expires_at=row.expires_at)

    async def verify(self, *, user_id: UUID, code: str, now: datetime | None = None) -> str | None:
        """Consume a matching unexpired code and store the verified phone on the user.

        Returns the verified phone number, or None when no live code matches.
        """
        current = now or utcnow()
        row = await (
            OtpCode.objects.filter(
                col(OtpCode.user_id) == user_id,
                col(OtpCode.code) == code.strip(),
                col(OtpCode.consumed_at).is_(None),
                col(OtpCode.expires_at) > current,
            )
            .order_by(col(OtpCode.created_at).desc())
            .first(self.session)
        )
        if row is None:
            logger.info("otp.verify.rejected", extra={"user_id": str(user_id)})
            return None

        row.consumed_at = current
        self.session.add(row)
        user = await User.objects.by_id(user_id).first(self.session)
        if user is not None:
            user.phone = row.phone
            self.session.add(user)
        await self.session.commit()
        logger.info("otp.verify.accepted", extra={"user_id": str(user_id), "otp_id": str(row.id)})
        return row.phone
