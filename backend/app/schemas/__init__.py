"""Public schema exports shared across API route modules."""

from app.schemas.common import NonEmptyStr, OkResponse
from app.schemas.notifications import (
    NotificationDetails,
    NotificationDispatchResult,
    RequestNotificationPayload,
)
from app.schemas.otp import OtpIssueRequest, OtpIssueResponse, OtpVerifyRequest, OtpVerifyResponse
from app.schemas.requests import (
    AssignmentRuleRead,
    AssignmentRuleUpsert,
    RequestActivityRead,
    RequestAnalyticsRead,
    RequestAttachmentRead,
    RequestCreate,
    RequestListItem,
    RequestNoteCreate,
    RequestNoteRead,
    RequestRead,
    RequestUpdate,
    RequestWatcherRead,
    SLADefaultRead,
    SLADefaultUpsert,
)
from app.schemas.transcriptions import TranscriptionRead

__all__ = [
    "AssignmentRuleRead",
    "AssignmentRuleUpsert",
    "NonEmptyStr",
    "NotificationDetails",
    "NotificationDispatchResult",
    "OkResponse",
    "OtpIssueRequest",
    "OtpIssueResponse",
    "OtpVerifyRequest",
    "OtpVerifyResponse",
    "RequestActivityRead",
    "RequestAnalyticsRead",
    "RequestAttachmentRead",
    "RequestCreate",
    "RequestListItem",
    "RequestNoteCreate",
    "RequestNoteRead",
    "RequestNotificationPayload",
    "RequestRead",
    "RequestUpdate",
    "RequestWatcherRead",
    "SLADefaultRead",
    "SLADefaultUpsert",
    "TranscriptionRead",
]
