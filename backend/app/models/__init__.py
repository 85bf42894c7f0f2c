"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from app.models.notification_preferences import UserNotificationPreference
from app.models.otp_codes import OtpCode
from app.models.request_activity import RequestActivity
from app.models.request_attachments import RequestAttachment
from app.models.request_notes import RequestNote
from app.models.request_rules import AssignmentRule, SLADefault
from app.models.request_views import RequestPin, RequestView
from app.models.request_watchers import RequestWatcher
from app.models.requests import Request
from app.models.users import User

__all__ = [
    "AssignmentRule",
    "OtpCode",
    "Request",
    "RequestActivity",
    "RequestAttachment",
    "RequestNote",
    "RequestPin",
    "RequestView",
    "RequestWatcher",
    "SLADefault",
    "User",
    "UserNotificationPreference",
]
