"""Subject, email and SMS rendering for request notifications."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import TYPE_CHECKING

from app.core.config import settings

if TYPE_CHECKING:
    from app.schemas.notifications import RequestNotificationPayload

SMS_MAX_LENGTH = 160
SMS_TITLE_MAX_LENGTH = 25
SMS_COMMENT_MAX_LENGTH = 60
BRAND_NAME = "Discount Fence Hub"
SMS_PREFIX = "DFH"


@dataclass(frozen=True)
class NotificationContent:
    subject: str
    email_html: str
    sms_text: str


def shorten(text: str, max_length: int) -> str:
    """Trim to max_length, spending the last three characters on '...'."""
    if len(text) <= max_length:
        return text
    return f"{text[: max_length - 3]}..."


def request_url(request_id: str, *, base_url: str | None = None) -> str:
    return f"{(base_url or settings.app_url).rstrip('/')}/requests?id={request_id}"


def _subject_and_action(payload: RequestNotificationPayload) -> tuple[str, str, bool]:
    actor = payload.triggered_by_name
    title = payload.request_title
    details = payload.details
    if payload.type == "assignment":
        return (
            f"{actor} assigned you to: {title}",
            f'{actor} has assigned you to the {payload.request_type} request "{title}" '
            f"({payload.urgency or 'medium'} priority).",
            False,
        )
    if payload.type == "watcher_added":
        return (
            f"{actor} added you to: {title}",
            f'{actor} added you as a watcher on the {payload.request_type} request "{title}". '
            "You'll receive updates when changes are made.",
            False,
        )
    if payload.type == "comment":
        return (f"{actor} commented on: {title}", f"{actor} added a comment:", True)
    if payload.type == "status_change":
        old_status = (details.old_status if details else None) or "unknown"
        new_status = (details.new_status if details else None) or "unknown"
        return (
            f"{actor} updated: {title}",
            f'{actor} changed the status from "{old_status}" to "{new_status}".',
            False,
        )
    attachment_name = (details.attachment_name if details else None) or "attachment"
    return (f"{actor} added file to: {title}", f'{actor} added a new file: "{attachment_name}"', False)


def _sms_text(payload: RequestNotificationPayload, *, url: str) -> str:
    actor = payload.triggered_by_name
    short_title = shorten(payload.request_title, SMS_TITLE_MAX_LENGTH)
    details = payload.details
    if payload.type == "assignment":
        text = f'{SMS_PREFIX}: {actor} assigned you to "{short_title}". {url}'
    elif payload.type == "watcher_added":
        text = f'{SMS_PREFIX}: {actor} added you to "{short_title}". {url}'
    elif payload.type == "comment":
        comment = shorten((details.comment_preview if details else None) or "", SMS_COMMENT_MAX_LENGTH)
        text = f'{SMS_PREFIX}: {actor} on "{short_title}": "{comment}" {url}'
    elif payload.type == "status_change":
        new_status = (details.new_status if details else None) or "new status"
        text = f'{SMS_PREFIX}: {actor} moved "{short_title}" to {new_status}. {url}'
    else:
        text = f'{SMS_PREFIX}: {actor} added file to "{short_title}". {url}'
    return text[:SMS_MAX_LENGTH]


def render_notification(
    payload: RequestNotificationPayload,
    *,
    base_url: str | None = None,
) -> NotificationContent:
    """Render every channel's content for one notification event."""
    url = request_url(payload.request_id, base_url=base_url)
    subject, action, has_content = _subject_and_action(payload)
    comment = (payload.details.comment_preview if payload.details else None) or ""
    content_block = ""
    if has_content and comment:
        content_block = (
            '<div style="background: #f3f4f6; border-left: 4px solid #2563eb; padding: 16px; '
            'margin: 20px 0; border-radius: 0 8px 8px 0;">'
            '<p style="color: #1f2937; font-size: 16px; line-height: 1.6; margin: 0; '
            f'white-space: pre-wrap;">{escape(comment)}</p></div>'
        )
    email_html = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<div style="background: #2563eb; padding: 20px; text-align: center;">'
        f'<h1 style="color: white; margin: 0; font-size: 24px;">{BRAND_NAME}</h1></div>'
        '<div style="padding: 30px; background: #ffffff;">'
        f'<h2 style="color: #1f2937; margin-top: 0;">{escape(payload.request_title)}</h2>'
        f'<p style="color: #6b7280; font-size: 14px;">{escape(payload.request_type)} Request '
        f"&bull; {escape(payload.urgency or 'medium')} priority</p>"
        f'<p style="color: #4b5563; font-size: 16px; line-height: 1.6;">{escape(action)}</p>'
        f"{content_block}"
        '<div style="margin: 30px 0; text-align: center;">'
        f'<a href="{escape(url)}" style="background: #2563eb; color: white; padding: 14px 28px; '
        'text-decoration: none; border-radius: 6px; display: inline-block; font-weight: 600;">'
        "View Request</a></div>"
        '<p style="color: #9ca3af; font-size: 12px;">'
        f"You received this because you're associated with this request in {BRAND_NAME}.</p>"
        "</div></div>"
    )
    return NotificationContent(subject=subject, email_html=email_html, sms_text=_sms_text(payload, url=url))
