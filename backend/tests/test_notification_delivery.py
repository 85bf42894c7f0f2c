# ruff: noqa: S101
from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import pytest

from app.services.notifications.delivery import (
    DeliveryError,
    SendGridEmailSender,
    TwilioSmsSender,
    format_sms_destination,
)


def test_format_sms_destination_handles_us_numbers() -> None:
    assert format_sms_destination("(555) 123-4567") == "+15551234567"
    assert format_sms_destination("15551234567") == "+15551234567"
    assert format_sms_destination("+447700900123") == "+447700900123"
    assert format_sms_destination("12345") == "12345"


@pytest.mark.asyncio
async def test_sendgrid_sender_posts_html_mail_with_bearer_token() -> None:
    seen: dict[str, object] = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["authorization"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(202)

    sender = SendGridEmailSender(
        api_key="sg-test",
        base_url="https://sendgrid.test",
        from_email="alerts@example.com",
        from_name="Hub",
        transport=httpx.MockTransport(_handler),
    )
    await sender.send(to="rep@example.com", subject="Assigned", html="<p>hi</p>")

    body = seen["body"]
    assert seen["path"] == "/v3/mail/send"
    assert seen["authorization"] == "Bearer sg-test"
    assert isinstance(body, dict)
    assert body["personalizations"] == [{"to": [{"email": "rep@example.com"}]}]
    assert body["from"] == {"email": "alerts@example.com", "name": "Hub"}
    assert body["content"] == [{"type": "text/html", "value": "<p>hi</p>"}]


@pytest.mark.asyncio
async def test_sendgrid_sender_raises_on_provider_error() -> None:
    sender = SendGridEmailSender(
        api_key="sg-test",
        base_url="https://sendgrid.test",
        transport=httpx.MockTransport(lambda _request: httpx.Response(401, text="bad key")),
    )
    with pytest.raises(DeliveryError):
        await sender.send(to="rep@example.com", subject="s", html="h")


@pytest.mark.asyncio
async def test_sendgrid_sender_requires_api_key() -> None:
    sender = SendGridEmailSender(api_key="", transport=httpx.MockTransport(lambda _r: httpx.Response(202)))
    with pytest.raises(DeliveryError):
        await sender.send(to="rep@example.com", subject="s", html="h")


@pytest.mark.asyncio
async def test_twilio_sender_posts_form_with_basic_auth_and_truncated_body() -> None:
    seen: dict[str, object] = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["authorization"] = request.headers.get("authorization")
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(201, json={"sid": "SM1"})

    sender = TwilioSmsSender(
        account_sid="AC123",
        auth_token="secret",
        from_number="+15550000000",
        base_url="https://twilio.test",
        transport=httpx.MockTransport(_handler),
    )
    assert sender.configured is True
    await sender.send(to="555-123-4567", body="z" * 200)

    form = seen["form"]
    assert seen["path"] == "/2010-04-01/Accounts/AC123/Messages.json"
    assert str(seen["authorization"]).startswith("Basic ")
    assert isinstance(form, dict)
    assert form["To"] == ["+15551234567"]
    assert form["From"] == ["+15550000000"]
    assert len(form["Body"][0]) == 160


@pytest.mark.asyncio
async def test_unconfigured_twilio_sender_refuses_to_send() -> None:
    sender = TwilioSmsSender(account_sid="", auth_token="", from_number="")
    assert sender.configured is False
    with pytest.raises(DeliveryError):
        await sender.send(to="5551234567", body="hello")
