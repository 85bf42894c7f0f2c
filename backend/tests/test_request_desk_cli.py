# ruff: noqa: S101
from __future__ import annotations

import json
from uuid import UUID

import jwt
import pytest

from app.cli import request_desk
from app.core.config import settings


def test_build_analytics_url_strips_trailing_slash() -> None:
    assert (
        request_desk.build_analytics_url(base_url="http://localhost:8000/")
        == "http://localhost:8000/api/v1/requests/analytics"
    )


def test_fetch_request_analytics_sends_bearer_token(monkeypatch) -> None:
    seen: dict[str, object] = {}

    class _FakeResponse:
        status = 200

        def __init__(self, payload: dict[str, object]) -> None:
            self._payload = payload

        def read(self) -> bytes:
            return json.dumps(self._payload).encode("utf-8")

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
            return None

    def _fake_urlopen(req, timeout: int):  # noqa: ANN001
        seen["url"] = req.full_url
        seen["authorization"] = req.headers.get("Authorization")
        seen["timeout"] = timeout
        return _FakeResponse({"counts_by_stage": {"new": 2}, "sla_compliance": 100.0})

    monkeypatch.setattr(request_desk.request, "urlopen", _fake_urlopen)

    payload = request_desk.fetch_request_analytics(
        base_url="http://localhost:8000",
        token="test-token",
        timeout_seconds=9,
    )

    assert seen["url"] == "http://localhost:8000/api/v1/requests/analytics"
    assert seen["authorization"] == "Bearer test-token"
    assert seen["timeout"] == 9
    assert payload["counts_by_stage"] == {"new": 2}


def test_fetch_rejects_non_http_urls() -> None:
    with pytest.raises(ValueError, match="unsupported URL scheme"):
        request_desk.fetch_request_analytics(base_url="file:///etc", token="", timeout_seconds=1)


def test_main_prints_analytics(monkeypatch, capsys) -> None:
    def _fake_fetch(**_kwargs):  # noqa: ANN001
        return {"counts_by_stage": {"pending": 1}, "average_response_hours": 1.5}

    monkeypatch.setattr(request_desk, "fetch_request_analytics", _fake_fetch)

    exit_code = request_desk.main(["--compact", "analytics", "--token", "abc123"])

    assert exit_code == 0
    output = capsys.readouterr().out
    assert json.loads(output) == {"average_response_hours": 1.5, "counts_by_stage": {"pending": 1}}


def test_main_signs_token_for_user(capsys) -> None:
    user_id = "6a1f3c9e-0b7d-4a52-8e2f-3d4c5b6a7e8f"

    exit_code = request_desk.main(["token", "--user-id", user_id, "--ttl-hours", "1"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    claims = jwt.decode(
        payload["token"],
        key=settings.auth_jwt_secret,
        algorithms=[settings.auth_jwt_algorithm],
    )
    assert UUID(claims["sub"]) == UUID(user_id)
    assert claims["exp"] - claims["iat"] == 3600


def test_main_reports_failures(monkeypatch, capsys) -> None:
    def _failing_fetch(**_kwargs):  # noqa: ANN001
        raise OSError("connection refused")

    monkeypatch.setattr(request_desk, "fetch_request_analytics", _failing_fetch)

    assert request_desk.main(["analytics"]) == 1
    assert "connection refused" in capsys.readouterr().err
