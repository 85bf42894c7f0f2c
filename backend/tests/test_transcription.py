# ruff: noqa: S101
from __future__ import annotations

from uuid import uuid4

import httpx
import pytest
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient

from app.api.deps import require_user
from app.api.transcriptions import get_transcription_adapter
from app.api.transcriptions import router as transcriptions_router
from app.models.users import User
from app.services.transcription import (
    AssemblyAIAdapter,
    confidence_percent,
    flatten_transcript,
    format_duration,
)

COMPLETED_TRANSCRIPT = {
    "id": "tr_123",
    "status": "completed",
    "text": "Hi there. Hello.",
    "audio_duration": 125.7,
    "confidence": 0.914,
    "utterances": [
        {"speaker": "A", "text": "Hi there, thanks for calling.", "start": 0, "end": 1800},
        {"speaker": "B", "text": " I need a quote for a cedar fence. ", "start": 1900, "end": 4200},
        {"speaker": "A", "text": "Happy to help.", "start": 4300, "end": 5000},
        {"speaker": "C", "text": "   "},
    ],
}


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(125, "2:05"), (59, "0:59"), (0, "0:00"), (None, "0:00"), (3600, "60:00")],
)
def test_format_duration(seconds: float | None, expected: str) -> None:
    assert format_duration(seconds) == expected


def test_confidence_percent_is_clamped() -> None:
    assert confidence_percent(0.914) == 91
    assert confidence_percent(1.4) == 100
    assert confidence_percent(None) == 0


def test_flatten_completed_transcript_labels_speakers() -> None:
    result = flatten_transcript(COMPLETED_TRANSCRIPT)

    assert result.status == "completed"
    assert result.duration == "2:05"
    assert result.confidence == 91
    assert result.text == (
        "Sales Rep: Hi there, thanks for calling.\n\n"
        "Client: I need a quote for a cedar fence.\n\n"
        "Sales Rep: Happy to help."
    )
    assert [(speaker.id, speaker.utterances) for speaker in result.speakers or []] == [("A", 2), ("B", 1)]
    assert result.utterances is not None
    assert result.utterances[1].start_ms == 1900


def test_flatten_falls_back_to_plain_text_without_utterances() -> None:
    result = flatten_transcript({"status": "completed", "text": "Just text", "audio_duration": 5})
    assert result.text == "Just text"
    assert result.utterances == []


def test_flatten_pending_and_failed_statuses() -> None:
    assert flatten_transcript({"status": "queued"}).model_dump(exclude_none=True) == {"status": "processing"}
    failed = flatten_transcript({"status": "error", "error": "Audio file is corrupt"})
    assert failed.status == "error"
    assert failed.error == "Audio file is corrupt"


@pytest.mark.asyncio
async def test_adapter_sends_api_key_and_parses_response() -> None:
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["authorization"] = request.headers["authorization"]
        return httpx.Response(200, json=COMPLETED_TRANSCRIPT)

    adapter = AssemblyAIAdapter(
        api_key="aai-key",
        base_url="https://assembly.example.test",
        transport=httpx.MockTransport(handler),
    )
    result = await adapter.poll("tr_123")

    assert seen == {"path": "/v2/transcript/tr_123", "authorization": "aai-key"}
    assert result.status == "completed"


@pytest.mark.asyncio
async def test_adapter_reports_http_failures_and_missing_key() -> None:
    adapter = AssemblyAIAdapter(
        api_key="aai-key",
        base_url="https://assembly.example.test",
        transport=httpx.MockTransport(lambda _request: httpx.Response(503, text="unavailable")),
    )
    assert (await adapter.poll("tr_123")).status == "error"

    unconfigured = AssemblyAIAdapter(api_key="", base_url="https://assembly.example.test")
    result = await unconfigured.poll("tr_123")
    assert result.error == "Transcription service is not configured"


@pytest.mark.asyncio
async def test_poll_route_maps_statuses() -> None:
    responses = {
        "tr_done": httpx.Response(200, json=COMPLETED_TRANSCRIPT),
        "tr_wait": httpx.Response(200, json={"status": "processing"}),
        "tr_bad": httpx.Response(200, json={"status": "error", "error": "Unsupported codec"}),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return responses[request.url.path.rsplit("/", 1)[-1]]

    app = FastAPI()
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(transcriptions_router)
    app.include_router(api_v1)
    app.dependency_overrides[require_user] = lambda: User(id=uuid4(), email="rep@example.com")
    app.dependency_overrides[get_transcription_adapter] = lambda: AssemblyAIAdapter(
        api_key="aai-key",
        base_url="https://assembly.example.test",
        transport=httpx.MockTransport(handler),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        missing = await client.get("/api/v1/transcriptions")
        assert missing.status_code == 400
        assert missing.json() == {"detail": "Missing transcript ID"}

        waiting = await client.get("/api/v1/transcriptions", params={"id": "tr_wait"})
        assert waiting.json() == {"status": "processing"}

        done = await client.get("/api/v1/transcriptions", params={"id": "tr_done"})
        assert done.status_code == 200
        assert done.json()["duration"] == "2:05"
        assert done.json()["speakers"][1] == {"id": "B", "label": "Client", "utterances": 1}

        failed = await client.get("/api/v1/transcriptions", params={"id": "tr_bad"})
        assert failed.status_code == 500
        assert failed.json() == {"status": "error", "error": "Unsupported codec"}
