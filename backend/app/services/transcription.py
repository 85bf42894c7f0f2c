"""AssemblyAI transcript polling and flattening into the two-speaker shape."""

from __future__ import annotations

from collections.abc import Sequence

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.transcriptions import SpeakerSummary, TranscriptionRead, UtteranceRead

logger = get_logger(__name__)

SPEAKER_LABELS: dict[str, str] = {"A": "Sales Rep", "B": "Client"}
PENDING_STATUSES = frozenset({"queued", "processing"})


def format_duration(seconds: float | None) -> str:
    """Render whole seconds as ``M:SS``; 125 -> ``2:05``."""
    total = max(0, int(seconds or 0))
    minutes, remainder = divmod(total, 60)
    return f"{minutes}:{remainder:02d}"


def confidence_percent(confidence: float | None) -> int:
    """Convert a 0-1 provider confidence into a clamped 0-100 integer."""
    if confidence is None:
        return 0
    return max(0, min(100, round(float(confidence) * 100)))


def speaker_label(speaker: str) -> str:
    return SPEAKER_LABELS.get(speaker, f"Speaker {speaker}")


def _utterances(raw: object) -> list[UtteranceRead]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return []
    utterances: list[UtteranceRead] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        text = item.get("text")
        if not isinstance(text, str) or not text.strip():
            continue
        speaker = str(item.get("speaker") or "A")
        utterances.append(
            UtteranceRead(
                speaker=speaker,
                label=speaker_label(speaker),
                text=text.strip(),
                start_ms=item.get("start") if isinstance(item.get("start"), int) else None,
                end_ms=item.get("end") if isinstance(item.get("end"), int) else None,
            ),
        )
    return utterances


def flatten_transcript(payload: dict[str, object]) -> TranscriptionRead:
    """Map a provider transcript document onto the poll response."""
    status = str(payload.get("status") or "")
    if status in PENDING_STATUSES:
        return TranscriptionRead(status="processing")
    if status != "completed":
        error = payload.get("error")
        return TranscriptionRead(status="error", error=str(error) if error else f"Unexpected status: {status}")

    utterances = _utterances(payload.get("utterances"))
    if utterances:
        text = "\n\n".join(f"{utterance.label}: {utterance.text}" for utterance in utterances)
    else:
        text = str(payload.get("text") or "")
    counts = {speaker_id: 0 for speaker_id in SPEAKER_LABELS}
    for utterance in utterances:
        if utterance.speaker in counts:
            counts[utterance.speaker] += 1

    duration = payload.get("audio_duration")
    confidence = payload.get("confidence")
    return TranscriptionRead(
        status="completed",
        text=text,
        duration=format_duration(duration if isinstance(duration, (int, float)) else None),
        confidence=confidence_percent(confidence if isinstance(confidence, (int, float)) else None),
        speakers=[
            SpeakerSummary(id=speaker_id, label=label, utterances=counts[speaker_id])
            for speaker_id, label in SPEAKER_LABELS.items()
        ],
        utterances=utterances,
    )


class AssemblyAIAdapter:
    """Read-only transcript lookups against the AssemblyAI v2 API."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = (api_key if api_key is not None else settings.assemblyai_api_key).strip()
        self.base_url = (base_url or settings.assemblyai_base_url).rstrip("/")
        self.timeout_seconds = max(
            1,
            int(timeout_seconds if timeout_seconds is not None else settings.transcription_timeout_seconds),
        )
        self.transport = transport

    async def poll(self, transcript_id: str) -> TranscriptionRead:
        if not self.api_key:
            logger.warning("transcription.adapter.missing_api_key")
            return TranscriptionRead(status="error", error="Transcription service is not configured")
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                headers={"authorization": self.api_key},
                transport=self.transport,
            ) as client:
                response = await client.get(f"/v2/transcript/{transcript_id}")
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "transcription.adapter.poll_failed",
                extra={"transcript_id": transcript_id, "error": str(exc)},
            )
            return TranscriptionRead(status="error", error=str(exc))

        if not isinstance(payload, dict):
            return TranscriptionRead(status="error", error="Malformed transcript response")
        result = flatten_transcript(payload)
        if result.status == "error":
            logger.warning(
                "transcription.adapter.provider_error",
                extra={"transcript_id": transcript_id, "error": result.error},
            )
        return result
