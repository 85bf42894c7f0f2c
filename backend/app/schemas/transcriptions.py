"""Schemas for the transcription poll endpoint."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

TranscriptionStatus = Literal["processing", "completed", "error"]


class SpeakerSummary(BaseModel):
    id: str
    label: str
    utterances: int = 0


class UtteranceRead(BaseModel):
    speaker: str
    label: str
    text: str
    start_ms: int | None = None
    end_ms: int | None = None


class TranscriptionRead(BaseModel):
    """Flattened transcript; only ``status`` is set until processing finishes."""

    status: TranscriptionStatus
    text: str | None = None
    duration: str | None = None
    confidence: int | None = Field(default=None, ge=0, le=100)
    speakers: list[SpeakerSummary] | None = None
    utterances: list[UtteranceRead] | None = None
    error: str | None = None
