"""Transcript polling endpoint backed by AssemblyAI."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from app.api.deps import USER_DEP
from app.models.users import User
from app.schemas.transcriptions import TranscriptionRead
from app.services.transcription import AssemblyAIAdapter

router = APIRouter(prefix="/transcriptions", tags=["transcriptions"])
TRANSCRIPT_ID_QUERY = Query(default=None, alias="id")
_RUNTIME_TYPE_REFERENCES = (User,)


def get_transcription_adapter() -> AssemblyAIAdapter:
    return AssemblyAIAdapter()


ADAPTER_DEP = Depends(get_transcription_adapter)


@router.get("", response_model=TranscriptionRead, response_model_exclude_none=True)
async def poll_transcription(
    transcript_id: str | None = TRANSCRIPT_ID_QUERY,
    _user: User = USER_DEP,
    adapter: AssemblyAIAdapter = ADAPTER_DEP,
) -> TranscriptionRead | JSONResponse:
    """Return the flattened transcript, or ``processing`` until the provider finishes."""
    if not transcript_id or not transcript_id.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing transcript ID")
    result = await adapter.poll(transcript_id.strip())
    if result.status == "error":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=result.model_dump(exclude_none=True),
        )
    return result
