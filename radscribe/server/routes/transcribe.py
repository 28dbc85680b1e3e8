"""Server-side speech-to-text endpoint.

The request body is the raw audio file.  The optional ``X-Filename`` header
carries the original name so the format can be inferred.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import BaseModel

from radscribe.errors import GenerationTransportError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

_MAX_AUDIO_BYTES = 25 * 1024 * 1024  # upstream transcription upload limit


class TranscriptionResponse(BaseModel):
    text: str
    audio_seconds: float


@router.post("/transcribe", response_model=TranscriptionResponse)
async def transcribe(
    request: Request,
    x_filename: str | None = Header(default=None),
) -> TranscriptionResponse:
    audio = await request.body()
    if not audio:
        raise HTTPException(status_code=400, detail="No audio data")
    if len(audio) > _MAX_AUDIO_BYTES:
        raise HTTPException(status_code=413, detail="Audio file too large")

    try:
        result = await request.app.state.speech.transcribe(
            audio, filename=x_filename or "dictation.webm"
        )
    except GenerationTransportError as exc:
        logger.warning("Transcription unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Transcription unavailable") from exc

    return TranscriptionResponse(text=result.text, audio_seconds=result.audio_seconds)
