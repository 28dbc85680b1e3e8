"""Server-side speech-to-text for dictation audio.

Produces the refined ``server_transcript`` that takes priority during
reconciliation.  Uses the OpenAI audio transcription endpoint; the audio
duration is estimated from the upload size so it can be charged later,
together with the message it belongs to.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass

from radscribe.config import RadscribeSettings
from radscribe.errors import GenerationTransportError

logger = logging.getLogger(__name__)

# Compressed speech runs at roughly 1 MB per minute
_BYTES_PER_MINUTE = 1024 * 1024
_MIN_SECONDS = 6.0


@dataclass(frozen=True)
class Transcription:
    text: str
    audio_seconds: float


def estimate_audio_seconds(size_bytes: int) -> float:
    """Duration estimate from file size, never below 0.1 minute."""
    return max(size_bytes / _BYTES_PER_MINUTE * 60.0, _MIN_SECONDS)


class SpeechToText:
    def __init__(self, settings: RadscribeSettings) -> None:
        self.settings = settings
        self._client: object | None = None

    async def transcribe(self, audio: bytes, filename: str = "dictation.webm") -> Transcription:
        """Transcribe one recording.

        Raises:
            ValueError: *audio* is empty.
            GenerationTransportError: The service is unconfigured or failed.
        """
        if not audio:
            raise ValueError("No audio data")
        if not self.settings.openai_api_key:
            raise GenerationTransportError(
                "Transcription needs RADSCRIBE_OPENAI_API_KEY", retryable=False
            )

        import openai

        if self._client is None:
            self._client = openai.AsyncOpenAI(api_key=self.settings.openai_api_key)
        client: openai.AsyncOpenAI = self._client  # type: ignore[assignment]

        upload = io.BytesIO(audio)
        upload.name = filename  # the SDK infers the audio format from the name

        logger.debug("Transcribing %d bytes with %s", len(audio), self.settings.whisper_model)
        try:
            text = await asyncio.wait_for(
                client.audio.transcriptions.create(
                    model=self.settings.whisper_model,
                    file=upload,
                    language=self.settings.whisper_language,
                    response_format="text",
                ),
                timeout=self.settings.generation_timeout_seconds,
            )
        except (openai.OpenAIError, asyncio.TimeoutError) as exc:
            raise GenerationTransportError(
                f"Transcription failed: {type(exc).__name__}"
            ) from exc

        return Transcription(
            text=str(text).strip(),
            audio_seconds=estimate_audio_seconds(len(audio)),
        )
