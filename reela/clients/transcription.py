"""Gemini audio transcription client.

Produces a detailed, timestamped description of an audio clip (speech plus
soundscape) that the attachment preprocessor prefixes to a video prompt.

Dependencies:
    - google-genai: Gemini multimodal generate_content (async client)
"""

import structlog
from google import genai
from google.genai import types

from reela.exceptions import TranscriptionError

log = structlog.get_logger(__name__)

TRANSCRIPTION_INSTRUCTIONS = (
    "Generate a highly detailed description of the audio, featuring speech "
    "transcription and description of all sounds in the soundscape. Use "
    "timestamps to accurately depict the soundscape, including when sounds "
    "start, when they stop, and how they change through the audio."
)


class TranscriptionClient:
    """Best-effort audio transcription via Gemini.

    Example:
        >>> client = TranscriptionClient(api_key, model="gemini-2.5-flash")
        >>> text = await client.transcribe(audio_bytes, "audio/mpeg")
    """

    def __init__(self, api_key: str, model: str, client: genai.Client | None = None) -> None:
        self.model = model
        self.client = client or genai.Client(api_key=api_key)

    async def transcribe(self, data: bytes, mime_type: str) -> str | None:
        """Transcribe audio bytes.

        Returns:
            Transcript text, or None when the model returned no text.

        Raises:
            TranscriptionError: If the Gemini call fails.
        """
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_text(text=TRANSCRIPTION_INSTRUCTIONS),
                    types.Part.from_bytes(data=data, mime_type=mime_type),
                ],
            )
        except Exception as e:
            raise TranscriptionError(f"Audio transcription failed: {e}") from e

        text = (response.text or "").strip()
        log.info("audio_transcribed", model=self.model, mime_type=mime_type, chars=len(text))
        return text or None
