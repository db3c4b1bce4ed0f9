"""Speech synthesis through the OpenAI audio API."""

import logging
from typing import Optional

import openai

from ..config import Settings

logger = logging.getLogger(__name__)


class SpeechSynthesisService:
    """
    Service for Text-to-Speech generation.

    Each call synthesizes one utterance and returns the encoded audio. Calls
    are made one at a time by the chat session so utterances stay in sentence
    order; callers treat failures as non-fatal.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        openai_client: Optional[openai.AsyncOpenAI] = None,
    ):
        self._settings = settings
        self._client = openai_client

        if openai_client is None and not settings.openai_api_key:
            logger.warning("No OpenAI API key configured. TTS will not be available.")

    @property
    def response_format(self) -> str:
        return self._settings.tts_response_format

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            api_key = (
                self._settings.openai_api_key.get_secret_value()
                if self._settings.openai_api_key
                else None
            )
            base_url = (
                str(self._settings.openai_base_url)
                if self._settings.openai_base_url
                else None
            )
            self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)
        return self._client

    async def synthesize(
        self, text: str, model: Optional[str] = None, voice: Optional[str] = None
    ) -> bytes:
        """Synthesize ``text`` and return the audio bytes (empty for blank text)."""

        stripped = text.strip()
        if not stripped:
            return b""

        model = model or self._settings.tts_model
        voice = voice or self._settings.tts_voice
        logger.info(
            "TTS: synthesizing %d chars (model=%s, voice=%s): %r",
            len(stripped),
            model,
            voice,
            stripped[:80],
        )

        audio = bytearray()
        async with self._get_client().audio.speech.with_streaming_response.create(
            model=model,
            voice=voice,
            input=stripped,
            response_format=self.response_format,
        ) as response:
            async for chunk in response.iter_bytes():
                audio.extend(chunk)
        return bytes(audio)


__all__ = ["SpeechSynthesisService"]
