"""Dispatch a backend reply to the buffered or the streaming flow."""

from __future__ import annotations

import asyncio
import json
import logging

from ..schemas.chat import ResponseConfig
from .stream_processor import (
    SpeechCallback,
    StreamingResponseProcessor,
    UpdateCallback,
)
from .types import BackendResponse, FullResponse, StreamResponse

logger = logging.getLogger(__name__)


class ResponseShapeError(Exception):
    """The backend returned a payload kind that the active mode cannot handle."""

    def __init__(self, expected: str, received: object):
        received_kind = getattr(received, "kind", type(received).__name__)
        super().__init__(f"Expected a {expected} response, received: {received_kind}")
        self.expected = expected
        self.received = received_kind


class ResponseModeSelector:
    """Route a tagged backend response according to ``is_assistant_enabled``."""

    def __init__(
        self,
        config: ResponseConfig,
        *,
        on_update: UpdateCallback,
        speak: SpeechCallback,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._config = config
        self._on_update = on_update
        self._speak = speak
        self._cancel_event = cancel_event

    async def dispatch(self, response: BackendResponse, message_id: str) -> bool:
        """Process ``response`` for ``message_id``.

        Returns ``False`` when the turn was aborted because the payload shape
        does not match the active mode or a full reply could not be decoded.
        """

        try:
            if self._config.is_assistant_enabled:
                if not isinstance(response, FullResponse):
                    raise ResponseShapeError("full", response)
                return await self._process_full(response, message_id)

            if not isinstance(response, StreamResponse):
                raise ResponseShapeError("stream", response)
            return await self._process_stream(response, message_id)
        except ResponseShapeError as exc:
            logger.error("%s", exc)
            if isinstance(response, StreamResponse):
                await response.aclose()
            return False

    async def _process_full(self, response: FullResponse, message_id: str) -> bool:
        try:
            data = response.decode()
        except ValueError as exc:
            logger.error("Error processing response: %s", exc)
            return False

        text = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
        await self._on_update(message_id, text)

        if self._config.is_text_to_speech_enabled and text:
            if self._cancel_event is not None and self._cancel_event.is_set():
                return True
            try:
                await self._speak(text, self._config.model, self._config.voice)
            except Exception as exc:
                logger.error("Speech synthesis failed for assistant reply: %s", exc)
        return True

    async def _process_stream(self, response: StreamResponse, message_id: str) -> bool:
        processor = StreamingResponseProcessor(
            self._config,
            on_update=self._on_update,
            speak=self._speak,
            cancel_event=self._cancel_event,
        )
        try:
            await processor.process(response.chunks, message_id)
        finally:
            await response.aclose()
        return True


__all__ = ["ResponseModeSelector", "ResponseShapeError"]
