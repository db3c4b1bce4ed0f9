"""Incremental processing of newline-delimited JSON token streams.

Architecture:
    byte chunks → UTF-8 decoder → raw_buffer → complete lines → token deltas
        → accumulated_text → sentences → on_update / speak

Each pass consumes every complete line in the raw buffer (everything up to
and including the last newline) and keeps the unterminated tail for the next
read. After the text grows, the whole text is resegmented, the caller is sent
the full text for the message id, and every sentence that has been closed by
a following sentence is spoken in order. The trailing sentence is only spoken
once the stream has ended.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Awaitable, Callable, Optional

from ..schemas.chat import ResponseConfig
from .segmentation import segment_sentences

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[str, str], Awaitable[None]]
SpeechCallback = Callable[[str, Optional[str], Optional[str]], Awaitable[Any]]
Segmenter = Callable[[str], list[str]]


@dataclass
class StreamBuffer:
    """Transient state for one streamed response."""

    raw_buffer: str = ""
    accumulated_text: str = ""
    sentences: list[str] = field(default_factory=list)
    next_unspoken_index: int = 0
    spoken: list[str] = field(default_factory=list)
    decode_errors: int = 0
    cancelled: bool = False

    def has_closed_sentence(self) -> bool:
        return len(self.sentences) > self.next_unspoken_index + 1


def extract_delta_content(payload: Any) -> str:
    """Return ``choices[0].delta.content`` or an empty string when absent."""

    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    choice = choices[0]
    if not isinstance(choice, dict):
        return ""
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


class StreamingResponseProcessor:
    """Turn a chunked token stream into message updates and spoken sentences."""

    def __init__(
        self,
        config: ResponseConfig,
        *,
        on_update: UpdateCallback,
        speak: SpeechCallback,
        cancel_event: asyncio.Event | None = None,
        segmenter: Segmenter = segment_sentences,
    ) -> None:
        self._config = config
        self._on_update = on_update
        self._speak = speak
        self._cancel_event = cancel_event
        self._segmenter = segmenter

    @property
    def _speech_enabled(self) -> bool:
        return self._config.is_text_to_speech_enabled

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    async def process(
        self,
        stream: AsyncIterable[bytes] | None,
        message_id: str,
    ) -> StreamBuffer | None:
        """Consume ``stream`` until it ends and return the final buffer state.

        Transport errors raised by the stream propagate to the caller; the
        updates already emitted stay in place.
        """

        if stream is None:
            logger.error("No stream available for processing the AI response")
            return None

        buffer = StreamBuffer()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        iterator = stream.__aiter__()

        while True:
            if self._cancelled():
                logger.info("Stream processing cancelled for message %s", message_id)
                buffer.cancelled = True
                return buffer
            try:
                chunk = await iterator.__anext__()
            except StopAsyncIteration:
                break
            if not chunk:
                continue
            buffer.raw_buffer += decoder.decode(chunk)
            await self._process_buffer(buffer, message_id)

        # A final line may arrive without a terminating newline.
        buffer.raw_buffer += decoder.decode(b"", final=True)
        if buffer.raw_buffer.strip():
            buffer.raw_buffer += "\n"
            await self._process_buffer(buffer, message_id)

        if self._speech_enabled and buffer.sentences and not buffer.cancelled:
            await self._speak_sentence(buffer, buffer.sentences[-1])

        logger.debug(
            "Stream finished for message %s: %d chars, %d sentences, %d bad lines",
            message_id,
            len(buffer.accumulated_text),
            len(buffer.sentences),
            buffer.decode_errors,
        )
        return buffer

    async def _process_buffer(self, buffer: StreamBuffer, message_id: str) -> None:
        boundary = buffer.raw_buffer.rfind("\n")
        if boundary == -1:
            return

        complete = buffer.raw_buffer[: boundary + 1]
        buffer.raw_buffer = buffer.raw_buffer[boundary + 1 :]

        for line in complete.split("\n"):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as exc:
                buffer.decode_errors += 1
                logger.warning("Failed to parse stream line %r: %s", line[:200], exc)
                continue
            buffer.accumulated_text += extract_delta_content(payload)

        buffer.sentences = self._segmenter(buffer.accumulated_text)
        await self._on_update(message_id, buffer.accumulated_text)

        if not self._speech_enabled:
            return
        while buffer.has_closed_sentence():
            if self._cancelled():
                buffer.cancelled = True
                return
            sentence = buffer.sentences[buffer.next_unspoken_index]
            buffer.next_unspoken_index += 1
            await self._speak_sentence(buffer, sentence)

    async def _speak_sentence(self, buffer: StreamBuffer, sentence: str) -> None:
        if self._cancelled():
            buffer.cancelled = True
            return
        buffer.spoken.append(sentence)
        try:
            await self._speak(sentence, self._config.model, self._config.voice)
        except Exception as exc:
            logger.error("Speech synthesis failed for sentence %r: %s", sentence[:80], exc)


__all__ = [
    "StreamBuffer",
    "StreamingResponseProcessor",
    "extract_delta_content",
]
