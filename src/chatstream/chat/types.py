"""Type definitions shared by the chat subsystem."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Literal, Optional, Protocol, Union

from ..schemas.chat import ChatEvent

EventEmitter = Callable[[ChatEvent], Awaitable[None]]


@dataclass
class FullResponse:
    """A complete reply returned in assistant mode."""

    body: bytes
    content_type: str = "text/plain"
    kind: Literal["full"] = "full"

    @property
    def is_json(self) -> bool:
        return "application/json" in (self.content_type or "").lower()

    def decode(self) -> Any:
        text = self.body.decode("utf-8", errors="replace")
        if self.is_json:
            return json.loads(text)
        return text


@dataclass
class StreamResponse:
    """A live token stream returned in completion mode."""

    chunks: AsyncIterator[bytes]
    close: Optional[Callable[[], Awaitable[None]]] = None
    kind: Literal["stream"] = "stream"

    async def aclose(self) -> None:
        if self.close is not None:
            await self.close()


BackendResponse = Union[FullResponse, StreamResponse]


class ChatBackend(Protocol):
    async def send(
        self, message: str, user_email: str, is_assistant_enabled: bool
    ) -> BackendResponse:
        ...


class SpeechSynthesizer(Protocol):
    async def synthesize(
        self, text: str, model: str | None = None, voice: str | None = None
    ) -> bytes:
        ...


class PromptEnhancer(Protocol):
    async def enhance(self, message: str, user_email: str, top_k: int) -> str:
        ...


__all__ = [
    "BackendResponse",
    "ChatBackend",
    "EventEmitter",
    "FullResponse",
    "PromptEnhancer",
    "SpeechSynthesizer",
    "StreamResponse",
]
