"""Pydantic models for chat requests, messages and relayed events."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    """One entry of the conversation view, keyed by a stable id."""

    id: str
    sender: Literal["user", "ai"]
    text: str = ""


class ResponseConfig(BaseModel):
    """Feature toggles snapshot for a single send."""

    is_assistant_enabled: bool = Field(
        default=False, alias="isAssistantEnabled"
    )
    is_text_to_speech_enabled: bool = Field(
        default=False, alias="isTextToSpeechEnabled"
    )
    is_rag_enabled: bool = Field(default=False, alias="isRagEnabled")
    model: Optional[str] = None
    voice: Optional[str] = None
    top_k: Optional[int] = Field(default=None, alias="topK", ge=1, le=100)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def with_defaults(
        self, *, model: str, voice: str, top_k: int
    ) -> "ResponseConfig":
        """Return a copy with blank speech/RAG settings filled in."""

        return self.model_copy(
            update={
                "model": self.model or model,
                "voice": self.voice or voice,
                "top_k": self.top_k or top_k,
            }
        )


class ChatSendRequest(BaseModel):
    """Incoming user turn."""

    session_id: Optional[str] = None
    message: str
    user_email: str = Field(alias="userEmail")
    config: ResponseConfig = Field(default_factory=ResponseConfig)

    model_config = ConfigDict(populate_by_name=True)


class ChatEvent(BaseModel):
    """Event relayed to the caller while a turn runs."""

    event: Literal["session", "message", "speech", "status", "error"]
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_sse(self) -> dict[str, str]:
        return {"event": self.event, "data": json.dumps(self.data, ensure_ascii=False)}


class ConversationSnapshot(BaseModel):
    session_id: str
    messages: List[Message]


__all__ = [
    "ChatEvent",
    "ChatSendRequest",
    "ConversationSnapshot",
    "Message",
    "ResponseConfig",
]
