"""Conversation state and the per-turn chat workflow."""

from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from typing import Optional

from ..schemas.chat import ChatEvent, Message, ResponseConfig
from ..services.chat_backend import ChatBackendError
from .response_mode import ResponseModeSelector
from .types import ChatBackend, EventEmitter, PromptEnhancer, SpeechSynthesizer

logger = logging.getLogger(__name__)


class Conversation:
    """Ordered message list updated by id."""

    def __init__(self) -> None:
        self._messages: list[Message] = []

    def add_user_message(self, text: str) -> Message:
        message = Message(id=str(uuid.uuid4()), sender="user", text=text)
        self._messages.append(message)
        return message

    def upsert_ai_message(self, message_id: str, text: str) -> Message:
        message = Message(id=message_id, sender="ai", text=text)
        for index, existing in enumerate(self._messages):
            if existing.id == message_id:
                self._messages[index] = message
                return message
        self._messages.append(message)
        return message

    def snapshot(self) -> list[Message]:
        return [message.model_copy() for message in self._messages]

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)


class ChatSession:
    """Run user turns for one conversation, one at a time."""

    def __init__(
        self,
        session_id: str,
        backend: ChatBackend,
        speech: SpeechSynthesizer,
        *,
        rag: Optional[PromptEnhancer] = None,
        audio_format: str = "mp3",
    ) -> None:
        self.session_id = session_id
        self.conversation = Conversation()
        self._backend = backend
        self._speech = speech
        self._rag = rag
        self._audio_format = audio_format
        self._turn_lock = asyncio.Lock()
        self._active_cancel: Optional[asyncio.Event] = None

    @property
    def is_busy(self) -> bool:
        return self._turn_lock.locked()

    def stop(self) -> bool:
        """Ask the running turn to stop before its next read or utterance.

        Only the turn holding the lock is signalled; a turn queued behind it
        starts with a fresh event. Returns whether a turn was running.
        """

        if self._active_cancel is None:
            return False
        self._active_cancel.set()
        return True

    async def send_user_message(
        self,
        message: str,
        user_email: str,
        config: ResponseConfig,
        emit: EventEmitter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[str]:
        """Run one turn and return the AI message id, or ``None`` for blank input.

        ``cancel_event`` belongs to this turn only. Callers that need to stop
        their own turn (for example when their client disconnects) pass one in;
        otherwise a fresh event is created once the turn acquires the lock.
        """

        if not message.strip():
            return None

        async with self._turn_lock:
            turn_cancel = cancel_event or asyncio.Event()
            self._active_cancel = turn_cancel
            await emit(ChatEvent(event="status", data={"loading": True}))
            try:
                return await self._run_turn(message, user_email, config, emit, turn_cancel)
            finally:
                self._active_cancel = None
                await emit(ChatEvent(event="status", data={"loading": False}))

    async def _run_turn(
        self,
        message: str,
        user_email: str,
        config: ResponseConfig,
        emit: EventEmitter,
        cancel_event: asyncio.Event,
    ) -> str:
        user_message = self.conversation.add_user_message(message)
        await emit(ChatEvent(event="message", data=user_message.model_dump()))
        ai_message_id = str(uuid.uuid4())

        async def on_update(message_id: str, text: str) -> None:
            updated = self.conversation.upsert_ai_message(message_id, text)
            await emit(ChatEvent(event="message", data=updated.model_dump()))

        async def speak(text: str, model: Optional[str], voice: Optional[str]) -> None:
            audio = await self._speech.synthesize(text, model, voice)
            if not audio:
                return
            await emit(
                ChatEvent(
                    event="speech",
                    data={
                        "message_id": ai_message_id,
                        "text": text,
                        "format": self._audio_format,
                        "audio": base64.b64encode(audio).decode("utf-8"),
                    },
                )
            )

        try:
            prompt = message
            if config.is_rag_enabled:
                if self._rag is None:
                    raise RuntimeError("RAG is enabled but no retrieval service is configured")
                prompt = await self._rag.enhance(message, user_email, config.top_k or 3)

            response = await self._backend.send(
                prompt, user_email, config.is_assistant_enabled
            )
            selector = ResponseModeSelector(
                config,
                on_update=on_update,
                speak=speak,
                cancel_event=cancel_event,
            )
            completed = await selector.dispatch(response, ai_message_id)
            if not completed:
                await emit(
                    ChatEvent(
                        event="error",
                        data={"message_id": ai_message_id, "detail": "Unexpected response shape"},
                    )
                )
        except ChatBackendError as exc:
            logger.error("Chat backend error (status %s): %s", exc.status_code, exc.detail)
            await emit(
                ChatEvent(
                    event="error",
                    data={
                        "message_id": ai_message_id,
                        "status_code": exc.status_code,
                        "detail": str(exc.detail),
                    },
                )
            )
        except Exception as exc:
            logger.error("Chat turn failed: %s", exc, exc_info=True)
            await emit(
                ChatEvent(
                    event="error",
                    data={"message_id": ai_message_id, "detail": str(exc)},
                )
            )
        return ai_message_id


class ChatSessionManager:
    """Keep chat sessions in memory, keyed by session id."""

    def __init__(
        self,
        backend: ChatBackend,
        speech: SpeechSynthesizer,
        *,
        rag: Optional[PromptEnhancer] = None,
        audio_format: str = "mp3",
    ) -> None:
        self._backend = backend
        self._speech = speech
        self._rag = rag
        self._audio_format = audio_format
        self._sessions: dict[str, ChatSession] = {}

    def get_or_create(self, session_id: Optional[str] = None) -> ChatSession:
        session_id = session_id or uuid.uuid4().hex
        session = self._sessions.get(session_id)
        if session is None:
            session = ChatSession(
                session_id,
                self._backend,
                self._speech,
                rag=self._rag,
                audio_format=self._audio_format,
            )
            self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def drop(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.stop()
        return True


__all__ = ["ChatSession", "ChatSessionManager", "Conversation"]
