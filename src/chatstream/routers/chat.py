"""Chat turn API routes."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sse_starlette.sse import EventSourceResponse

from ..chat.conversation import ChatSession, ChatSessionManager
from ..config import Settings, get_settings
from ..schemas.chat import ChatEvent, ChatSendRequest, ConversationSnapshot, ResponseConfig

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


def get_session_manager(request: Request) -> ChatSessionManager:
    return request.app.state.chat_sessions


def _require_session(manager: ChatSessionManager, session_id: str) -> ChatSession:
    session = manager.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")
    return session


async def stream_turn_events(
    session: ChatSession,
    message: str,
    user_email: str,
    config: ResponseConfig,
) -> AsyncGenerator[dict[str, str], None]:
    """Run one turn in the background and yield its events as SSE payloads."""

    queue: asyncio.Queue[Optional[ChatEvent]] = asyncio.Queue()
    turn_cancel = asyncio.Event()

    async def emit(event: ChatEvent) -> None:
        await queue.put(event)

    async def run_turn() -> None:
        try:
            await session.send_user_message(
                message, user_email, config, emit, cancel_event=turn_cancel
            )
        finally:
            await queue.put(None)

    yield ChatEvent(event="session", data={"session_id": session.session_id}).to_sse()

    task = asyncio.create_task(run_turn())
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            yield event.to_sse()
        await task
    finally:
        if not task.done():
            logger.info("Client left session %s mid-turn; stopping", session.session_id)
            turn_cancel.set()
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


@router.post("/chat/send", response_model=None, status_code=200)
async def send_chat_message(
    payload: ChatSendRequest,
    manager: ChatSessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
) -> EventSourceResponse:
    """Run a user turn and relay message, speech and status events over SSE."""

    session = manager.get_or_create(payload.session_id)
    config = payload.config.with_defaults(
        model=settings.tts_model,
        voice=settings.tts_voice,
        top_k=settings.default_top_k,
    )
    return EventSourceResponse(
        stream_turn_events(session, payload.message, payload.user_email, config)
    )


@router.post("/chat/session/{session_id}/stop", status_code=202)
async def stop_chat_turn(
    session_id: str,
    manager: ChatSessionManager = Depends(get_session_manager),
) -> dict[str, object]:
    session = _require_session(manager, session_id)
    return {"session_id": session_id, "stopping": session.stop()}


@router.get("/chat/session/{session_id}/messages", response_model=ConversationSnapshot)
async def get_chat_messages(
    session_id: str,
    manager: ChatSessionManager = Depends(get_session_manager),
) -> ConversationSnapshot:
    session = _require_session(manager, session_id)
    return ConversationSnapshot(
        session_id=session_id, messages=session.conversation.snapshot()
    )


@router.delete("/chat/session/{session_id}", status_code=204)
async def clear_chat_session(
    session_id: str,
    manager: ChatSessionManager = Depends(get_session_manager),
) -> Response:
    manager.drop(session_id)
    return Response(status_code=204)


__all__ = ["get_session_manager", "router", "stream_turn_events"]
