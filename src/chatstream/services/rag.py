"""Retrieval-augmented prompt construction."""

from __future__ import annotations

import json
import logging

from .embedding_service import EmbeddingItem, EmbeddingService
from .vector_db import VectorDbService, VectorQueryResponse

logger = logging.getLogger(__name__)

RAG_PROMPT_TEMPLATE = """
        FOLLOW THESE INSTRUCTIONS AT ALL TIMES:
        1. Please ONLY make use of context provided to very briefly respond to the user prompt.
        2. Otherwise, inform the user that you are unable to assist with their request.
        CONTEXT: {context}
        PROMPT: {message}
        """


def build_context(result: VectorQueryResponse) -> list[dict[str, str]]:
    context: list[dict[str, str]] = []
    for match in result.response.matches:
        text = (match.metadata or {}).get("text")
        if isinstance(text, str) and text:
            context.append({"text": text})
    return context


def build_rag_prompt(message: str, context: list[dict[str, str]]) -> str:
    return RAG_PROMPT_TEMPLATE.format(
        context=json.dumps(context, ensure_ascii=False, separators=(",", ":")),
        message=message,
    )


class RagService:
    """Wrap a user message with context retrieved from the user's documents."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_db_service: VectorDbService,
    ) -> None:
        self._embeddings = embedding_service
        self._vector_db = vector_db_service

    async def enhance(self, message: str, user_email: str, top_k: int) -> str:
        embedded = await self._embeddings.embed(
            [EmbeddingItem(text=message, metadata={"user_email": user_email})],
            user_email,
        )
        result = await self._vector_db.query(embedded.embeddings, user_email, top_k)
        context = build_context(result)
        logger.info(
            "RAG context for %s: %d of %d matches usable",
            user_email,
            len(context),
            len(result.response.matches),
        )
        return build_rag_prompt(message, context)


__all__ = ["RAG_PROMPT_TEMPLATE", "RagService", "build_context", "build_rag_prompt"]
