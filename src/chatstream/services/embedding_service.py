"""Embedding generation through the OpenAI embeddings API."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Iterable, Optional

import openai
from pydantic import BaseModel, Field

from ..config import Settings

logger = logging.getLogger(__name__)


class EmbeddingItem(BaseModel):
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class EmbeddingRecord(BaseModel):
    id: str
    values: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)


class EmbeddingResponse(BaseModel):
    embeddings: list[EmbeddingRecord]


class EmbeddingError(Exception):
    """Raised when embeddings cannot be generated for a request."""


def transform_metadata_values(metadata: dict[str, Any]) -> dict[str, Any]:
    """Flatten nested objects into ``["key:<json>", ...]`` lists.

    Vector stores only accept scalar or list-of-string metadata values.
    """

    transformed: dict[str, Any] = {}
    for key, value in metadata.items():
        if isinstance(value, dict):
            transformed[key] = [
                f"{inner_key}:{json.dumps(inner_value)}"
                for inner_key, inner_value in value.items()
            ]
        elif isinstance(value, (list, tuple)):
            transformed[key] = [
                f"{index}:{json.dumps(inner_value)}"
                for index, inner_value in enumerate(value)
            ]
        else:
            transformed[key] = value
    return transformed


class EmbeddingService:
    """Create one embedding per input item, stamped with the owner's e-mail."""

    def __init__(
        self,
        settings: Settings,
        *,
        openai_client: Optional[openai.AsyncOpenAI] = None,
    ) -> None:
        self._settings = settings
        self._client = openai_client

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

    async def embed(
        self,
        items: Iterable[EmbeddingItem | dict[str, Any]],
        user_email: str,
    ) -> EmbeddingResponse:
        if not user_email:
            raise EmbeddingError("user_email is required to generate embeddings")

        parsed = [
            item if isinstance(item, EmbeddingItem) else EmbeddingItem.model_validate(item)
            for item in items
        ]
        if not parsed:
            raise EmbeddingError("At least one item is required to generate embeddings")

        client = self._get_client()
        records: list[EmbeddingRecord] = []
        for item in parsed:
            try:
                response = await client.embeddings.create(
                    model=self._settings.embedding_model,
                    input=item.text,
                    encoding_format="float",
                )
            except openai.OpenAIError as exc:
                logger.error("Error generating embeddings: %s", exc)
                raise EmbeddingError(str(exc)) from exc

            metadata = transform_metadata_values(item.metadata)
            metadata["user_email"] = user_email
            records.append(
                EmbeddingRecord(
                    id=str(uuid.uuid4()),
                    values=list(response.data[0].embedding),
                    metadata=metadata,
                )
            )

        logger.debug("Generated %d embeddings for %s", len(records), user_email)
        return EmbeddingResponse(embeddings=records)


__all__ = [
    "EmbeddingError",
    "EmbeddingItem",
    "EmbeddingRecord",
    "EmbeddingResponse",
    "EmbeddingService",
    "transform_metadata_values",
]
