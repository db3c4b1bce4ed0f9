"""Vector database queries against a Pinecone-style REST index."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import httpx
from fastapi import status
from pydantic import BaseModel, Field

from ..config import Settings
from .embedding_service import EmbeddingRecord

logger = logging.getLogger(__name__)


class VectorMatch(BaseModel):
    id: Optional[str] = None
    score: Optional[float] = None
    metadata: Optional[dict[str, Any]] = None


class VectorQueryResult(BaseModel):
    matches: list[VectorMatch] = Field(default_factory=list)
    namespace: Optional[str] = None


class VectorQueryResponse(BaseModel):
    response: VectorQueryResult


class VectorDbError(Exception):
    """Wrap transport or API failures when querying the vector database."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class VectorDbService:
    """Query the user's namespace for the nearest stored chunks."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings
        self._http_client = http_client

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._settings.vector_db_timeout
            )
        return self._http_client

    @property
    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._settings.vector_db_api_key:
            headers["Api-Key"] = self._settings.vector_db_api_key.get_secret_value()
        return headers

    async def query(
        self,
        vectors: Iterable[EmbeddingRecord | list[float]],
        user_email: str,
        top_k: int,
    ) -> VectorQueryResponse:
        """Return the top ``top_k`` matches for every vector, in query order."""

        if self._settings.vector_db_url is None:
            raise VectorDbError(
                status.HTTP_503_SERVICE_UNAVAILABLE, "VECTOR_DB_URL is not configured"
            )
        url = f"{str(self._settings.vector_db_url).rstrip('/')}/query"
        client = self._get_http_client()

        matches: list[VectorMatch] = []
        for vector in vectors:
            values = vector.values if isinstance(vector, EmbeddingRecord) else list(vector)
            payload = {
                "vector": values,
                "topK": top_k,
                "namespace": user_email,
                "includeMetadata": True,
                "includeValues": False,
            }
            try:
                response = await client.post(url, headers=self._headers, json=payload)
            except httpx.HTTPError as exc:
                raise VectorDbError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

            if response.status_code >= 400:
                raise VectorDbError(response.status_code, response.text)

            try:
                body = response.json()
            except ValueError as exc:
                raise VectorDbError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

            for raw_match in body.get("matches") or []:
                matches.append(VectorMatch.model_validate(raw_match))

        logger.debug("Vector query for %s returned %d matches", user_email, len(matches))
        return VectorQueryResponse(
            response=VectorQueryResult(matches=matches, namespace=user_email)
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


__all__ = [
    "VectorDbError",
    "VectorDbService",
    "VectorMatch",
    "VectorQueryResponse",
    "VectorQueryResult",
]
