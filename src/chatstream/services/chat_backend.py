"""HTTP client for the upstream chat backend."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx
from fastapi import status

from ..chat.types import BackendResponse, FullResponse, StreamResponse
from ..config import Settings

logger = logging.getLogger(__name__)

RESPONSE_MODE_HEADER = "X-Response-Mode"
_ASSISTANT_MODES = {"assistant", "full"}
_STREAM_MODES = {"stream", "completion"}


class ChatBackendError(Exception):
    """Wrap transport or API failures when communicating with the chat backend."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class ChatBackendClient:
    """Send user messages upstream and return a tagged full or streamed reply."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[float, httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = float(self._settings.chat_backend_timeout)
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.chat_backend_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(timeout=timeout, limits=limits, http2=True)
                self.__class__._client_pool[key] = client
        return client

    @property
    def _url(self) -> str:
        return str(self._settings.chat_backend_url)

    async def send(
        self, message: str, user_email: str, is_assistant_enabled: bool
    ) -> BackendResponse:
        """Post ``message`` and return the reply without reading a stream body."""

        payload = {
            "userMessage": message,
            "userEmail": user_email,
            "isAssistantEnabled": is_assistant_enabled,
        }
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json" if is_assistant_enabled else "application/x-ndjson",
        }

        client = await self._get_http_client()
        request = client.build_request("POST", self._url, headers=headers, json=payload)
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise ChatBackendError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            try:
                body = await response.aread()
            except httpx.HTTPError as exc:
                raise ChatBackendError(response.status_code, str(exc)) from exc
            finally:
                await response.aclose()
            raise ChatBackendError(response.status_code, self._extract_error_detail(body))

        mode = self._resolve_mode(response.headers, is_assistant_enabled)
        logger.debug("Chat backend replied with %s response (status %s)", mode, response.status_code)

        if mode == "full":
            try:
                body = await response.aread()
            except httpx.HTTPError as exc:
                raise ChatBackendError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
            finally:
                await response.aclose()
            return FullResponse(
                body=body,
                content_type=response.headers.get("Content-Type", "text/plain"),
            )

        return StreamResponse(chunks=self._iter_body(response), close=response.aclose)

    @staticmethod
    def _resolve_mode(headers: httpx.Headers, is_assistant_enabled: bool) -> str:
        declared = (headers.get(RESPONSE_MODE_HEADER) or "").strip().lower()
        if declared in _ASSISTANT_MODES:
            return "full"
        if declared in _STREAM_MODES:
            return "stream"
        return "full" if is_assistant_enabled else "stream"

    @staticmethod
    async def _iter_body(response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            raise ChatBackendError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                pass

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Chat backend returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("message") or payload.get("error") or payload
        return payload


__all__ = ["ChatBackendClient", "ChatBackendError", "RESPONSE_MODE_HEADER"]
