"""HTTP client for the upstream OpenWebUI-compatible completion backend."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Optional

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Wrap transport or API failures when communicating with the backend."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class UpstreamStreamReleased(RuntimeError):
    """Raised when reading from a stream whose reader was already released."""


class UpstreamStream:
    """An open streamed completion response.

    ``release`` is the single cleanup step for every exit path. It is safe to
    call more than once and completes even if the caller is being cancelled.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._released = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def released(self) -> bool:
        return self._released

    async def chunks(self) -> AsyncGenerator[bytes, None]:
        """Yield raw body chunks as they arrive."""

        if self._released:
            raise UpstreamStreamReleased("Upstream reader has been released")
        try:
            async for chunk in self._response.aiter_bytes():
                if self._released:
                    raise UpstreamStreamReleased("Upstream reader has been released")
                yield chunk
        except httpx.StreamError as exc:
            if self._released:
                raise UpstreamStreamReleased(str(exc)) from exc
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        await asyncio.shield(self._response.aclose())


class UpstreamClient:
    """Client responsible for streaming completions and side-channel calls."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                self._client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                    transport=self._transport,
                )
        return self._client

    @property
    def _auth_headers(self) -> dict[str, str]:
        api_key = self._settings.upstream_api_key.get_secret_value()
        if not api_key:
            return {}
        return {"Authorization": f"Bearer {api_key}"}

    @property
    def _headers(self) -> dict[str, str]:
        headers = dict(self._auth_headers)
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "text/event-stream"
        return headers

    @property
    def _json_headers(self) -> dict[str, str]:
        headers = dict(self._auth_headers)
        headers["Accept"] = "application/json"
        return headers

    @property
    def _base_url(self) -> str:
        """Return the backend base URL without a trailing slash."""

        return str(self._settings.upstream_base_url).rstrip("/")

    def url_for(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def open_chat_stream(self, payload: dict[str, Any]) -> UpstreamStream:
        """Send the completion request and return the open response stream.

        Raises :class:`UpstreamError` for transport failures, non-ok statuses
        and responses without a body; no stream is left open in that case.
        """

        url = self.url_for(self._settings.chat_completions_path)
        client = await self._get_http_client()
        request = client.build_request(
            "POST",
            url,
            headers=self._headers,
            json=payload,
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            try:
                body = await response.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await response.aclose()
            detail = self._extract_error_detail(body)
            logger.warning(
                "Upstream completion request failed with %d: %s",
                response.status_code,
                detail,
            )
            raise UpstreamError(response.status_code, detail)

        if response.status_code == status.HTTP_204_NO_CONTENT:
            await response.aclose()
            raise UpstreamError(
                status.HTTP_502_BAD_GATEWAY, "Upstream returned no response body"
            )

        logger.debug("Upstream stream opened (%d) for %s", response.status_code, url)
        return UpstreamStream(response)

    async def list_tool_servers(self) -> Any:
        """Return the raw payload describing available tool servers."""

        return await self._get_json(self._settings.tool_servers_path)

    async def upload_file(
        self,
        *,
        filename: str,
        data: bytes,
        content_type: str,
    ) -> dict[str, Any]:
        """Forward an upload as multipart form data and return the response."""

        client = await self._get_http_client()
        try:
            response = await client.post(
                self.url_for(self._settings.files_path),
                headers=self._json_headers,
                files={"file": (filename, data, content_type)},
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise UpstreamError(response.status_code, detail)

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
        if not isinstance(body, dict):
            raise UpstreamError(
                status.HTTP_502_BAD_GATEWAY, "Upload response was not an object"
            )
        return body

    async def delete_file(self, file_id: str) -> None:
        if not file_id:
            raise ValueError("file_id must be provided")

        path = f"{self._settings.files_path.rstrip('/')}/{file_id}"
        client = await self._get_http_client()
        try:
            response = await client.delete(
                self.url_for(path), headers=self._json_headers
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise UpstreamError(response.status_code, detail)

    async def probe(self, path: str) -> dict[str, Any]:
        """Issue a GET against ``path`` and summarise the outcome."""

        client = await self._get_http_client()
        try:
            response = await client.get(self.url_for(path), headers=self._json_headers)
        except httpx.HTTPError as exc:
            return {"success": False, "error": str(exc)}

        if response.status_code >= 400:
            return {
                "success": False,
                "status": response.status_code,
                "error": self._extract_error_detail(response.content),
            }
        try:
            data: Any = response.json()
        except ValueError:
            data = response.text
        return {"success": True, "status": response.status_code, "data": data}

    async def _get_json(
        self, path: str, *, params: Optional[dict[str, Any]] = None
    ) -> Any:
        client = await self._get_http_client()
        try:
            response = await client.get(
                self.url_for(path), headers=self._json_headers, params=params
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise UpstreamError(response.status_code, detail)

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def aclose(self) -> None:
        async with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Error closing upstream HTTP client", exc_info=True)

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Upstream returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("detail") or payload.get("error") or payload
        return payload


__all__ = ["UpstreamClient", "UpstreamError", "UpstreamStream", "UpstreamStreamReleased"]
