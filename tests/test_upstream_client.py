from __future__ import annotations

import json

import httpx
import pytest
from pydantic import AnyHttpUrl, SecretStr

from relay.config import Settings
from relay.upstream import UpstreamClient, UpstreamError, UpstreamStreamReleased

pytestmark = pytest.mark.anyio


def make_settings(**overrides) -> Settings:
    values = {
        "upstream_base_url": AnyHttpUrl("http://backend.test/"),
        "upstream_api_key": SecretStr("secret"),
    }
    values.update(overrides)
    return Settings(**values)


def make_client(handler, **overrides) -> UpstreamClient:
    return UpstreamClient(
        make_settings(**overrides), transport=httpx.MockTransport(handler)
    )


def test_headers_include_bearer_token() -> None:
    client = make_client(lambda request: httpx.Response(200))

    headers = client._headers  # type: ignore[attr-defined]
    assert headers["Authorization"] == "Bearer secret"
    assert headers["Accept"] == "text/event-stream"
    assert headers["Content-Type"] == "application/json"


def test_headers_without_key_omit_authorization() -> None:
    client = make_client(
        lambda request: httpx.Response(200), upstream_api_key=SecretStr("")
    )

    assert "Authorization" not in client._headers  # type: ignore[attr-defined]


def test_url_for_joins_without_double_slash() -> None:
    client = make_client(lambda request: httpx.Response(200))

    assert client.url_for("/api/chat/completions") == (
        "http://backend.test/api/chat/completions"
    )


async def test_open_chat_stream_posts_payload() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"data: [DONE]\n\n")

    client = make_client(handler)
    stream = await client.open_chat_stream({"model": "m", "messages": [], "stream": True})

    body = b"".join([chunk async for chunk in stream.chunks()])
    await stream.release()
    await client.aclose()

    assert body == b"data: [DONE]\n\n"
    assert seen[0].method == "POST"
    assert str(seen[0].url) == "http://backend.test/api/chat/completions"
    assert json.loads(seen[0].content) == {"model": "m", "messages": [], "stream": True}


async def test_error_status_raises_with_detail() -> None:
    client = make_client(
        lambda request: httpx.Response(500, json={"detail": "model exploded"})
    )

    with pytest.raises(UpstreamError) as excinfo:
        await client.open_chat_stream({"model": "m"})

    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == "model exploded"


async def test_plain_text_error_body_is_returned_verbatim() -> None:
    client = make_client(lambda request: httpx.Response(401, text="no key"))

    with pytest.raises(UpstreamError) as excinfo:
        await client.open_chat_stream({"model": "m"})

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "no key"


async def test_no_content_response_is_an_error() -> None:
    client = make_client(lambda request: httpx.Response(204))

    with pytest.raises(UpstreamError) as excinfo:
        await client.open_chat_stream({"model": "m"})

    assert excinfo.value.status_code == 502


async def test_transport_failure_maps_to_bad_gateway() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)

    with pytest.raises(UpstreamError) as excinfo:
        await client.open_chat_stream({"model": "m"})

    assert excinfo.value.status_code == 502


async def test_release_is_idempotent_and_blocks_reads() -> None:
    client = make_client(lambda request: httpx.Response(200, content=b"data: x\n"))
    stream = await client.open_chat_stream({"model": "m"})

    await stream.release()
    await stream.release()

    assert stream.released is True
    with pytest.raises(UpstreamStreamReleased):
        async for _ in stream.chunks():
            pass


async def test_upload_file_sends_multipart() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "file-1", "filename": "a.txt"})

    client = make_client(handler)
    body = await client.upload_file(
        filename="a.txt", data=b"hello", content_type="text/plain"
    )

    assert body["id"] == "file-1"
    assert str(seen[0].url) == "http://backend.test/api/v1/files/"
    assert seen[0].headers["content-type"].startswith("multipart/form-data")
    assert b'name="file"; filename="a.txt"' in seen[0].content


async def test_delete_file_targets_file_path() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    client = make_client(handler)
    await client.delete_file("file-1")

    assert seen[0].method == "DELETE"
    assert str(seen[0].url) == "http://backend.test/api/v1/files/file-1"


async def test_probe_reports_failures_without_raising() -> None:
    client = make_client(lambda request: httpx.Response(404, json={"detail": "nope"}))

    result = await client.probe("/api/tools")

    assert result == {"success": False, "status": 404, "error": "nope"}
