from __future__ import annotations

import httpx
import pytest
from loguru import logger

from modelbridge.diagnostics import ErrorKind
from modelbridge.errors import ApiCallError, ParseError, TransportFailure
from modelbridge.transport import HttpResponse, HttpxTransport, combine_headers


def _transport(handler, **kwargs) -> HttpxTransport:
    def factory(**client_kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **client_kwargs)

    return HttpxTransport(client_factory=factory, **kwargs)


def test_combine_headers_later_wins_and_none_removes() -> None:
    merged = combine_headers(
        {"Authorization": "Bearer a", "X-One": "1"},
        None,
        {"Authorization": "Bearer b", "X-One": None},
    )
    assert merged == {"Authorization": "Bearer b"}


def test_http_response_json() -> None:
    response = HttpResponse(200, b'{"a": 1}')
    assert response.ok
    assert response.json() == {"a": 1}
    with pytest.raises(ParseError):
        HttpResponse(200, b"<html>").json()


@pytest.mark.anyio
async def test_post_json_returns_status_as_data() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = request.content
        captured["agent"] = request.headers.get("user-agent")
        return httpx.Response(429, json={"error": "slow"}, headers={"retry-after": "1"})

    transport = _transport(handler, default_headers={"User-Agent": "modelbridge-test"})
    response = await transport.post_json("https://api.test/v1", {"x": 1}, None, timeout_s=5.0)
    assert response.status_code == 429
    assert response.headers["retry-after"] == "1"
    assert captured["body"] == b'{"x":1}' or captured["body"] == b'{"x": 1}'
    assert captured["agent"] == "modelbridge-test"


@pytest.mark.anyio
async def test_connection_error_becomes_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportFailure) as excinfo:
        await _transport(handler).post_json("https://api.test/v1", {}, None, timeout_s=1.0)
    assert excinfo.value.url == "https://api.test/v1"


@pytest.mark.anyio
async def test_post_multipart_sends_files() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b"audio-bytes" in request.content
        return httpx.Response(200, json={"text": "ok"})

    response = await _transport(handler).post_multipart(
        "https://api.test/v1/audio",
        {"model": "whisper-1"},
        {"file": ("clip.wav", b"audio-bytes", "audio/wav")},
        None,
        timeout_s=5.0,
    )
    assert response.json() == {"text": "ok"}


@pytest.mark.anyio
async def test_stream_post_yields_text_chunks() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"data: one\n\ndata: two\n\n")

    chunks = [
        chunk
        async for chunk in _transport(handler).stream_post("https://api.test/s", {}, None, timeout_s=5.0)
    ]
    assert "".join(chunks) == "data: one\n\ndata: two\n\n"


@pytest.mark.anyio
async def test_stream_post_raises_for_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "bad key sk-leaked"}})

    with pytest.raises(ApiCallError) as excinfo:
        async for _chunk in _transport(handler).stream_post("https://api.test/s", {}, None, timeout_s=5.0):
            pass
    assert excinfo.value.kind is ErrorKind.AUTHENTICATION
    assert "sk-leaked" not in str(excinfo.value)


@pytest.mark.anyio
async def test_transport_timeout_applies_when_caller_passes_none() -> None:
    timeouts: list[object] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    def factory(**client_kwargs) -> httpx.AsyncClient:
        timeouts.append(client_kwargs["timeout"])
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **client_kwargs)

    transport = HttpxTransport(client_factory=factory, timeout_s=15.0)
    await transport.post_json("https://api.test/v1", {}, None)
    await transport.post_json("https://api.test/v1", {}, None, timeout_s=2.5)
    assert timeouts == [15.0, 2.5]


def test_transport_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        HttpxTransport(timeout_s=0)


@pytest.mark.anyio
async def test_request_headers_are_logged_masked() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == "Bearer sk-live-abc"
        return httpx.Response(200, json={})

    captured: list[str] = []
    sink_id = logger.add(lambda message: captured.append(message.record["message"]), level="DEBUG")
    try:
        await _transport(handler).post_json(
            "https://api.test/v1", {}, {"Authorization": "Bearer sk-live-abc"}
        )
    finally:
        logger.remove(sink_id)
    header_lines = [line for line in captured if "headers=" in line]
    assert header_lines
    assert all("sk-live-abc" not in line for line in header_lines)
