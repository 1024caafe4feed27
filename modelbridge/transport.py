"""HTTP transport used by vendor bindings."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Mapping, Protocol

import httpx

from .diagnostics import raise_for_response
from .errors import ParseError, TransportFailure
from .logging_utils import get_logger
from .security.redaction import redact_headers

DEFAULT_TIMEOUT_S = 60.0


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ParseError(f"Invalid JSON response: {exc}", text=self.text) from exc


class HttpTransport(Protocol):
    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None,
        *,
        timeout_s: float | None,
    ) -> HttpResponse: ...

    async def post_multipart(
        self,
        url: str,
        data: dict[str, Any],
        files: dict[str, tuple[str, bytes, str]],
        headers: dict[str, str] | None,
        *,
        timeout_s: float | None,
    ) -> HttpResponse: ...

    def stream_post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None,
        *,
        timeout_s: float | None,
    ) -> AsyncIterator[str]: ...


def combine_headers(*maps: Mapping[str, str | None] | None) -> dict[str, str]:
    """Merge header maps left to right; ``None`` values remove a header."""

    merged: dict[str, str | None] = {}
    for headers in maps:
        if not headers:
            continue
        for key, value in headers.items():
            merged[key] = value
    return {key: value for key, value in merged.items() if value is not None}


class HttpxTransport:
    """``HttpTransport`` over ``httpx.AsyncClient``.

    Requests without an explicit ``timeout_s`` use the transport's own. Non-2xx
    responses are returned as data from the ``post_*`` methods; ``stream_post``
    raises :class:`~modelbridge.errors.ApiCallError` for them since there is no
    body to hand back. Connection-level failures raise
    :class:`TransportFailure`.
    """

    def __init__(
        self,
        *,
        client_factory: Callable[..., httpx.AsyncClient] | None = None,
        default_headers: Mapping[str, str] | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        self._client_factory = client_factory or httpx.AsyncClient
        self._default_headers = dict(default_headers or {})
        self.timeout_s = timeout_s
        self._log = get_logger("transport")

    def _timeout(self, timeout_s: float | None) -> float:
        return self.timeout_s if timeout_s is None else timeout_s

    def _headers(self, url: str, headers: Mapping[str, str] | None) -> dict[str, str]:
        merged = combine_headers(self._default_headers, headers)
        self._log.debug("POST {} headers={}", url, redact_headers(merged))
        return merged

    @staticmethod
    def _to_response(response: httpx.Response) -> HttpResponse:
        return HttpResponse(
            status_code=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    def _failure(self, url: str, exc: httpx.TransportError) -> TransportFailure:
        self._log.warning("Request to {} failed: {}", url, exc)
        return TransportFailure(f"{type(exc).__name__}: {exc}", url=url)

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None,
        *,
        timeout_s: float | None = None,
    ) -> HttpResponse:
        try:
            async with self._client_factory(timeout=self._timeout(timeout_s)) as client:
                response = await client.post(url, json=payload, headers=self._headers(url, headers))
        except httpx.TransportError as exc:
            raise self._failure(url, exc) from exc
        return self._to_response(response)

    async def post_multipart(
        self,
        url: str,
        data: dict[str, Any],
        files: dict[str, tuple[str, bytes, str]],
        headers: dict[str, str] | None,
        *,
        timeout_s: float | None = None,
    ) -> HttpResponse:
        try:
            async with self._client_factory(timeout=self._timeout(timeout_s)) as client:
                response = await client.post(
                    url, data=data, files=files, headers=self._headers(url, headers)
                )
        except httpx.TransportError as exc:
            raise self._failure(url, exc) from exc
        return self._to_response(response)

    async def stream_post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None,
        *,
        timeout_s: float | None = None,
    ) -> AsyncIterator[str]:
        try:
            async with self._client_factory(timeout=self._timeout(timeout_s)) as client:
                async with client.stream(
                    "POST", url, json=payload, headers=self._headers(url, headers)
                ) as response:
                    if not 200 <= response.status_code < 300:
                        body = await response.aread()
                        raise_for_response(
                            response.status_code,
                            body,
                            headers=dict(response.headers),
                            url=url,
                        )
                    async for chunk in response.aiter_text():
                        yield chunk
        except httpx.TransportError as exc:
            raise self._failure(url, exc) from exc
