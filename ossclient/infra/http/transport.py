"""HTTP transport boundary.

The executor only depends on the ``Transport`` protocol; ``HttpxTransport``
is the production implementation on top of ``httpx.AsyncClient``. Request
bodies are streamed in chunks so that send progress is reported and the
cancel token is checked between chunks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Callable, Iterable, Mapping, Protocol, Union

import httpx

from ossclient.common.errors import TransportError
from ossclient.infra.http.cancel import CancelToken

DEFAULT_CHUNK_SIZE = 64 * 1024

# (bytes transferred so far, total bytes or None when unknown)
ProgressCallback = Callable[[int, Union[int, None]], None]

RequestBody = Union[bytes, bytearray, memoryview, AsyncIterable[bytes], Iterable[bytes], None]


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Status, headers and fully received body of one HTTP exchange."""

    status_code: int
    headers: Mapping[str, str]
    body: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(Protocol):
    async def send(
        self,
        *,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: RequestBody,
        cancel_token: CancelToken,
        on_send_progress: ProgressCallback | None = None,
        on_receive_progress: ProgressCallback | None = None,
    ) -> HttpResponse:
        """Send one request and return the complete response."""
        ...

    async def aclose(self) -> None:
        ...


def _declared_length(headers: Mapping[str, str]) -> int | None:
    for key, value in headers.items():
        if key.lower() == "content-length":
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    return None


class HttpxTransport:
    """Transport backed by ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = 60.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._chunk_size = chunk_size

    async def _stream_body(
        self,
        body: RequestBody,
        total: int | None,
        cancel_token: CancelToken,
        on_progress: ProgressCallback | None,
    ) -> AsyncIterator[bytes]:
        sent = 0
        if isinstance(body, (bytes, bytearray, memoryview)):
            view = memoryview(body)
            chunks: Iterable[bytes] = (
                bytes(view[offset : offset + self._chunk_size])
                for offset in range(0, len(view), self._chunk_size)
            )
            source: AsyncIterable[bytes] | None = None
        elif hasattr(body, "__aiter__"):
            source = body  # type: ignore[assignment]
            chunks = ()
        else:
            source = None
            chunks = body  # type: ignore[assignment]

        if source is not None:
            async for chunk in source:
                cancel_token.raise_if_cancelled()
                sent += len(chunk)
                yield chunk
                if on_progress is not None:
                    on_progress(sent, total)
        else:
            for chunk in chunks:
                cancel_token.raise_if_cancelled()
                sent += len(chunk)
                yield chunk
                if on_progress is not None:
                    on_progress(sent, total)

    async def send(
        self,
        *,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: RequestBody,
        cancel_token: CancelToken,
        on_send_progress: ProgressCallback | None = None,
        on_receive_progress: ProgressCallback | None = None,
    ) -> HttpResponse:
        cancel_token.raise_if_cancelled()

        content = None
        if body is not None:
            content = self._stream_body(
                body, _declared_length(headers), cancel_token, on_send_progress
            )
        request = self._client.build_request(method, url, headers=dict(headers), content=content)

        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {request.url.host} failed: {exc}") from exc

        chunks: list[bytes] = []
        try:
            total = _declared_length(response.headers)
            received = 0
            async for chunk in response.aiter_bytes():
                cancel_token.raise_if_cancelled()
                chunks.append(chunk)
                received += len(chunk)
                if on_receive_progress is not None:
                    on_receive_progress(received, total)
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {request.url.host} failed: {exc}") from exc
        finally:
            await response.aclose()

        return HttpResponse(
            status_code=response.status_code,
            headers=response.headers,
            body=b"".join(chunks),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
