"""Execution of authenticated requests with cancellation and progress."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Mapping, TypeVar
from urllib.parse import urlsplit

from ossclient.common.errors import RequestCancelledError, TransportError
from ossclient.common.logging import mask_headers
from ossclient.infra.http.cancel import CancelToken
from ossclient.infra.http.registry import InFlightRegistry
from ossclient.infra.http.transport import (
    HttpResponse,
    ProgressCallback,
    RequestBody,
    Transport,
)
from ossclient.infra.observability.metrics import BYTES_SENT, IN_FLIGHT, LATENCY, REQUESTS

T = TypeVar("T")

logger = logging.getLogger("ossclient.http")


class ProgressGate:
    """Forwards progress ticks until the owning request terminates."""

    def __init__(self, callback: ProgressCallback | None, *, direction: str) -> None:
        self._callback = callback
        self._direction = direction
        self._open = True
        self.transferred = 0

    def __call__(self, transferred: int, total: int | None) -> None:
        if not self._open:
            return
        self.transferred = transferred
        if self._callback is None:
            return
        try:
            self._callback(transferred, total)
        except Exception:
            logger.exception(
                "progress callback failed direction=%s transferred=%s",
                self._direction,
                transferred,
            )

    def close(self) -> None:
        self._open = False


class RequestExecutor:
    """Runs requests under a request key with a cancel token.

    Every execution is registered in the ``InFlightRegistry`` for as long as
    it runs. Status codes are not interpreted here; callers decide what a
    successful response is.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        registry: InFlightRegistry | None = None,
        enable_metrics: bool = True,
    ) -> None:
        self._transport = transport
        self._registry = registry or InFlightRegistry()
        self._enable_metrics = enable_metrics

    @property
    def registry(self) -> InFlightRegistry:
        return self._registry

    @property
    def transport(self) -> Transport:
        return self._transport

    async def execute(
        self,
        request_key: str,
        cancel_token: CancelToken | None,
        operation: Callable[[CancelToken], Awaitable[T]],
    ) -> T:
        token = cancel_token or CancelToken()
        self._registry.register(request_key, token)
        try:
            token.raise_if_cancelled()
            task = asyncio.ensure_future(operation(token))
            token.attach(task)
            try:
                return await task
            except asyncio.CancelledError:
                if token.is_cancelled:
                    raise RequestCancelledError(
                        token.reason or "request cancelled"
                    ) from None
                raise
            finally:
                token.detach(task)
        except RequestCancelledError:
            logger.info(
                "request cancelled key=%s",
                request_key,
                extra={"extra": {"request_key": request_key, "reason": token.reason}},
            )
            raise
        finally:
            self._registry.unregister(request_key, token)

    async def send(
        self,
        *,
        method: str,
        url: str,
        headers: Mapping[str, str],
        cancel_token: CancelToken,
        body: RequestBody = None,
        on_send_progress: ProgressCallback | None = None,
        on_receive_progress: ProgressCallback | None = None,
    ) -> HttpResponse:
        send_gate = ProgressGate(on_send_progress, direction="send")
        receive_gate = ProgressGate(on_receive_progress, direction="receive")
        parts = urlsplit(url)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "request method=%s host=%s path=%s",
                method,
                parts.hostname,
                parts.path,
                extra={"extra": {"headers": mask_headers(headers)}},
            )

        start = time.perf_counter()
        if self._enable_metrics:
            IN_FLIGHT.inc()
        try:
            response = await self._transport.send(
                method=method,
                url=url,
                headers=headers,
                body=body,
                cancel_token=cancel_token,
                on_send_progress=send_gate,
                on_receive_progress=receive_gate,
            )
        except (RequestCancelledError, asyncio.CancelledError):
            self._record(method, "cancelled", start, send_gate.transferred)
            raise
        except TransportError as exc:
            self._record(method, "error", start, send_gate.transferred)
            logger.error(
                "request_error method=%s host=%s path=%s error=%s",
                method,
                parts.hostname,
                parts.path,
                exc,
                extra={
                    "extra": {
                        "method": method,
                        "host": parts.hostname,
                        "path": parts.path,
                        "exception": repr(exc),
                    }
                },
            )
            raise
        finally:
            send_gate.close()
            receive_gate.close()
            if self._enable_metrics:
                IN_FLIGHT.dec()

        duration_ms = self._record(
            method, str(response.status_code), start, send_gate.transferred
        )
        level = logging.INFO
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        logger.log(
            level,
            "request method=%s host=%s path=%s status=%s duration_ms=%.3f request_id=%s",
            method,
            parts.hostname,
            parts.path,
            response.status_code,
            duration_ms,
            response.headers.get("x-oss-request-id") or "-",
            extra={
                "extra": {
                    "method": method,
                    "host": parts.hostname,
                    "path": parts.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": response.headers.get("x-oss-request-id"),
                }
            },
        )
        return response

    def _record(self, method: str, status: str, start: float, sent: int) -> float:
        elapsed = time.perf_counter() - start
        if self._enable_metrics:
            REQUESTS.labels(method, status).inc()
            LATENCY.labels(method).observe(elapsed)
            if sent:
                BYTES_SENT.inc(sent)
        return round(elapsed * 1000, 3)
