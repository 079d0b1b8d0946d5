from __future__ import annotations

import asyncio
import threading

from ossclient.common.errors import RequestCancelledError


def _cancel_task(task: asyncio.Task) -> None:
    loop = task.get_loop()
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        task.cancel()
    else:
        # asyncio only allows Task.cancel() on the task's own loop thread.
        loop.call_soon_threadsafe(task.cancel)


class CancelToken:
    """Cancellation handle for one request execution.

    Cancelling the token cancels every task attached to it. Tasks are
    detached when their request terminates, so cancelling a token whose
    request already finished only flips the flag. ``cancel`` may be called
    from any thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._reason: str | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "request cancelled") -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._reason = reason
            tasks = list(self._tasks)
        for task in tasks:
            if not task.done():
                _cancel_task(task)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelledError(self._reason or "request cancelled")

    def attach(self, task: asyncio.Task) -> None:
        with self._lock:
            self._tasks.add(task)
            cancelled = self._cancelled
        if cancelled and not task.done():
            _cancel_task(task)

    def detach(self, task: asyncio.Task) -> None:
        with self._lock:
            self._tasks.discard(task)
