from __future__ import annotations

import logging
import threading

from ossclient.infra.http.cancel import CancelToken

logger = logging.getLogger("ossclient.registry")


class InFlightRegistry:
    """Bookkeeping of the cancel tokens of requests currently executing.

    One instance belongs to one client. Several requests may run under the
    same key at once; each keeps its own token and removes only that token
    when it terminates.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, list[CancelToken]] = {}

    def register(self, key: str, token: CancelToken) -> None:
        with self._lock:
            tokens = self._entries.setdefault(key, [])
            tokens.append(token)
            duplicates = len(tokens) - 1
        if duplicates:
            logger.debug(
                "duplicate in-flight request key=%s concurrent=%s",
                key,
                duplicates + 1,
                extra={"extra": {"request_key": key, "concurrent": duplicates + 1}},
            )

    def unregister(self, key: str, token: CancelToken) -> None:
        with self._lock:
            tokens = self._entries.get(key)
            if not tokens:
                return
            try:
                tokens.remove(token)
            except ValueError:
                return
            if not tokens:
                del self._entries[key]

    def lookup(self, key: str) -> tuple[CancelToken, ...]:
        with self._lock:
            return tuple(self._entries.get(key, ()))

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def cancel_matching(self, prefix: str, reason: str = "request cancelled") -> int:
        """Cancel every in-flight request whose key starts with ``prefix``."""
        with self._lock:
            tokens = [
                token
                for key, entries in self._entries.items()
                if key.startswith(prefix)
                for token in entries
            ]
        for token in tokens:
            token.cancel(reason)
        return len(tokens)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return sum(len(tokens) for tokens in self._entries.values())
