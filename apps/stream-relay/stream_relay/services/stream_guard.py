from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class StreamLimitExceeded(Exception):
    def __init__(self, client_key: str, limit: int) -> None:
        super().__init__(f"Too many concurrent streams for client (limit {limit})")
        self.client_key = client_key
        self.limit = limit


class StreamLease:
    """Slot held by one active stream; releasing twice is a no-op."""

    def __init__(self, guard: StreamGuard, client_key: str) -> None:
        self._guard = guard
        self.client_key = client_key
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._guard._release(self.client_key)


class StreamGuard:
    """Per-client cap on concurrently running relays."""

    def __init__(self, max_streams_per_client: int) -> None:
        if max_streams_per_client < 1:
            raise ValueError("max_streams_per_client must be at least 1")
        self._limit = max_streams_per_client
        self._active: dict[str, int] = {}

    def active(self, client_key: str) -> int:
        return self._active.get(client_key, 0)

    def acquire(self, client_key: str) -> StreamLease:
        current = self._active.get(client_key, 0)
        if current >= self._limit:
            logger.info("stream limit reached", extra={"client_key": client_key, "limit": self._limit})
            raise StreamLimitExceeded(client_key, self._limit)
        self._active[client_key] = current + 1
        return StreamLease(self, client_key)

    def _release(self, client_key: str) -> None:
        remaining = self._active.get(client_key, 0) - 1
        if remaining > 0:
            self._active[client_key] = remaining
        else:
            self._active.pop(client_key, None)
