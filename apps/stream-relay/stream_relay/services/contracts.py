from __future__ import annotations

from typing import Protocol

from stream_relay.api.schemas.chat import ChatStreamRequest
from stream_relay.services.chat_stream_service import ActiveStream
from stream_relay.services.stream_guard import StreamLease


class ChatStreamServiceProtocol(Protocol):
    """Contract used by the HTTP layer to open relayed chat streams."""

    def start_stream(self, payload: ChatStreamRequest, *, client_key: str, request_id: str) -> ActiveStream:
        """Resolve the upstream, reserve a stream slot and start the detached relay."""


class StreamGuardProtocol(Protocol):
    """Admission control for concurrently running streams."""

    def acquire(self, client_key: str) -> StreamLease:
        """Reserve a slot for ``client_key`` or raise ``StreamLimitExceeded``."""

    def active(self, client_key: str) -> int:
        """Return how many streams ``client_key`` currently holds."""
