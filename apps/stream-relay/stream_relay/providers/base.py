from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from stream_relay.protocol.events import Usage


@dataclass
class ProviderClientError(Exception):
    status_code: int
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class Terminal:
    model: str
    usage: Usage | None = None
    stop_reason: str | None = None


@dataclass(frozen=True)
class Ignored:
    """Upstream notification with no user-visible text (block open, pings, metadata)."""

    kind: str


UpstreamChunk = ContentDelta | Terminal | Ignored


@dataclass(frozen=True)
class ChatTurn:
    role: str
    content: str


@dataclass(frozen=True)
class UpstreamRequest:
    model: str
    messages: list[ChatTurn]
    max_tokens: int = 1024
    temperature: float | None = None
    system: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class TokenSource(ABC):
    """Opaque upstream producer of incremental text plus one terminal notification."""

    @abstractmethod
    def stream(self, request: UpstreamRequest) -> AsyncIterator[UpstreamChunk]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
