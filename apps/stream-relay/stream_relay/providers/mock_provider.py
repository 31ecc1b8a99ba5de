from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import logging
from pathlib import Path
import re

from stream_relay.protocol.events import Usage
from stream_relay.providers.base import ContentDelta, Ignored, Terminal, TokenSource, UpstreamChunk, UpstreamRequest

logger = logging.getLogger(__name__)

_FRAGMENT_PATTERN = re.compile(r"\S+\s*|\s+")


class MockTokenSource(TokenSource):
    """File-driven mock upstream that cycles through predefined responses word by word."""

    _delimiter = "\n--- message\n"

    def __init__(self, messages: list[str], fragment_delay_seconds: float = 0.0) -> None:
        self._messages = [message for message in (m.strip() for m in messages) if message]
        if not self._messages:
            raise ValueError("MockTokenSource needs at least one non-empty message")
        self._fragment_delay_seconds = fragment_delay_seconds
        self._next_index = 0

    @classmethod
    def from_file(cls, messages_file: str, fragment_delay_seconds: float = 0.0) -> MockTokenSource:
        path = Path(messages_file)
        raw_content = path.read_text(encoding="utf-8")
        messages = [chunk.strip() for chunk in raw_content.split(cls._delimiter)]
        if not any(messages):
            raise ValueError(
                f"No mock messages found in {path}. Use delimiter {cls._delimiter!r} between messages."
            )
        source = cls(messages, fragment_delay_seconds=fragment_delay_seconds)
        logger.info("loaded mock upstream messages", extra={"messages_count": len(source._messages)})
        return source

    async def stream(self, request: UpstreamRequest) -> AsyncIterator[UpstreamChunk]:
        response = self._messages[self._next_index]
        self._next_index = (self._next_index + 1) % len(self._messages)
        logger.debug("serving mock upstream response", extra={"response_length": len(response)})

        yield Ignored(kind="content_block_start")
        fragments = _FRAGMENT_PATTERN.findall(response)
        for fragment in fragments:
            if self._fragment_delay_seconds:
                await asyncio.sleep(self._fragment_delay_seconds)
            yield ContentDelta(text=fragment)
        prompt_length = sum(len(turn.content.split()) for turn in request.messages)
        yield Terminal(
            model=request.model,
            usage=Usage(input_tokens=prompt_length, output_tokens=len(fragments)),
            stop_reason="end_turn",
        )
