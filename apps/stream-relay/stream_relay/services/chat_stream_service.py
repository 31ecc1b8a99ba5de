from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
import logging

from fastapi import HTTPException

from stream_relay.api.schemas.chat import ChatStreamRequest
from stream_relay.config import AliasConfig
from stream_relay.core.settings import Settings
from stream_relay.providers.base import ChatTurn, UpstreamRequest
from stream_relay.providers.registry import ProviderRegistry
from stream_relay.services.relay import QueueByteSink, start_relay
from stream_relay.services.stream_guard import StreamGuard

logger = logging.getLogger(__name__)


@dataclass
class ActiveStream:
    request_id: str
    sink: QueueByteSink
    task: asyncio.Task[None]

    async def body(self) -> AsyncIterator[bytes]:
        try:
            async for frame in self.sink.body():
                yield frame
        finally:
            # Reader went away before the relay finished (client disconnect).
            if not self.task.done():
                logger.info("client disconnected; cancelling relay", extra={"request_id": self.request_id})
                self.task.cancel()


class ChatStreamService:
    """Turns a chat request into a detached relay writing to a response sink."""

    def __init__(self, settings: Settings, registry: ProviderRegistry, guard: StreamGuard) -> None:
        self._settings = settings
        self._registry = registry
        self._guard = guard

    def build_upstream_request(self, payload: ChatStreamRequest, alias_config: AliasConfig) -> UpstreamRequest:
        limit = self._settings.max_history_length
        history = payload.conversation_history[-limit:] if limit > 0 else []
        turns = [ChatTurn(role=turn.role, content=turn.content) for turn in history]
        turns.append(ChatTurn(role="user", content=payload.message))

        defaults = dict(alias_config.defaults)
        default_max_tokens = int(defaults.pop("max_tokens", 1024))
        default_temperature = defaults.pop("temperature", None)
        default_system = defaults.pop("system", None)
        return UpstreamRequest(
            model=alias_config.upstream_model,
            messages=turns,
            max_tokens=payload.max_tokens or default_max_tokens,
            temperature=payload.temperature if payload.temperature is not None else default_temperature,
            system=payload.system or default_system,
            extra=defaults,
        )

    def start_stream(self, payload: ChatStreamRequest, *, client_key: str, request_id: str) -> ActiveStream:
        """Validate, resolve the upstream and launch the relay.

        Everything that can fail before the first byte is raised here as an
        ``HTTPException`` so it becomes a conventional error response.
        """

        if len(payload.message) > self._settings.max_message_length:
            raise HTTPException(
                status_code=400,
                detail=f"Message too long (max {self._settings.max_message_length:,} characters)",
            )
        alias = payload.model or self._settings.default_model_alias
        alias_config, source = self._registry.resolve(alias)
        upstream_request = self.build_upstream_request(payload, alias_config)

        lease = self._guard.acquire(client_key)
        sink = QueueByteSink(maxsize=self._settings.stream_buffer_frames)
        task = start_relay(source.stream(upstream_request), sink, on_finished=lease.release)
        logger.info(
            "chat stream started",
            extra={
                "request_id": request_id,
                "alias": alias,
                "provider": alias_config.provider,
                "history_turns": len(upstream_request.messages) - 1,
            },
        )
        return ActiveStream(request_id=request_id, sink=sink, task=task)
