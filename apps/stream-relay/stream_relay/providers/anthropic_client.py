from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from stream_relay.protocol.events import Usage
from stream_relay.providers.base import (
    ContentDelta,
    Ignored,
    ProviderClientError,
    Terminal,
    TokenSource,
    UpstreamChunk,
    UpstreamRequest,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


def map_status_code(status: int) -> int:
    if status == 429:
        return 429
    if status >= 500:
        return 502
    return status or 502


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"upstream returned {response.status_code}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"upstream returned {response.status_code}"


class AnthropicTokenSource(TokenSource):
    """Streams the Anthropic Messages API and translates its SSE events into upstream chunks."""

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 60.0,
        base_url: str = "https://api.anthropic.com",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            timeout=timeout_seconds,
        )

    def _to_messages_payload(self, request: UpstreamRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            **request.extra,
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": [{"role": turn.role, "content": turn.content} for turn in request.messages],
            "stream": True,
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.system:
            payload["system"] = request.system
        return payload

    async def stream(self, request: UpstreamRequest) -> AsyncIterator[UpstreamChunk]:
        model = request.model
        input_tokens = 0
        output_tokens = 0
        stop_reason: str | None = None

        try:
            async with self._client.stream("POST", "/v1/messages", json=self._to_messages_payload(request)) as response:
                if response.is_error:
                    await response.aread()
                    raise ProviderClientError(
                        status_code=map_status_code(response.status_code),
                        message=_error_message(response),
                    )
                async for line in response.aiter_lines():
                    if not line or not line.startswith("data:"):
                        continue
                    data = line.removeprefix("data:").strip()
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError as exc:
                        raise ProviderClientError(status_code=502, message="Malformed upstream event") from exc

                    kind = event.get("type", "")
                    if kind == "content_block_delta":
                        delta = event.get("delta", {})
                        if delta.get("type") == "text_delta":
                            yield ContentDelta(text=delta.get("text", ""))
                        else:
                            yield Ignored(kind=f"{kind}:{delta.get('type', '')}")
                    elif kind == "message_start":
                        message = event.get("message", {})
                        model = message.get("model") or model
                        input_tokens = message.get("usage", {}).get("input_tokens", 0)
                        output_tokens = message.get("usage", {}).get("output_tokens", 0)
                        yield Ignored(kind=kind)
                    elif kind == "message_delta":
                        stop_reason = event.get("delta", {}).get("stop_reason") or stop_reason
                        output_tokens = event.get("usage", {}).get("output_tokens", output_tokens)
                        yield Ignored(kind=kind)
                    elif kind == "message_stop":
                        yield Terminal(
                            model=model,
                            usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
                            stop_reason=stop_reason,
                        )
                        return
                    elif kind == "error":
                        error = event.get("error", {})
                        raise ProviderClientError(status_code=502, message=str(error.get("message", "upstream error")))
                    else:
                        yield Ignored(kind=kind)
        except httpx.TimeoutException as exc:
            raise ProviderClientError(status_code=504, message="Upstream request timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("anthropic transport error", extra={"error_type": type(exc).__name__})
            raise ProviderClientError(status_code=502, message=str(exc) or "Upstream transport error") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
