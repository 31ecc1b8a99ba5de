from __future__ import annotations

from typing import Any, AsyncIterator

from openai import APIError, APIStatusError, APITimeoutError, AsyncOpenAI, RateLimitError

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

_FINISH_REASONS = {
    "stop": "end_turn",
    "length": "max_tokens",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
}


class OpenAITokenSource(TokenSource):
    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 60.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout_seconds)

    def _to_completions_payload(self, request: UpstreamRequest) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.extend({"role": turn.role, "content": turn.content} for turn in request.messages)
        payload: dict[str, Any] = {
            **request.extra,
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        return payload

    async def stream(self, request: UpstreamRequest) -> AsyncIterator[UpstreamChunk]:
        model = request.model
        usage: Usage | None = None
        stop_reason: str | None = None
        try:
            stream = await self._client.chat.completions.create(**self._to_completions_payload(request))
            async for chunk in stream:
                model = getattr(chunk, "model", None) or model
                if getattr(chunk, "usage", None) is not None:
                    usage = Usage(
                        input_tokens=chunk.usage.prompt_tokens or 0,
                        output_tokens=chunk.usage.completion_tokens or 0,
                    )
                if not chunk.choices:
                    yield Ignored(kind="usage")
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason:
                    stop_reason = _FINISH_REASONS.get(choice.finish_reason, choice.finish_reason)
                text = choice.delta.content if choice.delta is not None else None
                if text:
                    yield ContentDelta(text=text)
                else:
                    yield Ignored(kind="delta")
            yield Terminal(model=model, usage=usage, stop_reason=stop_reason)
        except (APITimeoutError,) as exc:
            raise ProviderClientError(status_code=504, message=str(exc)) from exc
        except (RateLimitError,) as exc:
            raise ProviderClientError(status_code=429, message=str(exc)) from exc
        except (APIStatusError,) as exc:
            status = exc.status_code
            mapped_status = 502 if status and status >= 500 else (status or 502)
            raise ProviderClientError(status_code=mapped_status, message=str(exc)) from exc
        except APIError as exc:
            raise ProviderClientError(status_code=502, message=str(exc)) from exc

    async def aclose(self) -> None:
        await self._client.close()
