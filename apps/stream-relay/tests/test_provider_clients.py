from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import pytest

from stream_relay.protocol.events import Usage
from stream_relay.providers.anthropic_client import AnthropicTokenSource
from stream_relay.providers.base import ChatTurn, ContentDelta, Ignored, ProviderClientError, Terminal, UpstreamRequest
from stream_relay.providers.mock_provider import MockTokenSource
from stream_relay.providers.openai_client import OpenAITokenSource

REQUEST = UpstreamRequest(
    model="claude-3-5-sonnet-20241022",
    messages=[ChatTurn(role="user", content="hi")],
    max_tokens=64,
    temperature=0.2,
    system="be brief",
)


def _sse(events: list[dict]) -> bytes:
    lines = []
    for event in events:
        lines.append(f"event: {event['type']}\ndata: {json.dumps(event)}\n\n")
    return "".join(lines).encode()


ANTHROPIC_EVENTS = [
    {"type": "message_start", "message": {"id": "msg_1", "model": "claude-3-5-sonnet-20241022", "usage": {"input_tokens": 11, "output_tokens": 1}}},
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "ping"},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "lo"}},
    {"type": "content_block_stop", "index": 0},
    {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 7}},
    {"type": "message_stop"},
]


def _anthropic_source(handler) -> AnthropicTokenSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://api.anthropic.test")
    return AnthropicTokenSource(api_key="x", client=client)


@pytest.mark.asyncio
async def test_anthropic_source_translates_sse_events() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["path"] = request.url.path
        return httpx.Response(200, content=_sse(ANTHROPIC_EVENTS), headers={"content-type": "text/event-stream"})

    source = _anthropic_source(handler)
    chunks = [chunk async for chunk in source.stream(REQUEST)]

    assert seen["path"] == "/v1/messages"
    assert seen["body"]["stream"] is True
    assert seen["body"]["system"] == "be brief"
    assert seen["body"]["messages"] == [{"role": "user", "content": "hi"}]
    assert [chunk for chunk in chunks if isinstance(chunk, ContentDelta)] == [ContentDelta("Hel"), ContentDelta("lo")]
    assert chunks[-1] == Terminal(
        model="claude-3-5-sonnet-20241022",
        usage=Usage(input_tokens=11, output_tokens=7),
        stop_reason="end_turn",
    )
    assert all(isinstance(chunk, Ignored) for chunk in chunks[:3])


@pytest.mark.asyncio
async def test_anthropic_source_maps_rate_limit_to_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"type": "error", "error": {"type": "rate_limit_error", "message": "slow down"}})

    source = _anthropic_source(handler)

    with pytest.raises(ProviderClientError) as exc_info:
        _ = [chunk async for chunk in source.stream(REQUEST)]
    assert exc_info.value.status_code == 429
    assert exc_info.value.message == "slow down"


@pytest.mark.asyncio
async def test_anthropic_source_raises_on_midstream_error_event() -> None:
    events = ANTHROPIC_EVENTS[:4] + [{"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse(events))

    source = _anthropic_source(handler)
    received = []
    with pytest.raises(ProviderClientError, match="Overloaded"):
        async for chunk in source.stream(REQUEST):
            received.append(chunk)
    assert ContentDelta("Hel") in received


@pytest.mark.asyncio
async def test_anthropic_source_maps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    source = _anthropic_source(handler)

    with pytest.raises(ProviderClientError) as exc_info:
        _ = [chunk async for chunk in source.stream(REQUEST)]
    assert exc_info.value.status_code == 502


class FakeCompletions:
    def __init__(self, chunks: list) -> None:
        self._chunks = chunks
        self.called_with: dict | None = None

    async def create(self, **kwargs):
        self.called_with = kwargs

        async def _gen():
            for chunk in self._chunks:
                yield chunk

        return _gen()


def _openai_chunk(content: str | None, finish_reason: str | None = None, usage=None, choices: bool = True):
    return SimpleNamespace(
        model="gpt-4o-mini-2024",
        usage=usage,
        choices=[SimpleNamespace(delta=SimpleNamespace(content=content), finish_reason=finish_reason)] if choices else [],
    )


@pytest.mark.asyncio
async def test_openai_source_uses_sdk_stream_and_emits_terminal() -> None:
    completions = FakeCompletions([
        _openai_chunk(None),
        _openai_chunk("Hel"),
        _openai_chunk("lo", finish_reason="stop"),
        _openai_chunk(None, usage=SimpleNamespace(prompt_tokens=4, completion_tokens=2), choices=False),
    ])
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    source = OpenAITokenSource(api_key="x", client=fake)

    chunks = [chunk async for chunk in source.stream(REQUEST)]

    assert completions.called_with["stream"] is True
    assert completions.called_with["messages"][0] == {"role": "system", "content": "be brief"}
    assert [chunk.text for chunk in chunks if isinstance(chunk, ContentDelta)] == ["Hel", "lo"]
    assert chunks[-1] == Terminal(model="gpt-4o-mini-2024", usage=Usage(input_tokens=4, output_tokens=2), stop_reason="end_turn")


@pytest.mark.asyncio
async def test_mock_source_streams_words_and_cycles_messages() -> None:
    source = MockTokenSource(["one two three", "second"])

    first = [chunk async for chunk in source.stream(REQUEST)]
    second = [chunk async for chunk in source.stream(REQUEST)]
    third = [chunk async for chunk in source.stream(REQUEST)]

    assert "".join(chunk.text for chunk in first if isinstance(chunk, ContentDelta)) == "one two three"
    assert [chunk.text for chunk in first if isinstance(chunk, ContentDelta)] == ["one ", "two ", "three"]
    assert isinstance(first[-1], Terminal)
    assert first[-1].model == REQUEST.model
    assert "".join(chunk.text for chunk in second if isinstance(chunk, ContentDelta)) == "second"
    assert third == first


def test_mock_source_rejects_empty_message_file(tmp_path) -> None:
    path = tmp_path / "empty.md"
    path.write_text("\n--- message\n", encoding="utf-8")

    with pytest.raises(ValueError):
        MockTokenSource.from_file(str(path))
