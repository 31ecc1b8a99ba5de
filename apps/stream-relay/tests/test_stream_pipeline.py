"""Relay and consumer wired together through an in-process sink."""

from __future__ import annotations

import asyncio

import pytest

from stream_relay.client.consumer import ConsumerState, StreamFailure, StreamResult, consume
from stream_relay.protocol.events import Usage
from stream_relay.providers.base import ContentDelta, Ignored, ProviderClientError, Terminal
from stream_relay.services.relay import QueueByteSink, start_relay
from tests.conftest import iterate_upstream


class Outcome:
    def __init__(self) -> None:
        self.fragments: list[str] = []
        self.done: list[StreamResult] = []
        self.errors: list[StreamFailure] = []


async def _run_pipeline(upstream) -> tuple[Outcome, ConsumerState, QueueByteSink]:
    outcome = Outcome()
    sink = QueueByteSink()
    task = start_relay(upstream, sink)
    handle = consume(sink.body(), outcome.fragments.append, outcome.done.append, outcome.errors.append)
    state = await handle.wait()
    await task
    return outcome, state, sink


@pytest.mark.asyncio
async def test_pipeline_delivers_fragments_in_order_and_done_last() -> None:
    upstream = iterate_upstream([
        Ignored(kind="content_block_start"),
        ContentDelta(text="Hel"),
        ContentDelta(text="lo"),
        ContentDelta(text="lo"),
        Terminal(model="m1", usage=Usage(input_tokens=5, output_tokens=3), stop_reason="max_tokens"),
    ])

    outcome, state, sink = await _run_pipeline(upstream)

    assert state is ConsumerState.COMPLETED
    assert outcome.fragments == ["Hel", "lo", "lo"]
    assert [result.text for result in outcome.done] == ["Hellolo"]
    assert outcome.done[0].stop_reason == "max_tokens"
    assert outcome.errors == []
    assert sink.close_calls == 1


@pytest.mark.asyncio
async def test_upstream_failure_after_one_chunk_yields_fragment_then_error() -> None:
    upstream = iterate_upstream([ContentDelta(text="Hel")], error=ProviderClientError(status_code=502, message="upstream died"))

    outcome, state, _ = await _run_pipeline(upstream)

    assert state is ConsumerState.ERRORED
    assert outcome.fragments == ["Hel"]
    assert len(outcome.errors) == 1
    assert outcome.errors[0].message == "upstream died"
    assert outcome.errors[0].partial_text == "Hel"
    assert outcome.done == []


@pytest.mark.asyncio
async def test_consumer_cancel_does_not_disturb_relay_shutdown() -> None:
    gate = asyncio.Event()

    async def slow_upstream():
        yield ContentDelta(text="first")
        await gate.wait()
        yield Terminal(model="m1")

    outcome = Outcome()
    sink = QueueByteSink()
    task = start_relay(slow_upstream(), sink)
    handle = consume(sink.body(), outcome.fragments.append, outcome.done.append, outcome.errors.append)
    while not outcome.fragments:
        await asyncio.sleep(0)

    handle.cancel()
    assert await handle.wait() is ConsumerState.CANCELED
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert sink.close_calls == 1
    assert outcome.done == []
    assert outcome.errors == []
