from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Callable
import logging
from typing import Protocol, assert_never

from stream_relay.protocol.encoder import encode_event, encode_sentinel
from stream_relay.protocol.events import ContentEvent, DoneEvent, ErrorEvent
from stream_relay.providers.base import ContentDelta, Ignored, ProviderClientError, Terminal, UpstreamChunk

logger = logging.getLogger(__name__)

GENERIC_STREAM_ERROR = "An error occurred during streaming"
DEFAULT_SINK_FRAMES = 64

_END = object()


class SinkClosedError(RuntimeError):
    """Raised when writing to a sink that has already been closed."""


class ByteSink(Protocol):
    """Outbound byte channel owned by exactly one relay task."""

    async def write(self, data: bytes) -> None:
        """Append one encoded frame to the outbound stream."""

    async def close(self) -> None:
        """Signal end of stream to the reader side."""


class QueueByteSink:
    """Queue-backed sink whose ``body()`` iterator feeds a streaming HTTP response.

    At most ``maxsize`` frames are buffered; ``write`` waits for the reader
    once the buffer is full. ``close`` never waits.
    """

    def __init__(self, maxsize: int = DEFAULT_SINK_FRAMES) -> None:
        self._queue: asyncio.Queue[bytes | object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise SinkClosedError("sink is closed")
        await self._queue.put(data)

    async def close(self) -> None:
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True
        # With a full buffer the reader stops on its own once it has drained it.
        if not self._queue.full():
            self._queue.put_nowait(_END)

    async def body(self) -> AsyncIterator[bytes]:
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _END:
                return
            yield item  # type: ignore[misc]


def error_event_for(exc: BaseException) -> ErrorEvent:
    if isinstance(exc, ProviderClientError):
        return ErrorEvent(error=exc.message or GENERIC_STREAM_ERROR, details=f"provider status {exc.status_code}")
    return ErrorEvent(error=GENERIC_STREAM_ERROR, details=str(exc) or type(exc).__name__)


async def relay(upstream: AsyncIterable[UpstreamChunk], sink: ByteSink) -> None:
    """Drive ``upstream`` into ``sink`` as encoded frames.

    Content deltas become ``content`` frames, the terminal notification becomes
    one ``done`` frame followed by the ``[DONE]`` sentinel, and any failure
    becomes a single ``error`` frame. The sink is closed exactly once whichever
    way the loop ends. Exceptions never escape, except task cancellation.
    """

    iterator = aiter(upstream)
    terminal_sent = False
    frames = 0
    try:
        async for chunk in iterator:
            if isinstance(chunk, ContentDelta):
                if not chunk.text:
                    continue
                await sink.write(encode_event(ContentEvent(text=chunk.text)))
                frames += 1
            elif isinstance(chunk, Terminal):
                done = DoneEvent(model=chunk.model, usage=chunk.usage, stop_reason=chunk.stop_reason)
                await sink.write(encode_event(done))
                terminal_sent = True
                await sink.write(encode_sentinel())
                break
            elif isinstance(chunk, Ignored):
                continue
            else:
                assert_never(chunk)
        else:
            logger.warning("upstream ended without terminal notification", extra={"frames": frames})
    except asyncio.CancelledError:
        logger.info("relay cancelled", extra={"frames": frames})
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("relay failed", extra={"frames": frames})
        if not terminal_sent:
            await _write_error(sink, error_event_for(exc))
    finally:
        await _close_upstream(iterator)
        try:
            await sink.close()
        except Exception:  # noqa: BLE001
            logger.exception("failed to close relay sink")


def start_relay(
    upstream: AsyncIterable[UpstreamChunk],
    sink: ByteSink,
    *,
    on_finished: Callable[[], None] | None = None,
) -> asyncio.Task[None]:
    """Run ``relay`` detached from the caller; ``on_finished`` runs once the task ends."""

    task = asyncio.create_task(relay(upstream, sink))
    if on_finished is not None:
        task.add_done_callback(lambda _: on_finished())
    return task


async def _write_error(sink: ByteSink, event: ErrorEvent) -> None:
    try:
        await sink.write(encode_event(event))
    except Exception:  # noqa: BLE001
        logger.warning("could not deliver error frame", extra={"error": event.error})


async def _close_upstream(iterator: AsyncIterator[UpstreamChunk]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:  # noqa: BLE001
        logger.warning("failed to close upstream iterator", exc_info=True)
