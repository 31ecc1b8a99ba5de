"""Client-side consumption of relayed response streams.

A :class:`StreamHandle` owns one stream session: the inbound byte stream, the
frame decoder and the accumulated text. Its lifecycle is an explicit state
machine::

    IDLE -> STREAMING -> COMPLETED | ERRORED | CANCELED

Terminal states have no way out. Whichever outcome is reached first wins and
later transitions (for example a cancel racing with the final frame) are
dropped, so exactly one of ``on_done``, ``on_error`` or ``on_cancel`` runs.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
import inspect
import logging
import time
from typing import Any, assert_never

from stream_relay.protocol.decoder import FrameDecoder
from stream_relay.protocol.events import ContentEvent, DoneEvent, ErrorEvent, Usage

logger = logging.getLogger(__name__)

INCOMPLETE_STREAM_MESSAGE = "Incomplete stream"


class ConsumerState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({ConsumerState.COMPLETED, ConsumerState.ERRORED, ConsumerState.CANCELED})


@dataclass
class StreamStats:
    total_chars: int = 0
    total_events: int = 0
    start_time: float | None = None
    end_time: float | None = None

    @property
    def duration(self) -> float | None:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def chars_per_second(self) -> float | None:
        duration = self.duration
        if not duration:
            return None
        return self.total_chars / duration


@dataclass(frozen=True)
class StreamResult:
    text: str
    model: str | None
    usage: Usage | None = None
    stop_reason: str | None = None
    stats: StreamStats = field(default_factory=StreamStats)


@dataclass(frozen=True)
class StreamFailure:
    """Why a session errored. ``partial_text`` is what arrived before the failure and is not a finished answer."""

    message: str
    details: str | None = None
    partial_text: str = ""
    incomplete: bool = True


class CancellationToken:
    """One-shot cancellation signal shared between a caller and a stream session."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def cancel(self) -> bool:
        if self._cancelled:
            return False
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return True


FragmentCallback = Callable[[str], Any]
DoneCallback = Callable[[StreamResult], Any]
ErrorCallback = Callable[[StreamFailure], Any]
CancelCallback = Callable[[str], Any]


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class StreamHandle:
    def __init__(
        self,
        byte_stream: AsyncIterable[bytes],
        *,
        on_fragment: FragmentCallback,
        on_done: DoneCallback,
        on_error: ErrorCallback,
        on_cancel: CancelCallback | None = None,
        token: CancellationToken | None = None,
        release: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._byte_stream = byte_stream
        self._on_fragment = on_fragment
        self._on_done = on_done
        self._on_error = on_error
        self._on_cancel = on_cancel
        self._release_hook = release
        self._token = token or CancellationToken()
        self._decoder = FrameDecoder()
        self._chunks: list[str] = []
        self._state = ConsumerState.IDLE
        self._task: asyncio.Task[None] | None = None
        self._reader_started = False
        self._released = False
        self.stats = StreamStats()

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def released(self) -> bool:
        return self._released

    def start(self) -> StreamHandle:
        if self._state is not ConsumerState.IDLE:
            raise RuntimeError(f"stream session already {self._state.value}")
        self._state = ConsumerState.STREAMING
        self.stats.start_time = time.monotonic()
        self._task = asyncio.create_task(self._read())
        self._token.add_callback(self._handle_cancel_request)
        return self

    def cancel(self) -> bool:
        """Stop the session. Returns False when it had already reached a terminal state."""

        if self._state.is_terminal:
            return False
        self._token.cancel()
        return self._state is ConsumerState.CANCELED

    async def wait(self) -> ConsumerState:
        """Wait for the session to end and return its terminal state.

        Exceptions raised by callbacks surface here. A callback raising while
        the session is still streaming leaves it ERRORED without ``on_error``
        being called.
        """

        if self._task is None:
            return self._state
        await asyncio.shield(self._task)
        return self._state

    def _transition(self, target: ConsumerState) -> bool:
        if self._state.is_terminal:
            return False
        self._state = target
        self.stats.end_time = time.monotonic()
        return True

    def _handle_cancel_request(self) -> None:
        if self._state is not ConsumerState.STREAMING or not self._transition(ConsumerState.CANCELED):
            return
        logger.debug("stream session cancelled", extra={"chars": self.stats.total_chars})
        task = self._task
        # A reader that has not run yet sees the token on its first step; one
        # cancelling itself from a callback sees the state change on return.
        if task is not None and self._reader_started and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self._on_cancel is not None:
            result = self._on_cancel(self.text)
            if inspect.isawaitable(result):
                asyncio.ensure_future(result)

    async def _read(self) -> None:
        self._reader_started = True
        iterator = aiter(self._byte_stream)
        try:
            while self._state is ConsumerState.STREAMING and not self._token.cancelled:
                try:
                    chunk = await anext(iterator)
                except StopAsyncIteration:
                    self._decoder.finalize()
                    await self._fail(
                        INCOMPLETE_STREAM_MESSAGE,
                        "partial frame left in buffer" if self._decoder.has_pending else "connection closed early",
                    )
                    break
                except Exception as exc:  # noqa: BLE001
                    logger.warning("stream read failed", extra={"error_type": type(exc).__name__})
                    await self._fail(INCOMPLETE_STREAM_MESSAGE, str(exc) or type(exc).__name__)
                    break

                for event in self._decoder.feed(chunk):
                    if self._state is not ConsumerState.STREAMING:
                        break
                    await self._dispatch(event)

                if self._state is ConsumerState.STREAMING and self._decoder.finished:
                    await self._complete(model=None)
        except asyncio.CancelledError:
            if self._state is not ConsumerState.CANCELED:
                self._handle_external_cancel()
                raise
        except Exception:
            # A callback raised. The session is over; the exception surfaces from wait().
            if self._transition(ConsumerState.ERRORED):
                logger.warning("stream session aborted by callback", extra={"chars": self.stats.total_chars})
            raise
        finally:
            await self._release()

    async def _dispatch(self, event: ContentEvent | DoneEvent | ErrorEvent) -> None:
        self.stats.total_events += 1
        if isinstance(event, ContentEvent):
            self._chunks.append(event.text)
            self.stats.total_chars += len(event.text)
            await _invoke(self._on_fragment, event.text)
        elif isinstance(event, DoneEvent):
            await self._complete(model=event.model, usage=event.usage, stop_reason=event.stop_reason)
        elif isinstance(event, ErrorEvent):
            await self._fail(event.error, event.details)
        else:
            assert_never(event)

    async def _complete(self, *, model: str | None, usage: Usage | None = None, stop_reason: str | None = None) -> None:
        if not self._transition(ConsumerState.COMPLETED):
            return
        result = StreamResult(text=self.text, model=model, usage=usage, stop_reason=stop_reason, stats=self.stats)
        await _invoke(self._on_done, result)

    async def _fail(self, message: str, details: str | None) -> None:
        if not self._transition(ConsumerState.ERRORED):
            return
        await _invoke(self._on_error, StreamFailure(message=message, details=details, partial_text=self.text))

    def _handle_external_cancel(self) -> None:
        # Task cancelled by something other than the handle, e.g. loop shutdown.
        self._token.cancel()

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        aclose = getattr(self._byte_stream, "aclose", None)
        try:
            if aclose is not None:
                await aclose()
            if self._release_hook is not None:
                await self._release_hook()
        except Exception:  # noqa: BLE001
            logger.warning("failed to release stream resources", exc_info=True)


def consume(
    byte_stream: AsyncIterable[bytes],
    on_fragment: FragmentCallback,
    on_done: DoneCallback,
    on_error: ErrorCallback,
    on_cancel: CancelCallback | None = None,
    *,
    token: CancellationToken | None = None,
    release: Callable[[], Awaitable[None]] | None = None,
) -> StreamHandle:
    """Start consuming ``byte_stream`` in a background task and return its handle.

    Must be called from a running event loop.
    """

    return StreamHandle(
        byte_stream,
        on_fragment=on_fragment,
        on_done=on_done,
        on_error=on_error,
        on_cancel=on_cancel,
        token=token,
        release=release,
    ).start()
