"""Shared test utilities and fixtures for stream-relay tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from pathlib import Path
import random

import punq
import pytest

from stream_relay.config import AliasConfig, ModelsConfig
from stream_relay.core.settings import Settings
from stream_relay.providers.base import TokenSource, UpstreamChunk, UpstreamRequest

SERVICE_ROOT = Path(__file__).resolve().parent.parent


class RecordingSink:
    """In-memory sink that records frames and close calls."""

    def __init__(self, fail_on_write: int | None = None) -> None:
        self.frames: list[bytes] = []
        self.close_calls = 0
        self._fail_on_write = fail_on_write

    async def write(self, data: bytes) -> None:
        if self._fail_on_write is not None and len(self.frames) >= self._fail_on_write:
            raise ConnectionResetError("client went away")
        self.frames.append(data)

    async def close(self) -> None:
        self.close_calls += 1

    @property
    def body(self) -> bytes:
        return b"".join(self.frames)


class ScriptedTokenSource(TokenSource):
    """Upstream fake that yields a fixed script and optionally raises afterwards."""

    def __init__(self, chunks: list[UpstreamChunk], error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error
        self.requests: list[UpstreamRequest] = []
        self.closed = False

    async def stream(self, request: UpstreamRequest) -> AsyncIterator[UpstreamChunk]:
        self.requests.append(request)
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        self.closed = True


async def iterate_upstream(chunks: list[UpstreamChunk], error: Exception | None = None) -> AsyncIterator[UpstreamChunk]:
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


async def byte_stream(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def split_at(data: bytes, offsets: Iterable[int]) -> list[bytes]:
    points = sorted({offset for offset in offsets if 0 < offset < len(data)})
    pieces: list[bytes] = []
    start = 0
    for point in points:
        pieces.append(data[start:point])
        start = point
    pieces.append(data[start:])
    return pieces


def random_split(data: bytes, seed: int, max_pieces: int = 12) -> list[bytes]:
    rng = random.Random(seed)
    count = rng.randint(1, max(1, min(max_pieces, len(data) - 1)))
    return split_at(data, rng.sample(range(1, len(data)), count) if len(data) > 1 else [])


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        MODEL_PROVIDER_CONFIG_PATH=str(SERVICE_ROOT / "config" / "models.yaml"),
        MOCK_MESSAGES_FILE=str(SERVICE_ROOT / "mock-data" / "mock-messages.md"),
        DEFAULT_MODEL_ALIAS="scripted",
        MAX_STREAMS_PER_CLIENT=2,
        MAX_HISTORY_LENGTH=2,
        MAX_MESSAGE_LENGTH=100,
    )


@pytest.fixture
def scripted_models_config() -> ModelsConfig:
    return ModelsConfig(
        aliases={
            "scripted": AliasConfig(
                alias="scripted",
                provider="scripted",
                upstream_model="scripted-model-1",
                defaults={"max_tokens": 256, "temperature": 0.5, "top_k": 5},
            ),
            "offline": AliasConfig(alias="offline", provider="anthropic", upstream_model="claude", defaults={}),
        }
    )


def build_test_container(bindings: dict[object, object]) -> punq.Container:
    """Create a punq container and bind protocol/service keys to test doubles."""

    container = punq.Container()
    for key, value in bindings.items():
        container.register(key, instance=value)
    return container
