"""Client-side decoding and consumption of relayed streams."""

from stream_relay.client.consumer import (
    CancellationToken,
    ConsumerState,
    StreamFailure,
    StreamHandle,
    StreamResult,
    StreamStats,
    consume,
)
from stream_relay.client.http import ChatStreamClient, ChatStreamSetupError

__all__ = [
    "CancellationToken",
    "ChatStreamClient",
    "ChatStreamSetupError",
    "ConsumerState",
    "StreamFailure",
    "StreamHandle",
    "StreamResult",
    "StreamStats",
    "consume",
]
