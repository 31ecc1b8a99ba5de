"""Service layer orchestrating relayed chat streams."""

from stream_relay.services.chat_stream_service import ActiveStream, ChatStreamService
from stream_relay.services.relay import QueueByteSink, relay, start_relay
from stream_relay.services.stream_guard import StreamGuard, StreamLimitExceeded

__all__ = ["ActiveStream", "ChatStreamService", "QueueByteSink", "StreamGuard", "StreamLimitExceeded", "relay", "start_relay"]
