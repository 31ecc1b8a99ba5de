"""Wire protocol for incremental response streams."""

from stream_relay.protocol.decoder import FrameDecoder, decode_frames
from stream_relay.protocol.encoder import encode_event, encode_sentinel, format_event, format_sentinel
from stream_relay.protocol.events import ContentEvent, DoneEvent, ErrorEvent, StreamEvent, Usage, parse_event

__all__ = [
    "ContentEvent",
    "DoneEvent",
    "ErrorEvent",
    "FrameDecoder",
    "StreamEvent",
    "Usage",
    "decode_frames",
    "encode_event",
    "encode_sentinel",
    "format_event",
    "format_sentinel",
    "parse_event",
]
