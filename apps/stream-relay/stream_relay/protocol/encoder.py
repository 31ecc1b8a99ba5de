from __future__ import annotations

from stream_relay.protocol.events import ContentEvent, DoneEvent, ErrorEvent

DATA_PREFIX = "data: "
FRAME_DELIMITER = "\n\n"
SENTINEL = "[DONE]"


def format_event(event: ContentEvent | DoneEvent | ErrorEvent) -> str:
    return f"{DATA_PREFIX}{event.model_dump_json(exclude_none=True)}{FRAME_DELIMITER}"


def format_sentinel() -> str:
    return f"{DATA_PREFIX}{SENTINEL}{FRAME_DELIMITER}"


def encode_event(event: ContentEvent | DoneEvent | ErrorEvent) -> bytes:
    return format_event(event).encode("utf-8")


def encode_sentinel() -> bytes:
    return format_sentinel().encode("utf-8")
