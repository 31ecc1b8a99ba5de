from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

StopReason = Literal["end_turn", "max_tokens", "stop_sequence", "tool_use"]

_STOP_REASONS: frozenset[str] = frozenset({"end_turn", "max_tokens", "stop_sequence", "tool_use"})


class Usage(BaseModel):
    input_tokens: int = Field(default=0, ge=0, description="Prompt tokens consumed upstream")
    output_tokens: int = Field(default=0, ge=0, description="Completion tokens produced upstream")


class ContentEvent(BaseModel):
    type: Literal["content"] = "content"
    text: str = Field(..., min_length=1, description="Incremental assistant text")


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    model: str = Field(..., description="Upstream model that produced the response")
    usage: Usage | None = None
    stop_reason: StopReason | None = None

    @field_validator("stop_reason", mode="before")
    @classmethod
    def _unknown_stop_reason_is_none(cls, value: Any) -> Any:
        if value is None or value in _STOP_REASONS:
            return value
        return None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str = Field(..., description="User-facing error message")
    details: str | None = Field(default=None, description="Best-effort diagnostic detail")


StreamEvent = Annotated[ContentEvent | DoneEvent | ErrorEvent, Field(discriminator="type")]

stream_event_adapter: TypeAdapter[ContentEvent | DoneEvent | ErrorEvent] = TypeAdapter(StreamEvent)


def parse_event(payload: str | bytes) -> ContentEvent | DoneEvent | ErrorEvent:
    """Validate a JSON payload into one of the stream event variants.

    Raises ``pydantic.ValidationError`` for malformed JSON, unknown ``type``
    tags and payloads missing required fields.
    """

    return stream_event_adapter.validate_json(payload)
