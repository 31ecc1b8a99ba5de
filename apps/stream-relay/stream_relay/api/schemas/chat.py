from typing import Literal

from pydantic import BaseModel, Field


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"] = Field(..., description="Speaker of a prior turn")
    content: str = Field(..., min_length=1, description="Text of the prior turn")


class ChatStreamRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User prompt to stream a response for")
    conversation_history: list[ConversationTurn] = Field(
        default_factory=list,
        description="Prior turns, oldest first, forwarded before the new user message",
    )
    model: str | None = Field(default=None, description="Model alias; the configured default is used when omitted")
    max_tokens: int | None = Field(default=None, ge=1, le=8192, description="Upper bound on generated tokens")
    temperature: float | None = Field(default=None, ge=0.0, le=1.0, description="Sampling temperature")
    system: str | None = Field(default=None, description="Optional system prompt")


class ModelListEntry(BaseModel):
    id: str
    object: Literal["model"] = "model"
    owned_by: str


class ModelListResponse(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelListEntry]
