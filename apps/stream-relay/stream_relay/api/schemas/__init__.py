from stream_relay.api.schemas.chat import ChatStreamRequest, ConversationTurn, ModelListEntry, ModelListResponse

__all__ = ["ChatStreamRequest", "ConversationTurn", "ModelListEntry", "ModelListResponse"]
