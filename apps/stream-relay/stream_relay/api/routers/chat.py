import logging
import uuid

import punq
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import StreamingResponse

from stream_relay.api.schemas.chat import ChatStreamRequest, ModelListEntry, ModelListResponse
from stream_relay.dependency_injection import get_container
from stream_relay.providers.registry import ProviderRegistry
from stream_relay.services.contracts import ChatStreamServiceProtocol
from stream_relay.services.stream_guard import StreamLimitExceeded

logger = logging.getLogger(__name__)
router = APIRouter(tags=["chat"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_chat_stream_service(container: punq.Container = Depends(get_container)) -> ChatStreamServiceProtocol:
    return container.resolve(ChatStreamServiceProtocol)


def get_provider_registry(container: punq.Container = Depends(get_container)) -> ProviderRegistry:
    return container.resolve(ProviderRegistry)


def client_key_for(request: Request, client_ip_header: str | None = None) -> str:
    """Key streams by peer address, or by ``client_ip_header`` when a trusted proxy sets it."""

    if client_ip_header:
        forwarded = request.headers.get(client_ip_header, "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return request.client.host if request.client else "unknown"


@router.post(
    "/api/chat/stream",
    summary="Stream an assistant response as server-sent events",
    description=(
        "Relays the upstream model output as `data: <json>` frames of type content, done or error, "
        "terminated by `data: [DONE]` after a successful done frame."
    ),
)
async def chat_stream(
    payload: ChatStreamRequest,
    request: Request,
    x_request_id: str | None = Header(default=None),
    chat_stream_service: ChatStreamServiceProtocol = Depends(get_chat_stream_service),
) -> StreamingResponse:
    request_id = x_request_id or str(uuid.uuid4())
    try:
        active = chat_stream_service.start_stream(
            payload,
            client_key=client_key_for(request, request.app.state.settings.client_ip_header),
            request_id=request_id,
        )
    except StreamLimitExceeded as exc:
        raise HTTPException(status_code=429, detail=str(exc)) from exc

    headers = {**STREAM_HEADERS, "x-request-id": request_id}
    return StreamingResponse(active.body(), media_type="text/event-stream", headers=headers)


@router.get("/v1/models", response_model=ModelListResponse)
async def list_models(registry: ProviderRegistry = Depends(get_provider_registry)) -> ModelListResponse:
    return ModelListResponse(
        data=[ModelListEntry(id=alias.alias, owned_by=alias.provider) for alias in registry.aliases],
    )
