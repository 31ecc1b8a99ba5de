from __future__ import annotations

import logging
from typing import Any

import httpx

from stream_relay.api.schemas.chat import ChatStreamRequest
from stream_relay.client.consumer import (
    CancelCallback,
    CancellationToken,
    DoneCallback,
    ErrorCallback,
    FragmentCallback,
    StreamHandle,
    consume,
)

logger = logging.getLogger(__name__)

CHAT_STREAM_PATH = "/api/chat/stream"


class ChatStreamSetupError(Exception):
    """The server refused to open a stream (validation, limits, configuration)."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"stream setup failed with {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict) and "detail" in payload:
        return str(payload["detail"])
    return str(payload)


class ChatStreamClient:
    """Opens relayed chat streams over HTTP and hands the body to a stream consumer."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        http_client: httpx.AsyncClient | None = None,
        connect_timeout_seconds: float = 10.0,
    ) -> None:
        # No read timeout: a stream may stay quiet while the model thinks.
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(connect_timeout_seconds, read=None),
        )

    async def stream_chat(
        self,
        request: ChatStreamRequest | dict[str, Any],
        *,
        on_fragment: FragmentCallback,
        on_done: DoneCallback,
        on_error: ErrorCallback,
        on_cancel: CancelCallback | None = None,
        token: CancellationToken | None = None,
        request_id: str | None = None,
    ) -> StreamHandle:
        payload = request if isinstance(request, ChatStreamRequest) else ChatStreamRequest.model_validate(request)
        headers = {"Accept": "text/event-stream"}
        if request_id:
            headers["x-request-id"] = request_id
        http_request = self._client.build_request(
            "POST",
            CHAT_STREAM_PATH,
            json=payload.model_dump(exclude_none=True),
            headers=headers,
        )
        response = await self._client.send(http_request, stream=True)
        if response.is_error:
            await response.aread()
            await response.aclose()
            detail = _error_detail(response)
            logger.info("chat stream rejected", extra={"status_code": response.status_code})
            raise ChatStreamSetupError(response.status_code, detail)

        return consume(
            response.aiter_bytes(),
            on_fragment,
            on_done,
            on_error,
            on_cancel,
            token=token,
            release=response.aclose,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
