from __future__ import annotations

import punq
from fastapi import Request

from stream_relay.config import ModelsConfig, load_models_config
from stream_relay.core.settings import Settings
from stream_relay.providers.registry import ProviderRegistry
from stream_relay.services.chat_stream_service import ChatStreamService
from stream_relay.services.contracts import ChatStreamServiceProtocol, StreamGuardProtocol
from stream_relay.services.stream_guard import StreamGuard


def build_container(settings: Settings, models_config: ModelsConfig | None = None) -> punq.Container:
    container = punq.Container()
    container.register(Settings, instance=settings)
    container.register(
        ModelsConfig,
        instance=models_config or load_models_config(settings.model_provider_config_path),
    )

    container.register(
        ProviderRegistry,
        factory=lambda: ProviderRegistry.from_settings(settings, container.resolve(ModelsConfig)),
        scope=punq.Scope.singleton,
    )
    container.register(
        StreamGuardProtocol,
        factory=lambda: StreamGuard(max_streams_per_client=settings.max_streams_per_client),
        scope=punq.Scope.singleton,
    )
    container.register(
        ChatStreamServiceProtocol,
        factory=lambda: ChatStreamService(
            settings=settings,
            registry=container.resolve(ProviderRegistry),
            guard=container.resolve(StreamGuardProtocol),
        ),
        scope=punq.Scope.singleton,
    )

    return container


def get_container(request: Request) -> punq.Container:
    return request.app.state.container
