from __future__ import annotations

from stream_relay.dependency_injection import build_container
from stream_relay.providers.registry import ProviderRegistry
from stream_relay.services.chat_stream_service import ChatStreamService
from stream_relay.services.contracts import ChatStreamServiceProtocol, StreamGuardProtocol
from stream_relay.services.stream_guard import StreamGuard


def test_container_resolves_singleton_services(test_settings) -> None:
    container = build_container(test_settings)

    assert container.resolve(ProviderRegistry) is container.resolve(ProviderRegistry)
    assert container.resolve(StreamGuardProtocol) is container.resolve(StreamGuardProtocol)
    assert container.resolve(ChatStreamServiceProtocol) is container.resolve(ChatStreamServiceProtocol)


def test_container_wires_guard_and_registry_from_settings(test_settings) -> None:
    container = build_container(test_settings)

    service = container.resolve(ChatStreamServiceProtocol)
    registry = container.resolve(ProviderRegistry)

    assert isinstance(service, ChatStreamService)
    assert isinstance(container.resolve(StreamGuardProtocol), StreamGuard)
    # No credentials in test settings: only the mock provider is usable.
    config, _ = registry.resolve("mock")
    assert config.provider == "mock"
