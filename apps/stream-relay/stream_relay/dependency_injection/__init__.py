"""Dependency injection container assembly utilities."""

from stream_relay.dependency_injection.container import build_container, get_container

__all__ = ["build_container", "get_container"]
