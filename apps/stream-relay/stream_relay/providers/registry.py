from __future__ import annotations

import logging

from fastapi import HTTPException

from stream_relay.config import AliasConfig, ModelsConfig
from stream_relay.core.settings import Settings
from stream_relay.providers.anthropic_client import AnthropicTokenSource
from stream_relay.providers.base import TokenSource
from stream_relay.providers.mock_provider import MockTokenSource
from stream_relay.providers.openai_client import OpenAITokenSource

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps model aliases to the token source serving them.

    Providers whose credentials are missing are left unregistered so requests
    for their aliases fail before any stream is opened.
    """

    def __init__(self, models_config: ModelsConfig, sources: dict[str, TokenSource]) -> None:
        self._models_config = models_config
        self._sources = sources

    @classmethod
    def from_settings(cls, settings: Settings, models_config: ModelsConfig) -> ProviderRegistry:
        sources: dict[str, TokenSource] = {}
        providers = models_config.providers
        if "anthropic" in providers:
            if settings.anthropic_api_key:
                sources["anthropic"] = AnthropicTokenSource(
                    settings.anthropic_api_key,
                    settings.provider_timeout_seconds,
                    base_url=settings.anthropic_base_url,
                )
            else:
                logger.warning("ANTHROPIC_API_KEY not set; anthropic aliases are unavailable")
        if "openai" in providers:
            if settings.openai_api_key:
                sources["openai"] = OpenAITokenSource(settings.openai_api_key, settings.provider_timeout_seconds)
            else:
                logger.warning("OPENAI_API_KEY not set; openai aliases are unavailable")
        if "mock" in providers:
            sources["mock"] = MockTokenSource.from_file(
                settings.mock_messages_file,
                fragment_delay_seconds=settings.mock_fragment_delay_seconds,
            )
        return cls(models_config, sources)

    @property
    def aliases(self) -> list[AliasConfig]:
        return list(self._models_config.aliases.values())

    def resolve(self, alias: str) -> tuple[AliasConfig, TokenSource]:
        config = self._models_config.aliases.get(alias)
        if not config:
            raise HTTPException(status_code=404, detail=f"Unknown model alias '{alias}'")
        source = self._sources.get(config.provider)
        if not source:
            raise HTTPException(status_code=503, detail=f"Provider {config.provider} is not configured")
        return config, source

    async def aclose(self) -> None:
        for source in self._sources.values():
            await source.aclose()
