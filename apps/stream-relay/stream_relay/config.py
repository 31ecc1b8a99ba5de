from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

SUPPORTED_PROVIDERS = {"anthropic", "openai", "mock"}


@dataclass(frozen=True)
class AliasConfig:
    alias: str
    provider: str
    upstream_model: str
    defaults: dict[str, Any]


@dataclass(frozen=True)
class ModelsConfig:
    aliases: dict[str, AliasConfig]

    @property
    def providers(self) -> set[str]:
        return {alias.provider for alias in self.aliases.values()}


def parse_models_config(parsed: Any) -> ModelsConfig:
    if not isinstance(parsed, dict) or "aliases" not in parsed:
        raise ValueError("models config must contain an aliases map")

    raw_aliases = parsed["aliases"]
    if not isinstance(raw_aliases, dict):
        raise ValueError("aliases must be a map")

    aliases: dict[str, AliasConfig] = {}
    for alias, payload in raw_aliases.items():
        if not isinstance(payload, dict):
            raise ValueError(f"alias {alias} must be a map")
        provider = str(payload.get("provider", "")).strip()
        upstream_model = str(payload.get("upstream_model", "")).strip()
        defaults = payload.get("defaults", {}) or {}
        if provider not in SUPPORTED_PROVIDERS or not upstream_model:
            raise ValueError(f"alias {alias} missing required provider/upstream_model")
        if not isinstance(defaults, dict):
            raise ValueError(f"alias {alias} defaults must be a map")
        aliases[alias] = AliasConfig(
            alias=alias,
            provider=provider,
            upstream_model=upstream_model,
            defaults=defaults,
        )
    return ModelsConfig(aliases=aliases)


def load_models_config(config_path: str) -> ModelsConfig:
    return parse_models_config(yaml.safe_load(Path(config_path).read_text(encoding="utf-8")))
