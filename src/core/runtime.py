"""Runtime configuration loader (provider and platform switches)."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field, field_validator

from src.core.config import get_settings


class RuntimeConfig(BaseModel):
    disabled_providers: List[str] = Field(default_factory=list)
    paused_platforms: List[str] = Field(default_factory=list)

    @field_validator("disabled_providers", "paused_platforms", mode="before")
    @classmethod
    def _normalize_names(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple, set)):
            raise ValueError("expected a list of names")
        normalized = [str(item).strip().lower() for item in value]
        return [item for item in normalized if item]

    def is_provider_disabled(self, provider_name: str) -> bool:
        return provider_name.strip().lower() in self.disabled_providers

    def is_platform_paused(self, platform: str) -> bool:
        return platform.strip().lower() in self.paused_platforms


def _resolve_runtime_path() -> Path:
    settings = get_settings()
    configured = Path(settings.runtime_file_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


@lru_cache(maxsize=1)
def load_runtime_config() -> RuntimeConfig:
    path = _resolve_runtime_path()
    if not path.exists():
        return RuntimeConfig()

    content = path.read_text(encoding="utf-8")
    parsed = yaml.safe_load(content) or {}
    if not isinstance(parsed, dict):
        raise ValueError("Runtime config must be a YAML object")

    data: Dict[str, Any] = dict(parsed)
    return RuntimeConfig.model_validate(data)


def reset_runtime_config_cache() -> None:
    load_runtime_config.cache_clear()
