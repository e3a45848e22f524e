"""Factory resolving the provider registry and router at startup."""

from __future__ import annotations

from functools import lru_cache
from typing import Callable, Dict, Optional

import httpx

from src.core.config import Settings, get_settings
from src.core.logger import get_logger
from src.core.runtime import RuntimeConfig, load_runtime_config
from src.video.providers.base import VideoProvider
from src.video.providers.luma_provider import LumaVideoProvider
from src.video.providers.mock_provider import MockVideoProvider
from src.video.providers.runway_provider import RunwayVideoProvider
from src.video.providers.sora_provider import SoraVideoProvider
from src.video.providers.unavailable_provider import UnavailableVideoProvider
from src.video.providers.veo_provider import VeoVideoProvider
from src.video.router import ProviderRouter


PROVIDER_NAMES = ("sora", "veo", "runway", "luma")

PROVIDER_COSTS_PER_SECOND: Dict[str, float] = {
    "sora": SoraVideoProvider.cost_per_second,
    "veo": VeoVideoProvider.cost_per_second,
    "runway": RunwayVideoProvider.cost_per_second,
    "luma": LumaVideoProvider.cost_per_second,
}


def _api_key_for(settings: Settings, provider_name: str) -> str:
    return {
        "sora": settings.openai_api_key,
        "veo": settings.gemini_api_key,
        "runway": settings.runway_api_key,
        "luma": settings.luma_api_key,
    }[provider_name].strip()


def _credential_name(provider_name: str) -> str:
    return {
        "sora": "OPENAI_API_KEY",
        "veo": "GEMINI_API_KEY",
        "runway": "RUNWAY_API_KEY",
        "luma": "LUMA_API_KEY",
    }[provider_name]


def _build_live_provider(
    settings: Settings,
    provider_name: str,
    *,
    client: Optional[httpx.Client] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> VideoProvider:
    common = dict(
        api_key=_api_key_for(settings, provider_name),
        timeout_seconds=settings.video_provider_timeout_seconds,
        poll_max_attempts=settings.video_poll_max_attempts,
        poll_interval_seconds=settings.video_poll_interval_seconds,
        default_duration_seconds=settings.video_default_duration_seconds,
        client=client,
        sleep=sleep,
    )
    if provider_name == "sora":
        return SoraVideoProvider(model=settings.sora_model, base_url=settings.openai_api_base_url, **common)
    if provider_name == "veo":
        return VeoVideoProvider(model=settings.veo_model, base_url=settings.gemini_api_base_url, **common)
    if provider_name == "runway":
        return RunwayVideoProvider(model=settings.runway_model, base_url=settings.runway_api_base_url, **common)
    return LumaVideoProvider(base_url=settings.luma_api_base_url, **common)


def build_video_providers(
    settings: Optional[Settings] = None,
    runtime: Optional[RuntimeConfig] = None,
    *,
    client: Optional[httpx.Client] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Dict[str, VideoProvider]:
    """Resolve one provider per backend, deciding availability once."""

    resolved_settings = settings or get_settings()
    resolved_runtime = runtime or load_runtime_config()
    mode = resolved_settings.video_provider_mode.strip().lower()
    logger = get_logger("viral.video.providers")

    providers: Dict[str, VideoProvider] = {}
    for name in PROVIDER_NAMES:
        cost_per_second = PROVIDER_COSTS_PER_SECOND[name]
        if resolved_runtime.is_provider_disabled(name):
            providers[name] = UnavailableVideoProvider(name, "disabled_by_runtime_config", cost_per_second=cost_per_second)
        elif mode == "mock":
            providers[name] = MockVideoProvider(
                name,
                cost_per_second=cost_per_second,
                duration_seconds=resolved_settings.video_default_duration_seconds,
            )
        elif not _api_key_for(resolved_settings, name):
            providers[name] = UnavailableVideoProvider(
                name,
                f"{_credential_name(name)} not configured",
                cost_per_second=cost_per_second,
            )
        else:
            providers[name] = _build_live_provider(resolved_settings, name, client=client, sleep=sleep)

    logger.info(
        "video_providers_resolved",
        mode=mode,
        available=[name for name, provider in providers.items() if getattr(provider, "available", True)],
        unavailable=[name for name, provider in providers.items() if not getattr(provider, "available", True)],
    )
    return providers


@lru_cache(maxsize=1)
def get_provider_router() -> ProviderRouter:
    return ProviderRouter(build_video_providers())


def reset_provider_router_cache() -> None:
    get_provider_router.cache_clear()
