"""Publisher registry keyed by posting platform."""

from __future__ import annotations

from typing import Callable, Dict, Optional

import httpx

from src.core.config import Settings, get_settings
from src.social.platforms.base import PlatformPublisher
from src.social.platforms.instagram import InstagramPublisher
from src.social.platforms.mock import MockPlatformPublisher
from src.social.platforms.tiktok import TikTokPublisher
from src.social.platforms.youtube import YouTubePublisher


def build_platform_publishers(
    settings: Optional[Settings] = None,
    *,
    client: Optional[httpx.Client] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Dict[str, PlatformPublisher]:
    resolved = settings or get_settings()
    if resolved.social_publish_mode.strip().lower() == "mock":
        return {name: MockPlatformPublisher(name) for name in ("tiktok", "youtube", "instagram")}

    common = dict(
        timeout_seconds=resolved.platform_api_timeout_seconds,
        poll_max_attempts=resolved.platform_publish_poll_max_attempts,
        poll_interval_seconds=resolved.platform_publish_poll_interval_seconds,
        client=client,
        sleep=sleep,
    )
    return {
        "tiktok": TikTokPublisher(base_url=resolved.tiktok_api_base_url, **common),
        "youtube": YouTubePublisher(
            base_url=resolved.youtube_api_base_url,
            upload_base_url=resolved.youtube_upload_base_url,
            **common,
        ),
        "instagram": InstagramPublisher(base_url=resolved.instagram_graph_api_base_url, **common),
    }
