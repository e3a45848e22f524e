"""Video generation provider integrations."""

from src.video.providers.base import (
    ProviderError,
    ProviderResult,
    ProviderTimeoutError,
    VideoAsset,
    VideoGenerationRequest,
    VideoProvider,
)
from src.video.providers.luma_provider import LumaVideoProvider
from src.video.providers.mock_provider import MockVideoProvider
from src.video.providers.runway_provider import RunwayVideoProvider
from src.video.providers.sora_provider import SoraVideoProvider
from src.video.providers.unavailable_provider import UnavailableVideoProvider
from src.video.providers.veo_provider import VeoVideoProvider

__all__ = [
    "ProviderError",
    "ProviderResult",
    "ProviderTimeoutError",
    "VideoAsset",
    "VideoGenerationRequest",
    "VideoProvider",
    "LumaVideoProvider",
    "MockVideoProvider",
    "RunwayVideoProvider",
    "SoraVideoProvider",
    "UnavailableVideoProvider",
    "VeoVideoProvider",
]
