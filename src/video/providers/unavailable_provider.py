"""Provider variant used when a backend is not configured or switched off."""

from __future__ import annotations

from src.video.providers.base import (
    JOB_FAILED,
    ProviderError,
    ProviderResult,
    VideoAsset,
    VideoGenerationRequest,
    VideoProvider,
)


class UnavailableVideoProvider(VideoProvider):
    """Always reports failure so the router moves on to the next backend."""

    available = False

    def __init__(self, provider_name: str, reason: str, *, cost_per_second: float = 0.0) -> None:
        self.provider_name = provider_name
        self.reason = reason
        self._cost_per_second = max(cost_per_second, 0.0)

    def generate(self, request: VideoGenerationRequest) -> ProviderResult:
        del request
        return ProviderResult.failure(self.provider_name, f"{self.provider_name} unavailable: {self.reason}")

    def check_status(self, job_id: str) -> str:
        del job_id
        return JOB_FAILED

    def get_video(self, job_id: str) -> VideoAsset:
        raise ProviderError(f"{self.provider_name} unavailable: {self.reason} (job_id={job_id})")

    def estimate_cost(self, duration_seconds: float) -> float:
        return round(max(float(duration_seconds), 0.0) * self._cost_per_second, 4)
