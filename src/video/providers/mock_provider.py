"""Deterministic mock video provider for local/dev usage."""

from __future__ import annotations

import hashlib

from src.video.providers.base import (
    JOB_COMPLETED,
    ProviderResult,
    VideoAsset,
    VideoGenerationRequest,
    VideoProvider,
)


class MockVideoProvider(VideoProvider):
    """Stands in for one named backend and completes instantly."""

    def __init__(self, provider_name: str, *, cost_per_second: float = 0.0, duration_seconds: int = 8) -> None:
        self.provider_name = provider_name
        self._cost_per_second = max(cost_per_second, 0.0)
        self._duration_seconds = max(1, duration_seconds)

    def _job_id(self, request: VideoGenerationRequest) -> str:
        seed_source = f"{self.provider_name}:{request.tenant_id}:{request.job_id}:{request.prompt}".encode("utf-8")
        return f"{self.provider_name}_mock_{hashlib.sha1(seed_source).hexdigest()[:16]}"

    def _video_url(self, job_id: str) -> str:
        return f"https://mock-{self.provider_name}-cdn.example.com/videos/{job_id}.mp4"

    def generate(self, request: VideoGenerationRequest) -> ProviderResult:
        duration = float(request.duration_seconds or self._duration_seconds)
        job_id = self._job_id(request)
        return ProviderResult(
            success=True,
            provider=self.provider_name,
            video_url=self._video_url(job_id),
            provider_job_id=job_id,
            duration=duration,
            cost=self.estimate_cost(duration),
        )

    def check_status(self, job_id: str) -> str:
        del job_id
        return JOB_COMPLETED

    def get_video(self, job_id: str) -> VideoAsset:
        return VideoAsset(url=self._video_url(job_id), duration=float(self._duration_seconds))

    def estimate_cost(self, duration_seconds: float) -> float:
        return round(max(float(duration_seconds), 0.0) * self._cost_per_second, 4)
