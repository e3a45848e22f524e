"""Luma Dream Machine video generation provider (economy tier default)."""

from __future__ import annotations

import math
from typing import Any, Dict

from src.video.providers.base import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    ProviderError,
    RemoteJobStatus,
    RemoteVideoProvider,
    VideoGenerationRequest,
)


class LumaVideoProvider(RemoteVideoProvider):
    provider_name = "luma"
    cost_per_second = 0.025
    cost_per_generation = 0.25
    seconds_per_generation = 8

    def _submit(self, request: VideoGenerationRequest, duration_seconds: int) -> str:
        del duration_seconds
        body = self._request(
            "POST",
            "/generations",
            json={
                "prompt": request.prompt,
                "aspect_ratio": "9:16",
                "loop": False,
            },
        )
        generation_id = str(body.get("id") or "").strip()
        if not generation_id:
            raise ProviderError("luma_generation_id_missing")
        return generation_id

    def _fetch_status(self, job_id: str) -> RemoteJobStatus:
        body = self._request("GET", f"/generations/{job_id}")
        state = str(body.get("state") or "").strip().lower()
        if state == "completed":
            video: Dict[str, Any] = body.get("video") if isinstance(body.get("video"), dict) else {}
            duration = video.get("duration")
            return RemoteJobStatus(
                state=JOB_COMPLETED,
                video_url=str(video.get("url") or "").strip() or None,
                duration=float(duration) if duration is not None else None,
            )
        if state == "failed":
            reason = str(body.get("failure_reason") or "unknown error")
            return RemoteJobStatus(state=JOB_FAILED, error=f"Video generation failed: {reason}")
        return RemoteJobStatus(state=JOB_PENDING)

    def estimate_cost(self, duration_seconds: float) -> float:
        # Luma bills per generation, each covering up to eight seconds.
        generations = max(1, math.ceil(max(float(duration_seconds), 0.0) / self.seconds_per_generation))
        return round(generations * self.cost_per_generation, 4)
