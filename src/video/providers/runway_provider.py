"""Runway Gen-3 video generation provider."""

from __future__ import annotations

from typing import Optional

from src.video.providers.base import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    ProviderError,
    RemoteJobStatus,
    RemoteVideoProvider,
    VideoGenerationRequest,
)


RUNWAY_CLIP_SECONDS = 5


class RunwayVideoProvider(RemoteVideoProvider):
    provider_name = "runway"
    cost_per_second = 0.05

    def __init__(self, *, model: str = "gen3a_turbo", **kwargs) -> None:
        super().__init__(**kwargs)
        self._model = model.strip() or "gen3a_turbo"

    def _submit(self, request: VideoGenerationRequest, duration_seconds: int) -> str:
        del duration_seconds
        body = self._request(
            "POST",
            "/generations",
            json={
                "model": self._model,
                "prompt": request.prompt,
                "duration": RUNWAY_CLIP_SECONDS,
                "aspect_ratio": "9:16",
            },
        )
        generation_id = str(body.get("id") or "").strip()
        if not generation_id:
            raise ProviderError("runway_generation_id_missing")
        return generation_id

    def _fetch_status(self, job_id: str) -> RemoteJobStatus:
        body = self._request("GET", f"/generations/{job_id}")
        status = str(body.get("status") or "").strip().upper()
        if status == "SUCCEEDED":
            output = body.get("output")
            video_url: Optional[str] = None
            if isinstance(output, list) and output:
                video_url = str(output[0] or "").strip() or None
            return RemoteJobStatus(state=JOB_COMPLETED, video_url=video_url, duration=float(RUNWAY_CLIP_SECONDS))
        if status == "FAILED":
            reason = str(body.get("failure") or body.get("error") or "Video generation failed")
            return RemoteJobStatus(state=JOB_FAILED, error=reason)
        return RemoteJobStatus(state=JOB_PENDING)
