"""OpenAI Sora video generation provider (premium tier default)."""

from __future__ import annotations

from src.video.providers.base import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    ProviderError,
    RemoteJobStatus,
    RemoteVideoProvider,
    VideoGenerationRequest,
)


SORA_ALLOWED_SECONDS = (4, 8, 12)


def _clip_seconds(duration_seconds: int) -> int:
    for allowed in SORA_ALLOWED_SECONDS:
        if duration_seconds <= allowed:
            return allowed
    return SORA_ALLOWED_SECONDS[-1]


class SoraVideoProvider(RemoteVideoProvider):
    provider_name = "sora"
    cost_per_second = 0.30
    authenticated_downloads = True

    def __init__(self, *, model: str = "sora-2", **kwargs) -> None:
        super().__init__(**kwargs)
        self._model = model.strip() or "sora-2"

    def _submit(self, request: VideoGenerationRequest, duration_seconds: int) -> str:
        body = self._request(
            "POST",
            "/videos",
            json={
                "model": self._model,
                "prompt": request.prompt,
                "seconds": str(_clip_seconds(duration_seconds)),
                "size": "720x1280",
            },
        )
        video_id = str(body.get("id") or "").strip()
        if not video_id:
            raise ProviderError("sora_video_id_missing")
        return video_id

    def _fetch_status(self, job_id: str) -> RemoteJobStatus:
        body = self._request("GET", f"/videos/{job_id}")
        status = str(body.get("status") or "").strip().lower()
        if status == "completed":
            seconds = body.get("seconds")
            return RemoteJobStatus(
                state=JOB_COMPLETED,
                video_url=self._url(f"/videos/{job_id}/content"),
                duration=float(seconds) if seconds is not None else None,
            )
        if status == "failed":
            error = body.get("error") if isinstance(body.get("error"), dict) else {}
            return RemoteJobStatus(state=JOB_FAILED, error=str(error.get("message") or "sora_generation_failed"))
        return RemoteJobStatus(state=JOB_PENDING)
