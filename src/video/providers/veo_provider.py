"""Google Veo video generation provider via the Gemini long-running operations API."""

from __future__ import annotations

from typing import Any, Dict, Optional

from src.video.providers.base import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    ProviderError,
    RemoteJobStatus,
    RemoteVideoProvider,
    VideoGenerationRequest,
)


class VeoVideoProvider(RemoteVideoProvider):
    provider_name = "veo"
    cost_per_second = 0.033
    authenticated_downloads = True

    def __init__(self, *, model: str = "veo-3.0-fast-generate-001", **kwargs) -> None:
        super().__init__(**kwargs)
        self._model = model.strip() or "veo-3.0-fast-generate-001"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    def _submit(self, request: VideoGenerationRequest, duration_seconds: int) -> str:
        body = self._request(
            "POST",
            f"/models/{self._model}:predictLongRunning",
            json={
                "instances": [{"prompt": request.prompt}],
                "parameters": {
                    "aspectRatio": "9:16",
                    "durationSeconds": duration_seconds,
                },
            },
        )
        operation_name = str(body.get("name") or "").strip()
        if not operation_name:
            raise ProviderError("veo_operation_name_missing")
        return operation_name

    @staticmethod
    def _first_video_uri(response: Dict[str, Any]) -> Optional[str]:
        generated = response.get("generateVideoResponse")
        if not isinstance(generated, dict):
            return None
        samples = generated.get("generatedSamples")
        if not isinstance(samples, list):
            return None
        for sample in samples:
            if not isinstance(sample, dict):
                continue
            video = sample.get("video")
            if isinstance(video, dict) and video.get("uri"):
                return str(video["uri"]).strip()
        return None

    def _fetch_status(self, job_id: str) -> RemoteJobStatus:
        body = self._request("GET", f"/{job_id}")
        if not body.get("done"):
            return RemoteJobStatus(state=JOB_PENDING)

        error = body.get("error")
        if isinstance(error, dict):
            return RemoteJobStatus(state=JOB_FAILED, error=str(error.get("message") or "veo_generation_failed"))

        response = body.get("response") if isinstance(body.get("response"), dict) else {}
        video_uri = self._first_video_uri(response)
        if not video_uri:
            return RemoteJobStatus(state=JOB_FAILED, error="veo_video_missing_from_operation")
        return RemoteJobStatus(state=JOB_COMPLETED, video_url=video_uri)
