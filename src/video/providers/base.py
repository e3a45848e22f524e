"""Provider contracts for video generation backends."""

from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import Any, Callable, Dict, Optional, Protocol

import httpx


JOB_PENDING = "pending"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"


class ProviderError(RuntimeError):
    """Raised when a video provider cannot fulfill a generation request."""


class ProviderTimeoutError(ProviderError):
    """Raised when a remote generation job does not finish within the poll budget."""


@dataclass(frozen=True)
class VideoGenerationRequest:
    prompt: str
    category: str = "tech"
    platform: str = "tiktok"
    provider: Optional[str] = None
    tenant_id: str = ""
    concept_id: str = ""
    job_id: str = ""
    priority: int = 5
    duration_seconds: Optional[int] = None
    # Called between status polls so the caller can renew its leases.
    heartbeat: Optional[Callable[[], None]] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ProviderResult:
    success: bool
    provider: str
    video_url: Optional[str] = None
    provider_job_id: Optional[str] = None
    duration: Optional[float] = None
    cost: Optional[float] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.success and (not self.video_url or self.duration is None):
            raise ValueError("successful provider result requires video_url and duration")
        if not self.success and not self.error:
            raise ValueError("failed provider result requires an error message")

    @classmethod
    def failure(cls, provider: str, error: str, *, provider_job_id: Optional[str] = None) -> "ProviderResult":
        return cls(success=False, provider=provider, error=error or "unknown_error", provider_job_id=provider_job_id)


@dataclass(frozen=True)
class VideoAsset:
    url: str
    duration: float


@dataclass(frozen=True)
class RemoteJobStatus:
    state: str
    video_url: Optional[str] = None
    duration: Optional[float] = None
    error: Optional[str] = None


class VideoProvider(Protocol):
    provider_name: str

    def generate(self, request: VideoGenerationRequest) -> ProviderResult:
        raise NotImplementedError

    def check_status(self, job_id: str) -> str:
        raise NotImplementedError

    def get_video(self, job_id: str) -> VideoAsset:
        raise NotImplementedError

    def estimate_cost(self, duration_seconds: float) -> float:
        raise NotImplementedError


class RemoteVideoProvider(VideoProvider):
    """Shared submit/poll/normalize flow for HTTP-backed providers.

    Subclasses implement ``_submit`` (returns the remote job id) and
    ``_fetch_status`` (maps the remote payload onto ``RemoteJobStatus``).
    ``generate`` never raises: transport and API errors become failed results.
    """

    provider_name = "remote"
    cost_per_second = 0.0
    # Output URLs that only answer with the provider credentials attached.
    authenticated_downloads = False

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        timeout_seconds: int = 30,
        poll_max_attempts: int = 60,
        poll_interval_seconds: float = 5.0,
        default_duration_seconds: int = 8,
        client: Optional[httpx.Client] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._poll_max_attempts = max(1, poll_max_attempts)
        self._poll_interval_seconds = max(0.0, poll_interval_seconds)
        self._default_duration_seconds = max(1, default_duration_seconds)
        self._client = client
        self._sleep = sleep or time.sleep

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _download_headers(self) -> Dict[str, str]:
        headers = self._headers()
        headers.pop("Content-Type", None)
        return headers

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, *, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self._api_key:
            raise ProviderError(f"{self.provider_name}_api_key_missing")

        url = self._url(path)
        if self._client is not None:
            response = self._client.request(method, url, headers=self._headers(), json=json)
        else:
            with httpx.Client(timeout=self._timeout_seconds) as client:
                response = client.request(method, url, headers=self._headers(), json=json)

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 240:
                detail = detail[:240] + "..."
            raise ProviderError(
                f"{self.provider_name}_request_failed status={response.status_code} detail={detail}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(f"{self.provider_name}_invalid_json_response") from exc
        if not isinstance(body, dict):
            raise ProviderError(f"{self.provider_name}_unexpected_response_shape")
        return body

    def _submit(self, request: VideoGenerationRequest, duration_seconds: int) -> str:
        raise NotImplementedError

    def _fetch_status(self, job_id: str) -> RemoteJobStatus:
        raise NotImplementedError

    def check_status(self, job_id: str) -> str:
        return self._fetch_status(job_id).state

    def get_video(self, job_id: str) -> VideoAsset:
        status = self._fetch_status(job_id)
        if status.state != JOB_COMPLETED or not status.video_url:
            raise ProviderError(f"{self.provider_name}_video_not_ready job_id={job_id}")
        duration = status.duration if status.duration is not None else float(self._default_duration_seconds)
        return VideoAsset(url=status.video_url, duration=duration)

    def estimate_cost(self, duration_seconds: float) -> float:
        return round(max(float(duration_seconds), 0.0) * self.cost_per_second, 4)

    def download(self, video_url: str, *, timeout_seconds: Optional[int] = None) -> bytes:
        """Fetch finished output, sending credentials when the provider requires them."""

        headers = self._download_headers() if self.authenticated_downloads else {}
        url = self._url(video_url)
        if self._client is not None:
            response = self._client.get(url, headers=headers, follow_redirects=True)
        else:
            with httpx.Client(timeout=timeout_seconds or self._timeout_seconds, follow_redirects=True) as client:
                response = client.get(url, headers=headers)

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderError(
                f"{self.provider_name}_download_failed status={response.status_code} url={url}"
            )
        if not response.content:
            raise ProviderError(f"{self.provider_name}_download_empty url={url}")
        return response.content

    def wait_for_completion(
        self,
        job_id: str,
        *,
        heartbeat: Optional[Callable[[], None]] = None,
    ) -> RemoteJobStatus:
        """Poll until the remote job reaches a terminal state or the attempt cap is hit."""

        for attempt in range(1, self._poll_max_attempts + 1):
            status = self._fetch_status(job_id)
            if status.state == JOB_COMPLETED:
                if not status.video_url:
                    raise ProviderError(f"{self.provider_name}_video_url_missing job_id={job_id}")
                return status
            if status.state == JOB_FAILED:
                return status
            if heartbeat is not None:
                heartbeat()
            if attempt < self._poll_max_attempts:
                self._sleep(self._poll_interval_seconds)

        raise ProviderTimeoutError(
            f"{self.provider_name} generation timed out after {self._poll_max_attempts} status checks"
        )

    def generate(self, request: VideoGenerationRequest) -> ProviderResult:
        duration = request.duration_seconds or self._default_duration_seconds
        job_id: Optional[str] = None
        try:
            job_id = self._submit(request, duration)
            status = self.wait_for_completion(job_id, heartbeat=request.heartbeat)
        except ProviderTimeoutError as exc:
            return ProviderResult.failure(self.provider_name, str(exc), provider_job_id=job_id)
        except (ProviderError, httpx.HTTPError) as exc:
            return ProviderResult.failure(
                self.provider_name,
                str(exc) or exc.__class__.__name__,
                provider_job_id=job_id,
            )

        if status.state == JOB_FAILED:
            return ProviderResult.failure(
                self.provider_name,
                status.error or f"{self.provider_name}_generation_failed",
                provider_job_id=job_id,
            )

        final_duration = status.duration if status.duration is not None else float(duration)
        return ProviderResult(
            success=True,
            provider=self.provider_name,
            video_url=status.video_url,
            provider_job_id=job_id,
            duration=final_duration,
            cost=self.estimate_cost(final_duration),
        )
