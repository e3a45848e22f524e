"""Shared platform posting contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, Tuple

import httpx


class PlatformPublishError(RuntimeError):
    """Raised when a platform API rejects or garbles an upload step."""


@dataclass(frozen=True)
class PostingAccount:
    account_id: str
    platform: str
    username: str
    access_token: str
    platform_account_id: Optional[str] = None


@dataclass(frozen=True)
class PlatformPostRequest:
    video_url: str
    caption: str
    hashtags: Tuple[str, ...] = ()
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PlatformPostResult:
    platform: str
    success: bool
    post_id: Optional[str] = None
    post_url: Optional[str] = None
    error: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


class PlatformPublisher(Protocol):
    platform: str

    def upload_video(self, account: PostingAccount, request: PlatformPostRequest) -> PlatformPostResult:
        raise NotImplementedError


def caption_with_hashtags(caption: str, hashtags: Sequence[str], *, limit: int) -> str:
    text = caption.strip()
    tags = " ".join(tag.strip() for tag in hashtags if tag and tag.strip())
    if tags:
        text = f"{text}\n\n{tags}" if text else tags
    return text[:limit]


class HttpPlatformClient:
    """httpx plumbing shared by the platform publishers."""

    platform = "platform"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: int = 60,
        poll_max_attempts: int = 30,
        poll_interval_seconds: float = 5.0,
        client: Optional[httpx.Client] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._poll_max_attempts = max(1, poll_max_attempts)
        self._poll_interval_seconds = max(0.0, poll_interval_seconds)
        self._client = client
        self._sleep = sleep or time.sleep

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = self._url(path)
        if self._client is not None:
            return self._client.request(method, url, **kwargs)
        with httpx.Client(timeout=self._timeout_seconds) as client:
            return client.request(method, url, **kwargs)

    def _check(self, response: httpx.Response) -> None:
        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 240:
                detail = detail[:240] + "..."
            raise PlatformPublishError(f"{self.platform}_request_failed status={response.status_code} detail={detail}")

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = self._send(method, path, **kwargs)
        self._check(response)
        try:
            body = response.json()
        except ValueError as exc:
            raise PlatformPublishError(f"{self.platform}_invalid_json_response") from exc
        if not isinstance(body, dict):
            raise PlatformPublishError(f"{self.platform}_invalid_payload")
        return body

    def _failure(self, error: str, **payload: Any) -> PlatformPostResult:
        return PlatformPostResult(platform=self.platform, success=False, error=error, payload=dict(payload))
