"""Durable storage for generated videos."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import json
from pathlib import Path
import re
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from src.core.config import get_settings
from src.core.logger import get_logger


class VideoStorageError(RuntimeError):
    """Raised when a generated video cannot be persisted."""


@dataclass(frozen=True)
class StoredVideo:
    url: str
    cdn_url: str
    storage_backend: str
    storage_path: Optional[str] = None
    size_bytes: Optional[int] = None
    sha256: Optional[str] = None


# Fetches provider output whose URL needs the provider credentials.
VideoFetcher = Callable[[str], bytes]


class VideoStorage(Protocol):
    def upload(
        self,
        remote_url: str,
        file_name: str,
        metadata: Dict[str, Any],
        *,
        fetch: Optional[VideoFetcher] = None,
    ) -> StoredVideo:
        raise NotImplementedError


_SAFE_NAME = re.compile(r"[^A-Za-z0-9._/-]+")


def _safe_relative_path(file_name: str) -> Path:
    cleaned = _SAFE_NAME.sub("_", file_name.strip()).strip("/")
    parts = [part for part in cleaned.split("/") if part and part not in {".", ".."}]
    if not parts:
        raise VideoStorageError("video_file_name_empty")
    return Path(*parts)


def _video_storage_root() -> Path:
    settings = get_settings()
    configured = Path(settings.video_storage_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


def public_video_url(relative_path: str) -> str:
    settings = get_settings()
    base = settings.app_public_base_url.strip().rstrip("/")
    if not base:
        return ""
    return f"{base}/videos/files/{relative_path}"


def cdn_video_url(relative_path: str, fallback: str) -> str:
    settings = get_settings()
    base = settings.video_cdn_base_url.strip().rstrip("/")
    if not base:
        return fallback
    return f"{base}/{relative_path}"


def resolve_video_file_path(relative_path: str) -> Optional[Path]:
    root = _video_storage_root().resolve()
    candidate = (root / _safe_relative_path(relative_path)).resolve()
    if root not in candidate.parents:
        return None
    if not candidate.is_file():
        return None
    return candidate


class ExternalUrlVideoStorage:
    """Keeps the provider URL as the canonical location."""

    storage_backend = "external_url"

    def upload(
        self,
        remote_url: str,
        file_name: str,
        metadata: Dict[str, Any],
        *,
        fetch: Optional[VideoFetcher] = None,
    ) -> StoredVideo:
        del file_name
        url = (remote_url or "").strip()
        if not url:
            raise VideoStorageError("video_remote_url_missing")
        if fetch is not None:
            # Platforms cannot pull a URL that needs provider credentials.
            raise VideoStorageError(f"video_remote_url_requires_credentials provider={metadata.get('provider')}")
        return StoredVideo(url=url, cdn_url=url, storage_backend=self.storage_backend)


class FilesystemVideoStorage:
    """Downloads provider output into the local video store."""

    storage_backend = "filesystem"

    def __init__(
        self,
        *,
        root: Optional[Path] = None,
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._root = root
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client
        self._logger = get_logger("viral.video.storage")

    def _storage_root(self) -> Path:
        return self._root if self._root is not None else _video_storage_root()

    def _download(self, remote_url: str) -> bytes:
        if self._client is not None:
            response = self._client.get(remote_url, follow_redirects=True)
        else:
            with httpx.Client(timeout=self._timeout_seconds, follow_redirects=True) as client:
                response = client.get(remote_url)

        if response.status_code < 200 or response.status_code >= 300:
            raise VideoStorageError(f"video_download_failed status={response.status_code} url={remote_url}")
        if not response.content:
            raise VideoStorageError(f"video_download_empty url={remote_url}")
        return response.content

    def upload(
        self,
        remote_url: str,
        file_name: str,
        metadata: Dict[str, Any],
        *,
        fetch: Optional[VideoFetcher] = None,
    ) -> StoredVideo:
        url = (remote_url or "").strip()
        if not url:
            raise VideoStorageError("video_remote_url_missing")

        relative = _safe_relative_path(file_name)
        relative_posix = relative.as_posix()
        public_url = public_video_url(relative_posix)
        if not public_url:
            raise VideoStorageError("app_public_base_url_missing_for_video_storage")

        try:
            content = fetch(url) if fetch is not None else self._download(url)
        except httpx.HTTPError as exc:
            raise VideoStorageError(f"video_download_failed url={url} error={exc}") from exc

        target = self._storage_root() / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        digest = hashlib.sha256(content).hexdigest()
        target.with_name(target.name + ".json").write_text(
            json.dumps(
                {"source_url": url, "sha256": digest, "size_bytes": len(content), "metadata": metadata},
                sort_keys=True,
                default=str,
            ),
            encoding="utf-8",
        )

        self._logger.info(
            "video_stored",
            storage_path=relative_posix,
            size_bytes=len(content),
            job_id=metadata.get("job_id"),
        )
        return StoredVideo(
            url=public_url,
            cdn_url=cdn_video_url(relative_posix, public_url),
            storage_backend=self.storage_backend,
            storage_path=relative_posix,
            size_bytes=len(content),
            sha256=digest,
        )


def get_video_storage() -> VideoStorage:
    settings = get_settings()
    if settings.video_storage_backend.strip().lower() == "external_url":
        return ExternalUrlVideoStorage()
    return FilesystemVideoStorage(timeout_seconds=settings.video_download_timeout_seconds)
