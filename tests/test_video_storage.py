from __future__ import annotations

import json

import httpx
import pytest

from src.core.config import get_settings
from src.video.storage import (
    ExternalUrlVideoStorage,
    FilesystemVideoStorage,
    VideoStorageError,
    get_video_storage,
    resolve_video_file_path,
)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_filesystem_storage_downloads_and_writes_sidecar(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", "https://api.example.com/")
    get_settings.cache_clear()

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://provider.test/out.mp4"
        return httpx.Response(200, content=b"fake-mp4-bytes")

    storage = FilesystemVideoStorage(root=tmp_path, client=_client(handler))
    stored = storage.upload("https://provider.test/out.mp4", "tenant-1/job-1.mp4", {"job_id": "job-1"})

    assert stored.url == "https://api.example.com/videos/files/tenant-1/job-1.mp4"
    assert stored.cdn_url == stored.url
    assert stored.storage_backend == "filesystem"
    assert stored.size_bytes == len(b"fake-mp4-bytes")
    assert (tmp_path / "tenant-1" / "job-1.mp4").read_bytes() == b"fake-mp4-bytes"
    sidecar = json.loads((tmp_path / "tenant-1" / "job-1.mp4.json").read_text(encoding="utf-8"))
    assert sidecar["source_url"] == "https://provider.test/out.mp4"
    assert sidecar["metadata"] == {"job_id": "job-1"}


def test_filesystem_storage_prefers_cdn_base(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", "https://api.example.com")
    monkeypatch.setenv("VIDEO_CDN_BASE_URL", "https://cdn.example.com/v")
    get_settings.cache_clear()

    storage = FilesystemVideoStorage(root=tmp_path, client=_client(lambda request: httpx.Response(200, content=b"x")))
    stored = storage.upload("https://provider.test/out.mp4", "t/j.mp4", {})

    assert stored.cdn_url == "https://cdn.example.com/v/t/j.mp4"


def test_filesystem_storage_requires_public_base_url(tmp_path) -> None:
    storage = FilesystemVideoStorage(root=tmp_path, client=_client(lambda request: httpx.Response(200, content=b"x")))

    with pytest.raises(VideoStorageError, match="app_public_base_url_missing"):
        storage.upload("https://provider.test/out.mp4", "t/j.mp4", {})


def test_filesystem_storage_rejects_failed_and_empty_downloads(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", "https://api.example.com")
    get_settings.cache_clear()

    failing = FilesystemVideoStorage(root=tmp_path, client=_client(lambda request: httpx.Response(403)))
    with pytest.raises(VideoStorageError, match="status=403"):
        failing.upload("https://provider.test/out.mp4", "t/j.mp4", {})

    empty = FilesystemVideoStorage(root=tmp_path, client=_client(lambda request: httpx.Response(200, content=b"")))
    with pytest.raises(VideoStorageError, match="video_download_empty"):
        empty.upload("https://provider.test/out.mp4", "t/j.mp4", {})


def test_external_url_storage_keeps_provider_url() -> None:
    stored = ExternalUrlVideoStorage().upload("https://provider.test/out.mp4", "t/j.mp4", {})

    assert stored.url == "https://provider.test/out.mp4"
    assert stored.storage_backend == "external_url"
    with pytest.raises(VideoStorageError):
        ExternalUrlVideoStorage().upload("  ", "t/j.mp4", {})


def test_resolve_video_file_path_stays_inside_root(tmp_path) -> None:
    video_root = tmp_path / "videos"
    (video_root / "t").mkdir(parents=True)
    (video_root / "t" / "j.mp4").write_bytes(b"x")

    assert resolve_video_file_path("t/j.mp4") == (video_root / "t" / "j.mp4").resolve()
    assert resolve_video_file_path("../runtime-missing.yaml") is None
    assert resolve_video_file_path("t/missing.mp4") is None


def test_get_video_storage_follows_backend_setting(monkeypatch) -> None:
    assert isinstance(get_video_storage(), FilesystemVideoStorage)

    monkeypatch.setenv("VIDEO_STORAGE_BACKEND", "external_url")
    get_settings.cache_clear()
    assert isinstance(get_video_storage(), ExternalUrlVideoStorage)


def test_filesystem_storage_uses_provider_fetch_for_private_output(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", "https://api.example.com")
    get_settings.cache_clear()
    fetched = []

    def fetch(url: str) -> bytes:
        fetched.append(url)
        return b"private-bytes"

    def unauthenticated(request: httpx.Request) -> httpx.Response:
        raise AssertionError("private output must not be fetched anonymously")

    storage = FilesystemVideoStorage(root=tmp_path, client=_client(unauthenticated))
    stored = storage.upload(
        "https://api.openai.test/v1/videos/video_1/content",
        "tenant-1/job-1.mp4",
        {"provider": "sora"},
        fetch=fetch,
    )

    assert fetched == ["https://api.openai.test/v1/videos/video_1/content"]
    assert stored.size_bytes == len(b"private-bytes")
    assert (tmp_path / "tenant-1" / "job-1.mp4").read_bytes() == b"private-bytes"


def test_external_url_storage_refuses_output_that_needs_credentials() -> None:
    with pytest.raises(VideoStorageError, match="video_remote_url_requires_credentials provider=sora"):
        ExternalUrlVideoStorage().upload(
            "https://api.openai.test/v1/videos/video_1/content",
            "t/j.mp4",
            {"provider": "sora"},
            fetch=lambda url: b"",
        )
