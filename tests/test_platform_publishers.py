from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx

from src.core.config import get_settings
from src.social.platforms.base import PlatformPostRequest, PostingAccount, caption_with_hashtags
from src.social.platforms.factory import build_platform_publishers
from src.social.platforms.instagram import InstagramPublisher
from src.social.platforms.mock import MockPlatformPublisher
from src.social.platforms.tiktok import TikTokPublisher
from src.social.platforms.youtube import YouTubePublisher


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _account(platform: str, **overrides) -> PostingAccount:
    values = dict(account_id="acct-1", platform=platform, username="money.bot", access_token="token-1")
    values.update(overrides)
    return PostingAccount(**values)


REQUEST = PlatformPostRequest(
    video_url="https://cdn.test/tenant-1/job-1.mp4",
    caption="Compound interest explained",
    hashtags=("#finance", "#money"),
)


def test_caption_with_hashtags_appends_and_truncates() -> None:
    assert caption_with_hashtags("Hello", ["#a", " ", "#b"], limit=100) == "Hello\n\n#a #b"
    assert caption_with_hashtags("", ["#a"], limit=100) == "#a"
    assert caption_with_hashtags("abcdef", [], limit=3) == "abc"


def test_tiktok_pull_from_url_polls_until_complete() -> None:
    statuses = iter(["PROCESSING_DOWNLOAD", "PUBLISH_COMPLETE"])
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(request.url.path)
        assert request.headers["authorization"] == "Bearer token-1"
        if request.url.path.endswith("/video/init/"):
            assert body["source_info"] == {"source": "PULL_FROM_URL", "video_url": REQUEST.video_url}
            assert body["post_info"]["title"] == "Compound interest explained\n\n#finance #money"
            assert body["post_info"]["privacy_level"] == "PUBLIC_TO_EVERYONE"
            assert body["post_info"]["disable_comment"] is False
            return httpx.Response(200, json={"data": {"publish_id": "v_pub_1"}, "error": {"code": "ok"}})
        assert body == {"publish_id": "v_pub_1"}
        status = next(statuses)
        data = {"status": status}
        if status == "PUBLISH_COMPLETE":
            data["publicaly_available_post_id"] = [7345]
        return httpx.Response(200, json={"data": data, "error": {"code": "ok"}})

    publisher = TikTokPublisher(base_url="https://tiktok.test/v2", client=_client(handler), sleep=lambda s: None)
    result = publisher.upload_video(_account("tiktok"), REQUEST)

    assert result.success is True
    assert result.post_id == "7345"
    assert result.post_url == "https://www.tiktok.com/@money.bot/video/7345"
    assert result.payload == {"publish_id": "v_pub_1"}
    assert seen == ["/v2/post/publish/video/init/", "/v2/post/publish/status/fetch/", "/v2/post/publish/status/fetch/"]


def test_tiktok_api_errors_become_failed_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": {"code": "access_token_invalid", "message": "token expired"}})

    publisher = TikTokPublisher(base_url="https://tiktok.test/v2", client=_client(handler), sleep=lambda s: None)
    result = publisher.upload_video(_account("tiktok"), REQUEST)

    assert result.success is False
    assert result.error == "token expired"


def test_tiktok_publish_failure_and_timeout() -> None:
    def failing(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/video/init/"):
            return httpx.Response(200, json={"data": {"publish_id": "p"}})
        return httpx.Response(200, json={"data": {"status": "FAILED", "fail_reason": "video_pull_failed"}})

    result = TikTokPublisher(base_url="https://t.test", client=_client(failing), sleep=lambda s: None).upload_video(
        _account("tiktok"), REQUEST
    )
    assert result.error == "tiktok_publish_failed reason=video_pull_failed"

    def stuck(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/video/init/"):
            return httpx.Response(200, json={"data": {"publish_id": "p"}})
        return httpx.Response(200, json={"data": {"status": "PROCESSING_UPLOAD"}})

    result = TikTokPublisher(
        base_url="https://t.test",
        poll_max_attempts=2,
        client=_client(stuck),
        sleep=lambda s: None,
    ).upload_video(_account("tiktok"), REQUEST)
    assert result.success is False
    assert result.error == "tiktok_publish_timeout publish_id=p"


def test_youtube_resumable_upload() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.host))
        if request.method == "GET":
            return httpx.Response(200, content=b"mp4-bytes")
        if request.method == "POST":
            assert request.url.params["uploadType"] == "resumable"
            assert request.headers["x-upload-content-length"] == str(len(b"mp4-bytes"))
            metadata = json.loads(request.content)
            assert metadata["snippet"]["title"] == "Compound interest explained"
            assert metadata["snippet"]["description"].endswith("#finance #money #Shorts")
            assert metadata["snippet"]["tags"] == ["finance", "money"]
            assert metadata["status"]["privacyStatus"] == "public"
            return httpx.Response(200, headers={"Location": "https://upload.test/session/abc"})
        assert request.method == "PUT"
        assert str(request.url) == "https://upload.test/session/abc"
        assert request.content == b"mp4-bytes"
        return httpx.Response(200, json={"id": "dQw4w9WgXcQ", "status": {"uploadStatus": "uploaded"}})

    publisher = YouTubePublisher(
        base_url="https://youtube.test/youtube/v3",
        upload_base_url="https://upload.test/upload/youtube/v3",
        client=_client(handler),
    )
    result = publisher.upload_video(_account("youtube"), REQUEST)

    assert result.success is True
    assert result.post_id == "dQw4w9WgXcQ"
    assert result.post_url == "https://www.youtube.com/shorts/dQw4w9WgXcQ"
    assert [method for method, _ in seen] == ["GET", "POST", "PUT"]


def test_youtube_missing_video_id_is_a_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, content=b"x")
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": "https://upload.test/session/abc"})
        return httpx.Response(200, json={})

    publisher = YouTubePublisher(base_url="https://y.test", upload_base_url="https://upload.test", client=_client(handler))
    result = publisher.upload_video(_account("youtube"), REQUEST)

    assert result.success is False
    assert result.error == "No video ID returned from YouTube"


def test_youtube_http_error_detail_is_truncated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="x" * 500)

    publisher = YouTubePublisher(base_url="https://y.test", upload_base_url="https://upload.test", client=_client(handler))
    result = publisher.upload_video(_account("youtube"), REQUEST)

    assert result.success is False
    assert result.error == "youtube_request_failed status=404 detail=" + "x" * 240 + "..."


def test_instagram_container_publish_flow() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.method == "POST" and request.url.path.endswith("/media"):
            form = parse_qs(request.content.decode())
            assert form["media_type"] == ["REELS"]
            assert form["video_url"] == [REQUEST.video_url]
            assert form["share_to_feed"] == ["true"]
            return httpx.Response(200, json={"id": "container-1"})
        if request.method == "GET" and request.url.params.get("fields") == "status_code":
            return httpx.Response(200, json={"status_code": "FINISHED"})
        if request.method == "POST" and request.url.path.endswith("/media_publish"):
            assert parse_qs(request.content.decode())["creation_id"] == ["container-1"]
            return httpx.Response(200, json={"id": "media-9"})
        return httpx.Response(200, json={"permalink": "https://www.instagram.com/reel/abc/"})

    publisher = InstagramPublisher(base_url="https://graph.test/v20.0", client=_client(handler), sleep=lambda s: None)
    result = publisher.upload_video(_account("instagram", platform_account_id="1789"), REQUEST)

    assert result.success is True
    assert result.post_id == "media-9"
    assert result.post_url == "https://www.instagram.com/reel/abc/"
    assert result.payload == {"creation_id": "container-1"}
    assert calls[0] == ("POST", "/v20.0/1789/media")


def test_instagram_requires_business_account_and_surfaces_errors() -> None:
    publisher = InstagramPublisher(base_url="https://graph.test", client=_client(lambda request: httpx.Response(500)))
    assert publisher.upload_video(_account("instagram"), REQUEST).error == "instagram_account_id_missing"

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "container-1"})
        return httpx.Response(200, json={"status_code": "ERROR"})

    publisher = InstagramPublisher(base_url="https://graph.test", client=_client(handler), sleep=lambda s: None)
    result = publisher.upload_video(_account("instagram", platform_account_id="1789"), REQUEST)
    assert result.success is False
    assert result.error == "instagram_media_status=ERROR"


def test_factory_selects_mock_publishers(monkeypatch) -> None:
    monkeypatch.setenv("SOCIAL_PUBLISH_MODE", "mock")
    get_settings.cache_clear()

    publishers = build_platform_publishers()

    assert set(publishers) == {"tiktok", "youtube", "instagram"}
    assert all(isinstance(publisher, MockPlatformPublisher) for publisher in publishers.values())
    result = publishers["youtube"].upload_video(_account("youtube"), REQUEST)
    assert result.success is True
    assert result.post_url.startswith("https://mock-youtube.example.com/posts/youtube_mock_")


def test_factory_builds_live_publishers_by_default() -> None:
    publishers = build_platform_publishers()

    assert isinstance(publishers["tiktok"], TikTokPublisher)
    assert isinstance(publishers["youtube"], YouTubePublisher)
    assert isinstance(publishers["instagram"], InstagramPublisher)
