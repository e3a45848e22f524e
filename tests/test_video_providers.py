from __future__ import annotations

import json

import httpx
import pytest

from src.core.runtime import RuntimeConfig
from src.core.config import get_settings
from src.video.providers import (
    LumaVideoProvider,
    MockVideoProvider,
    ProviderError,
    RunwayVideoProvider,
    SoraVideoProvider,
    UnavailableVideoProvider,
    VeoVideoProvider,
    VideoGenerationRequest,
)
from src.video.providers.factory import build_video_providers


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _no_sleep(seconds: float) -> None:
    del seconds


def test_sora_submits_polls_and_returns_content_url() -> None:
    calls: list[tuple[str, str]] = []
    status_responses = iter([{"status": "in_progress"}, {"status": "completed", "seconds": "8"}])

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.method == "POST":
            body = json.loads(request.content)
            assert body["model"] == "sora-2"
            assert body["seconds"] == "8"
            assert body["size"] == "720x1280"
            assert request.headers["authorization"] == "Bearer sk-test"
            return httpx.Response(200, json={"id": "video_123", "status": "queued"})
        return httpx.Response(200, json=next(status_responses))

    provider = SoraVideoProvider(
        api_key="sk-test",
        base_url="https://api.openai.test/v1",
        client=_client(handler),
        sleep=_no_sleep,
    )
    result = provider.generate(VideoGenerationRequest(prompt="robot explains compound interest"))

    assert result.success is True
    assert result.provider == "sora"
    assert result.provider_job_id == "video_123"
    assert result.video_url == "https://api.openai.test/v1/videos/video_123/content"
    assert result.duration == 8.0
    assert result.cost == 2.4
    assert calls[0] == ("POST", "/v1/videos")
    assert calls.count(("GET", "/v1/videos/video_123")) == 2


def test_veo_reads_generated_sample_uri_from_operation() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["x-goog-api-key"] == "gemini-key"
        if request.method == "POST":
            assert request.url.path.endswith(":predictLongRunning")
            return httpx.Response(200, json={"name": "models/veo/operations/op-1"})
        return httpx.Response(
            200,
            json={
                "done": True,
                "response": {
                    "generateVideoResponse": {
                        "generatedSamples": [{"video": {"uri": "https://storage.test/veo/op-1.mp4"}}]
                    }
                },
            },
        )

    provider = VeoVideoProvider(
        api_key="gemini-key",
        base_url="https://gemini.test/v1beta",
        client=_client(handler),
        sleep=_no_sleep,
    )
    result = provider.generate(VideoGenerationRequest(prompt="sunrise over the city", category="news"))

    assert result.success is True
    assert result.video_url == "https://storage.test/veo/op-1.mp4"
    assert result.duration == 8.0
    assert result.provider_job_id == "models/veo/operations/op-1"


def test_runway_failure_status_becomes_failed_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "gen-9"})
        return httpx.Response(200, json={"status": "FAILED", "failure": "content moderation"})

    provider = RunwayVideoProvider(
        api_key="rw-key",
        base_url="https://runway.test/v1",
        client=_client(handler),
        sleep=_no_sleep,
    )
    result = provider.generate(VideoGenerationRequest(prompt="cat dj"))

    assert result.success is False
    assert result.error == "content moderation"
    assert result.provider_job_id == "gen-9"


def test_luma_poll_cap_surfaces_timeout_message() -> None:
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "luma-1", "state": "queued"})
        return httpx.Response(200, json={"state": "dreaming"})

    provider = LumaVideoProvider(
        api_key="luma-key",
        base_url="https://luma.test/dream-machine/v1",
        poll_max_attempts=3,
        poll_interval_seconds=5.0,
        client=_client(handler),
        sleep=sleeps.append,
    )
    result = provider.generate(VideoGenerationRequest(prompt="absurd sandwich", category="food"))

    assert result.success is False
    assert result.error == "luma generation timed out after 3 status checks"
    assert sleeps == [5.0, 5.0]


def test_http_errors_never_escape_generate() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        del request
        return httpx.Response(503, text="upstream unavailable")

    provider = SoraVideoProvider(
        api_key="sk-test",
        base_url="https://api.openai.test/v1",
        client=_client(handler),
        sleep=_no_sleep,
    )
    result = provider.generate(VideoGenerationRequest(prompt="anything"))

    assert result.success is False
    assert result.error.startswith("sora_request_failed status=503")

    def raising_handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = SoraVideoProvider(
        api_key="sk-test",
        base_url="https://api.openai.test/v1",
        client=_client(raising_handler),
        sleep=_no_sleep,
    )
    result = provider.generate(VideoGenerationRequest(prompt="anything"))
    assert result.success is False
    assert "connection refused" in result.error


def test_luma_cost_is_billed_per_generation() -> None:
    provider = LumaVideoProvider(api_key="k", base_url="https://luma.test")
    assert provider.estimate_cost(8) == 0.25
    assert provider.estimate_cost(9) == 0.5
    assert provider.estimate_cost(0) == 0.25


def test_unavailable_provider_fails_without_network() -> None:
    provider = UnavailableVideoProvider("sora", "OPENAI_API_KEY not configured", cost_per_second=0.30)
    result = provider.generate(VideoGenerationRequest(prompt="x"))

    assert provider.available is False
    assert result.success is False
    assert result.error == "sora unavailable: OPENAI_API_KEY not configured"
    assert provider.estimate_cost(10) == 3.0


def test_mock_provider_is_deterministic() -> None:
    provider = MockVideoProvider("veo", cost_per_second=0.033)
    request = VideoGenerationRequest(prompt="p", tenant_id="t1", job_id="j1")

    first = provider.generate(request)
    second = provider.generate(request)

    assert first == second
    assert first.success is True
    assert first.video_url.startswith("https://mock-veo-cdn.example.com/videos/veo_mock_")
    assert provider.check_status(first.provider_job_id) == "completed"


def test_factory_marks_missing_credentials_unavailable(monkeypatch) -> None:
    monkeypatch.setenv("VIDEO_PROVIDER_MODE", "live")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-live")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("RUNWAY_API_KEY", "")
    monkeypatch.setenv("LUMA_API_KEY", "luma-live")
    get_settings.cache_clear()

    providers = build_video_providers(runtime=RuntimeConfig(disabled_providers=["luma"]))

    assert isinstance(providers["sora"], SoraVideoProvider)
    assert isinstance(providers["veo"], UnavailableVideoProvider)
    assert providers["veo"].reason == "GEMINI_API_KEY not configured"
    assert isinstance(providers["runway"], UnavailableVideoProvider)
    assert isinstance(providers["luma"], UnavailableVideoProvider)
    assert providers["luma"].reason == "disabled_by_runtime_config"


def test_factory_mock_mode_registers_mock_providers(monkeypatch) -> None:
    monkeypatch.setenv("VIDEO_PROVIDER_MODE", "mock")
    get_settings.cache_clear()

    providers = build_video_providers(runtime=RuntimeConfig())

    assert set(providers) == {"sora", "veo", "runway", "luma"}
    assert all(isinstance(provider, MockVideoProvider) for provider in providers.values())


def test_private_output_downloads_send_provider_credentials() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.headers))
        return httpx.Response(200, content=b"mp4")

    sora = SoraVideoProvider(api_key="sk-test", base_url="https://api.openai.test/v1", client=_client(handler))
    veo = VeoVideoProvider(api_key="gemini-key", base_url="https://gemini.test/v1beta", client=_client(handler))
    runway = RunwayVideoProvider(api_key="rw-key", base_url="https://runway.test/v1", client=_client(handler))

    assert sora.download("https://api.openai.test/v1/videos/video_1/content") == b"mp4"
    assert veo.download("https://gemini.test/v1beta/files/abc:download?alt=media") == b"mp4"
    assert runway.download("https://cdn.runway.test/out.mp4") == b"mp4"

    assert seen[0]["authorization"] == "Bearer sk-test"
    assert "content-type" not in seen[0]
    assert seen[1]["x-goog-api-key"] == "gemini-key"
    assert "authorization" not in seen[2]


def test_download_failure_names_the_provider() -> None:
    sora = SoraVideoProvider(
        api_key="sk-test",
        base_url="https://api.openai.test/v1",
        client=_client(lambda request: httpx.Response(401)),
    )

    with pytest.raises(ProviderError, match="sora_download_failed status=401"):
        sora.download("https://api.openai.test/v1/videos/video_1/content")
