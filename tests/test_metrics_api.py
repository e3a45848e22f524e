from fastapi.testclient import TestClient

import src.api.main as api_main
from src.core.metrics import (
    record_pipeline_event,
    record_provider_fallback,
    record_video_generation,
    render_prometheus_metrics,
    reset_metrics_for_tests,
)


def test_metrics_endpoint_returns_prometheus_payload(monkeypatch) -> None:
    reset_metrics_for_tests()
    monkeypatch.setattr(api_main.settings, "metrics_enabled", True)

    client = TestClient(api_main.app)
    version_response = client.get("/version")
    assert version_response.status_code == 200

    metrics_response = client.get("/metrics")
    assert metrics_response.status_code == 200
    assert metrics_response.headers["content-type"].startswith("text/plain")
    body = metrics_response.text
    assert "viral_build_info" in body
    assert 'viral_http_requests_total{method="GET",path="/version",status="200"}' in body
    assert "viral_http_request_duration_seconds_sum" in body


def test_metrics_endpoint_disabled_returns_404(monkeypatch) -> None:
    monkeypatch.setattr(api_main.settings, "metrics_enabled", False)
    client = TestClient(api_main.app)
    response = client.get("/metrics")
    assert response.status_code == 404


def test_pipeline_counters_render() -> None:
    reset_metrics_for_tests()
    record_video_generation(provider="sora", status="succeeded", cost=2.4)
    record_provider_fallback(failed_provider="veo", tier="standard")
    record_pipeline_event(name="video/generate", status="done")

    body = render_prometheus_metrics(app_name="viral_dashboard", app_version="0.1.0", env="test")

    assert 'viral_video_generation_total{provider="sora",status="succeeded"} 1' in body
    assert 'viral_provider_fallback_total{provider="veo",tier="standard"} 1' in body
    assert 'viral_pipeline_events_total{name="video/generate",status="done"} 1' in body
    assert 'viral_generation_cost_usd_total{provider="sora"}' in body
