"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Iterable, List, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_video_generation_total: Dict[Tuple[str, str], int] = defaultdict(int)
_provider_fallback_total: Dict[Tuple[str, str], int] = defaultdict(int)
_generation_cost_total: Dict[str, float] = defaultdict(float)
_generation_retry_total: Dict[str, int] = defaultdict(int)
_quota_reservation_total: Dict[Tuple[str, str], int] = defaultdict(int)
_social_posts_total: Dict[Tuple[str, str], int] = defaultdict(int)
_pipeline_events_total: Dict[Tuple[str, str], int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_video_generation(*, provider: str, status: str, cost: float | None = None) -> None:
    with _lock:
        key = (_normalize_label(provider), _normalize_label(status))
        _video_generation_total[key] += 1
        if cost:
            _generation_cost_total[_normalize_label(provider)] += max(float(cost), 0.0)


def record_provider_fallback(*, failed_provider: str, tier: str) -> None:
    with _lock:
        _provider_fallback_total[(_normalize_label(failed_provider), _normalize_label(tier))] += 1


def record_generation_retry(*, outcome: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        _generation_retry_total[_normalize_label(outcome)] += int(count)


def record_quota_reservation(*, platform: str, status: str) -> None:
    with _lock:
        _quota_reservation_total[(_normalize_label(platform), _normalize_label(status))] += 1


def record_social_post(*, platform: str, status: str) -> None:
    with _lock:
        _social_posts_total[(_normalize_label(platform), _normalize_label(status))] += 1


def record_pipeline_event(*, name: str, status: str) -> None:
    with _lock:
        _pipeline_events_total[(_normalize_label(name), _normalize_label(status))] += 1


def _counter_block(
    name: str,
    help_text: str,
    label_names: Tuple[str, ...],
    values: Iterable[Tuple[Tuple[str, ...], float]],
    *,
    metric_type: str = "counter",
) -> List[str]:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} {metric_type}"]
    for labels, value in sorted(values):
        rendered = ",".join(
            f'{label}="{_escape_label(str(label_value))}"' for label, label_value in zip(label_names, labels)
        )
        if isinstance(value, float):
            lines.append(f"{name}{{{rendered}}} {value:.6f}")
        else:
            lines.append(f"{name}{{{rendered}}} {value}")
    return lines


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        generation_total = dict(_video_generation_total)
        fallback_total = dict(_provider_fallback_total)
        cost_total = dict(_generation_cost_total)
        retry_total = dict(_generation_retry_total)
        reservation_total = dict(_quota_reservation_total)
        posts_total = dict(_social_posts_total)
        events_total = dict(_pipeline_events_total)

    lines = [
        "# HELP viral_build_info Build metadata.",
        "# TYPE viral_build_info gauge",
        (
            f'viral_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP viral_process_uptime_seconds Process uptime in seconds.",
        "# TYPE viral_process_uptime_seconds gauge",
        f"viral_process_uptime_seconds {uptime:.6f}",
    ]

    lines.extend(
        _counter_block(
            "viral_http_requests_total",
            "Total HTTP requests.",
            ("method", "path", "status"),
            http_total.items(),
        )
    )
    lines.extend(
        [
            "# HELP viral_http_request_duration_seconds Request duration summary.",
            "# TYPE viral_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            (
                f'viral_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value:.6f}'
            )
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(
            (
                f'viral_http_request_duration_seconds_count{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value}'
            )
        )

    lines.extend(
        _counter_block(
            "viral_video_generation_total",
            "Video generation results by provider.",
            ("provider", "status"),
            generation_total.items(),
        )
    )
    lines.extend(
        _counter_block(
            "viral_provider_fallback_total",
            "Provider failures that moved the router down its fallback chain.",
            ("provider", "tier"),
            fallback_total.items(),
        )
    )
    lines.extend(
        _counter_block(
            "viral_generation_cost_usd_total",
            "Estimated generation spend by provider.",
            ("provider",),
            [((provider,), value) for provider, value in cost_total.items()],
        )
    )
    lines.extend(
        _counter_block(
            "viral_generation_retry_total",
            "Retry coordinator decisions.",
            ("outcome",),
            [((outcome,), value) for outcome, value in retry_total.items()],
        )
    )
    lines.extend(
        _counter_block(
            "viral_quota_reservation_total",
            "Account quota reservation attempts.",
            ("platform", "status"),
            reservation_total.items(),
        )
    )
    lines.extend(
        _counter_block(
            "viral_social_posts_total",
            "Social post attempts by platform and status.",
            ("platform", "status"),
            posts_total.items(),
        )
    )
    lines.extend(
        _counter_block(
            "viral_pipeline_events_total",
            "Dispatched pipeline events by outcome.",
            ("name", "status"),
            events_total.items(),
        )
    )

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _video_generation_total.clear()
        _provider_fallback_total.clear()
        _generation_cost_total.clear()
        _generation_retry_total.clear()
        _quota_reservation_total.clear()
        _social_posts_total.clear()
        _pipeline_events_total.clear()
    _started_at = time.time()
