"""Platform quality checks for generated videos.

Checks are advisory: callers record the issues on the job and carry on.
Deep validation shells out to ``ffprobe`` (and ``ffmpeg`` for black-frame
detection) when the binaries are present; otherwise a HEAD request gives
the file size and everything else is assumed to match the platform target.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import json
import re
import shutil
import subprocess
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from src.core.config import get_settings
from src.core.logger import get_logger


FORMAT_TIKTOK = "tiktok"
FORMAT_YOUTUBE_SHORTS = "youtube-shorts"
FORMAT_INSTAGRAM_REELS = "instagram-reels"

VERTICAL_ASPECT_RATIO = 0.5625

POSTING_PLATFORM_FORMATS: Dict[str, str] = {
    "tiktok": FORMAT_TIKTOK,
    "youtube": FORMAT_YOUTUBE_SHORTS,
    "youtube-shorts": FORMAT_YOUTUBE_SHORTS,
    "instagram": FORMAT_INSTAGRAM_REELS,
    "instagram-reels": FORMAT_INSTAGRAM_REELS,
}

_BLACK_FRAME_PATTERN = re.compile(r"black_start:\s*[0-9.]+")


class QualityProbeError(RuntimeError):
    """Raised when a media probe cannot read the video."""


@dataclass(frozen=True)
class PlatformRequirements:
    min_duration: float
    max_duration: float
    aspect_ratio: float
    aspect_ratio_tolerance: float
    max_file_size: int


PLATFORM_REQUIREMENTS: Dict[str, PlatformRequirements] = {
    FORMAT_TIKTOK: PlatformRequirements(3, 60, VERTICAL_ASPECT_RATIO, 0.05, 287 * 1024 * 1024),
    FORMAT_YOUTUBE_SHORTS: PlatformRequirements(1, 60, VERTICAL_ASPECT_RATIO, 0.05, 256 * 1024 * 1024),
    FORMAT_INSTAGRAM_REELS: PlatformRequirements(3, 90, VERTICAL_ASPECT_RATIO, 0.05, 100 * 1024 * 1024),
}


@dataclass(frozen=True)
class QualityCheckResult:
    valid: bool
    duration: float
    aspect_ratio: float
    file_size: int
    has_audio: bool
    has_black_frames: bool
    issues: Tuple[str, ...] = field(default_factory=tuple)
    method: str = "basic"

    def __post_init__(self) -> None:
        if self.valid != (not self.issues):
            raise ValueError("quality result valid flag must match the absence of issues")

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["issues"] = list(self.issues)
        return payload


@dataclass(frozen=True)
class MediaProbe:
    duration: float
    width: int
    height: int
    has_audio: bool
    file_size: int
    has_black_frames: bool = False

    @property
    def aspect_ratio(self) -> float:
        if self.height <= 0:
            return 0.0
        return self.width / self.height


def resolve_video_format(platform: str) -> str:
    return POSTING_PLATFORM_FORMATS.get((platform or "").strip().lower(), FORMAT_TIKTOK)


def _seconds(value: float) -> str:
    return f"{value:g}"


def collect_issues(probe: MediaProbe, requirements: PlatformRequirements) -> List[str]:
    issues: List[str] = []
    if probe.file_size > requirements.max_file_size:
        issues.append(f"File size ({probe.file_size / 1024 / 1024:.2f}MB) exceeds platform limit")
    if probe.file_size == 0:
        issues.append("Video file appears to be empty")
    if probe.duration < requirements.min_duration:
        issues.append(
            f"Duration ({_seconds(probe.duration)}s) below platform minimum ({_seconds(requirements.min_duration)}s)"
        )
    if probe.duration > requirements.max_duration:
        issues.append(
            f"Duration ({_seconds(probe.duration)}s) exceeds platform maximum ({_seconds(requirements.max_duration)}s)"
        )
    if abs(probe.aspect_ratio - requirements.aspect_ratio) > requirements.aspect_ratio_tolerance:
        issues.append(
            f"Aspect ratio ({probe.aspect_ratio:.4f}) differs from platform requirement ({requirements.aspect_ratio})"
        )
    if not probe.has_audio:
        issues.append("Video has no audio track (may hurt engagement)")
    if probe.has_black_frames:
        issues.append("Video contains black frames (generation may have failed)")
    return issues


def parse_ffprobe_output(payload: Dict[str, Any]) -> MediaProbe:
    streams = payload.get("streams") if isinstance(payload.get("streams"), list) else []
    format_info = payload.get("format") if isinstance(payload.get("format"), dict) else {}

    video_stream: Optional[Dict[str, Any]] = None
    has_audio = False
    for stream in streams:
        if not isinstance(stream, dict):
            continue
        codec_type = stream.get("codec_type")
        if codec_type == "video" and video_stream is None:
            video_stream = stream
        elif codec_type == "audio":
            has_audio = True

    if video_stream is None:
        raise QualityProbeError("ffprobe_no_video_stream")

    duration = video_stream.get("duration") or format_info.get("duration") or 0
    try:
        return MediaProbe(
            duration=float(duration),
            width=int(video_stream.get("width") or 0),
            height=int(video_stream.get("height") or 0),
            has_audio=has_audio,
            file_size=int(format_info.get("size") or 0),
        )
    except (TypeError, ValueError) as exc:
        raise QualityProbeError(f"ffprobe_unparseable_output error={exc}") from exc


Runner = Callable[[Sequence[str], int], "subprocess.CompletedProcess[str]"]


def _run_command(command: Sequence[str], timeout_seconds: int) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(
        list(command),
        capture_output=True,
        text=True,
        timeout=timeout_seconds,
        check=False,
    )


class QualityValidator:
    def __init__(
        self,
        *,
        timeout_seconds: int = 20,
        ffprobe_enabled: bool = True,
        client: Optional[httpx.Client] = None,
        runner: Optional[Runner] = None,
        ffprobe_path: Optional[str] = None,
        ffmpeg_path: Optional[str] = None,
    ) -> None:
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client
        self._runner = runner or _run_command
        self._ffprobe_path = ffprobe_path if ffprobe_path is not None else (shutil.which("ffprobe") or "")
        self._ffmpeg_path = ffmpeg_path if ffmpeg_path is not None else (shutil.which("ffmpeg") or "")
        self._ffprobe_enabled = ffprobe_enabled and bool(self._ffprobe_path)
        self._logger = get_logger("viral.quality")

    @property
    def deep_validation_available(self) -> bool:
        return self._ffprobe_enabled

    def _head(self, video_url: str) -> httpx.Response:
        if self._client is not None:
            return self._client.head(video_url, follow_redirects=True)
        with httpx.Client(timeout=self._timeout_seconds, follow_redirects=True) as client:
            return client.head(video_url)

    def validate_basic(
        self,
        video_url: str,
        video_format: str,
        *,
        reported_duration: Optional[float] = None,
    ) -> QualityCheckResult:
        requirements = PLATFORM_REQUIREMENTS[resolve_video_format(video_format)]
        issues: List[str] = []
        try:
            response = self._head(video_url)
            file_size = int(response.headers.get("content-length") or 0)
        except (httpx.HTTPError, ValueError) as exc:
            return QualityCheckResult(
                valid=False,
                duration=0.0,
                aspect_ratio=0.0,
                file_size=0,
                has_audio=False,
                has_black_frames=False,
                issues=(f"Failed to validate video: {exc}",),
            )

        if file_size > requirements.max_file_size:
            issues.append(f"File size ({file_size / 1024 / 1024:.2f}MB) exceeds platform limit")
        if file_size == 0:
            issues.append("Video file appears to be empty")

        # Without a probe, duration comes from the provider and the frame is assumed vertical.
        return QualityCheckResult(
            valid=not issues,
            duration=float(reported_duration or 0.0),
            aspect_ratio=requirements.aspect_ratio,
            file_size=file_size,
            has_audio=True,
            has_black_frames=False,
            issues=tuple(issues),
        )

    def probe(self, source: str) -> MediaProbe:
        command = [
            self._ffprobe_path,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_streams",
            "-show_format",
            source,
        ]
        try:
            completed = self._runner(command, self._timeout_seconds)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise QualityProbeError(f"ffprobe_failed error={exc}") from exc
        if completed.returncode != 0:
            detail = (completed.stderr or "").strip()[:240]
            raise QualityProbeError(f"ffprobe_failed returncode={completed.returncode} detail={detail}")
        try:
            payload = json.loads(completed.stdout or "{}")
        except ValueError as exc:
            raise QualityProbeError("ffprobe_invalid_json") from exc

        probe = parse_ffprobe_output(payload)
        if not self._ffmpeg_path:
            return probe
        return MediaProbe(
            duration=probe.duration,
            width=probe.width,
            height=probe.height,
            has_audio=probe.has_audio,
            file_size=probe.file_size,
            has_black_frames=self._detect_black_frames(source),
        )

    def _detect_black_frames(self, source: str) -> bool:
        command = [
            self._ffmpeg_path,
            "-hide_banner",
            "-i",
            source,
            "-vf",
            "blackdetect=d=0.5:pix_th=0.10",
            "-an",
            "-f",
            "null",
            "-",
        ]
        try:
            completed = self._runner(command, self._timeout_seconds)
        except (OSError, subprocess.TimeoutExpired) as exc:
            self._logger.warning("quality_black_frame_detection_failed", error=str(exc))
            return False
        return bool(_BLACK_FRAME_PATTERN.search(completed.stderr or ""))

    def validate_with_ffprobe(self, source: str, video_format: str) -> QualityCheckResult:
        requirements = PLATFORM_REQUIREMENTS[resolve_video_format(video_format)]
        probe = self.probe(source)
        if probe.file_size == 0:
            # Remote sources often omit format.size; fall back to the HEAD length.
            try:
                head_size = int(self._head(source).headers.get("content-length") or 0)
            except (httpx.HTTPError, ValueError):
                head_size = 0
            probe = MediaProbe(
                duration=probe.duration,
                width=probe.width,
                height=probe.height,
                has_audio=probe.has_audio,
                file_size=head_size,
                has_black_frames=probe.has_black_frames,
            )
        issues = collect_issues(probe, requirements)
        return QualityCheckResult(
            valid=not issues,
            duration=probe.duration,
            aspect_ratio=round(probe.aspect_ratio, 4),
            file_size=probe.file_size,
            has_audio=probe.has_audio,
            has_black_frames=probe.has_black_frames,
            issues=tuple(issues),
            method="ffprobe",
        )

    def validate(
        self,
        video_url: str,
        video_format: str,
        *,
        reported_duration: Optional[float] = None,
    ) -> QualityCheckResult:
        if self._ffprobe_enabled:
            try:
                return self.validate_with_ffprobe(video_url, video_format)
            except QualityProbeError as exc:
                self._logger.warning("quality_probe_fallback_to_basic", error=str(exc), video_format=video_format)
        return self.validate_basic(video_url, video_format, reported_duration=reported_duration)


def get_quality_validator() -> QualityValidator:
    settings = get_settings()
    return QualityValidator(
        timeout_seconds=settings.quality_probe_timeout_seconds,
        ffprobe_enabled=settings.quality_ffprobe_enabled,
    )
