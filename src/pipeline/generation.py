"""Generation job orchestration.

A job moves ``pending -> generating -> uploading -> validating -> completed``
or ends the attempt in ``failed``. Every step writes its output onto the job
row and commits, so a redelivered ``video/generate`` event resumes after the
last finished step instead of paying for another provider call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from src.core.config import get_settings
from src.core.logger import get_logger
from src.orchestrator.locks import LockHandle, RedisLockManager
from src.pipeline.bus import DeliveryDeferred, publish
from src.pipeline.events import (
    VIDEO_COMPLETED,
    VIDEO_FAILED,
    VIDEO_GENERATE,
    VIDEO_READY,
    VideoCompletedPayload,
    VideoFailedPayload,
    VideoGeneratePayload,
    VideoReadyPayload,
)
from src.quality.validators import QualityValidator, resolve_video_format
from src.storage.models import GenerationJob
from src.video.providers.base import ProviderError, VideoGenerationRequest
from src.video.router import ProviderRouter, priority_for_category
from src.video.storage import VideoFetcher, VideoStorage, VideoStorageError


JOB_PENDING = "pending"
JOB_GENERATING = "generating"
JOB_UPLOADING = "uploading"
JOB_VALIDATING = "validating"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

logger = get_logger("viral.pipeline.generation")


class JobLockedError(DeliveryDeferred):
    """Raised when another worker holds the job lock; the event is redelivered later."""


@dataclass(frozen=True)
class GenerationOutcome:
    job_id: str
    status: str
    attempt: int
    provider: Optional[str] = None
    skipped_reason: Optional[str] = None
    error: Optional[str] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True)


def _json_list(raw: Optional[str]) -> List[str]:
    try:
        parsed = json.loads(raw or "[]")
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    return [str(item) for item in parsed if str(item).strip()]


def job_target_platforms(job: GenerationJob) -> List[str]:
    return _json_list(job.target_platforms_json)


def job_hashtags(job: GenerationJob) -> List[str]:
    return _json_list(job.hashtags_json)


def generate_dedupe_key(job_id: str, attempt: int) -> str:
    return f"{VIDEO_GENERATE}:{job_id}:{attempt}"


def create_generation_job(
    session: Session,
    *,
    tenant_id: str,
    concept_id: str,
    category: str,
    prompt: str,
    platform: str = "tiktok",
    provider: Optional[str] = None,
    target_platforms: Optional[Sequence[str]] = None,
    caption: str = "",
    hashtags: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> GenerationJob:
    """Persist a pending job and emit its first ``video/generate`` in one commit."""

    current = now or _utc_now()
    normalized_category = (category or "tech").strip().lower()
    requested_provider = (provider or "").strip().lower() or None
    job = GenerationJob(
        tenant_id=tenant_id,
        concept_id=concept_id,
        category=normalized_category,
        platform=(platform or "tiktok").strip().lower(),
        prompt_text=prompt,
        requested_provider=requested_provider,
        priority=priority_for_category(normalized_category),
        attempt_count=0,
        status=JOB_PENDING,
        target_platforms_json=_json_dumps([p.strip().lower() for p in (target_platforms or []) if p.strip()]),
        caption=caption,
        hashtags_json=_json_dumps(list(hashtags or [])),
        created_at=current,
        updated_at=current,
    )
    session.add(job)
    session.flush()

    publish(
        session,
        VIDEO_GENERATE,
        VideoGeneratePayload(
            job_id=job.id,
            tenant_id=tenant_id,
            concept_id=concept_id,
            category=job.category,
            platform=job.platform,
            prompt=prompt,
            provider=requested_provider,
            priority=job.priority,
            attempt=1,
        ),
        tenant_id=tenant_id,
        job_id=job.id,
        dedupe_key=generate_dedupe_key(job.id, 1),
        now=current,
    )
    session.commit()
    logger.info(
        "generation_job_created",
        job_id=job.id,
        tenant_id=tenant_id,
        category=job.category,
        priority=job.priority,
        provider=requested_provider,
    )
    return job


def entry_skip_reason(job: GenerationJob, attempt: int) -> Optional[str]:
    """Return why an incoming generate event must not run, or None."""

    if job.status == JOB_COMPLETED:
        return "already_completed"
    if job.permanently_failed:
        return "permanently_failed"
    if job.status == JOB_FAILED and attempt <= int(job.attempt_count):
        return "stale_attempt"
    if attempt < int(job.attempt_count):
        return "stale_attempt"
    return None


def _renewal(handle: Optional[LockHandle], heartbeat: Optional[Callable[[], object]]) -> Callable[[], None]:
    def beat() -> None:
        if handle is not None:
            handle.extend()
        if heartbeat is not None:
            heartbeat()

    return beat


class GenerationOrchestrator:
    def __init__(
        self,
        *,
        router: ProviderRouter,
        storage: VideoStorage,
        validator: QualityValidator,
        lock_manager: Optional[RedisLockManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._router = router
        self._storage = storage
        self._validator = validator
        self._lock_manager = lock_manager
        self._clock = clock or _utc_now

    def handle_generate(
        self,
        session: Session,
        payload: VideoGeneratePayload,
        *,
        heartbeat: Optional[Callable[[], object]] = None,
    ) -> GenerationOutcome:
        """Run one attempt of the job, renewing the job lock and ``heartbeat`` while providers poll."""

        job = session.get(GenerationJob, payload.job_id)
        if job is None:
            logger.warning("generation_job_missing", job_id=payload.job_id, tenant_id=payload.tenant_id)
            return GenerationOutcome(
                job_id=payload.job_id,
                status="missing",
                attempt=payload.attempt,
                skipped_reason="job_not_found",
            )

        reason = entry_skip_reason(job, payload.attempt)
        if reason is not None:
            logger.info(
                "generation_job_skipped",
                job_id=job.id,
                status=job.status,
                attempt=payload.attempt,
                recorded_attempt=job.attempt_count,
                reason=reason,
            )
            return GenerationOutcome(job_id=job.id, status=job.status, attempt=payload.attempt, skipped_reason=reason)

        handle = None
        if self._lock_manager is not None:
            handle = self._lock_manager.acquire(job.id)
            if handle is None:
                raise JobLockedError(f"generation_job_locked job_id={job.id}")
        try:
            return self._run(session, job, payload, _renewal(handle, heartbeat))
        finally:
            if handle is not None:
                handle.release()

    def _provider_fetch(self, provider_name: Optional[str]) -> Optional[VideoFetcher]:
        provider = self._router.get_provider(provider_name)
        if provider is None or not getattr(provider, "authenticated_downloads", False):
            return None
        timeout_seconds = get_settings().video_download_timeout_seconds

        def fetch(url: str) -> bytes:
            try:
                return provider.download(url, timeout_seconds=timeout_seconds)
            except ProviderError as exc:
                raise VideoStorageError(str(exc)) from exc

        return fetch

    def _run(
        self,
        session: Session,
        job: GenerationJob,
        payload: VideoGeneratePayload,
        beat: Callable[[], None],
    ) -> GenerationOutcome:
        now = self._clock()
        if payload.attempt > int(job.attempt_count):
            # New attempt: earlier checkpoints belong to the failed attempt,
            # except paid provider output that only failed to store.
            reuse_output = bool(job.provider_video_url) and not job.storage_url
            job.attempt_count = payload.attempt
            job.status = JOB_UPLOADING if reuse_output else JOB_GENERATING
            if not reuse_output:
                job.provider = None
                job.provider_job_id = None
                job.provider_video_url = None
                job.duration_seconds = None
                job.generation_cost = None
            job.storage_url = None
            job.cdn_url = None
            job.quality_json = None
            job.error_message = None
            job.started_at = now
            job.updated_at = now
            session.commit()
            logger.info(
                "generation_job_attempt_started",
                job_id=job.id,
                attempt=payload.attempt,
                reused_provider_output=reuse_output,
            )
        else:
            logger.info("generation_job_resumed", job_id=job.id, attempt=payload.attempt, status=job.status)

        if not job.provider_video_url:
            request = VideoGenerationRequest(
                prompt=payload.prompt or job.prompt_text,
                category=job.category,
                platform=job.platform,
                provider=payload.provider or job.requested_provider,
                tenant_id=job.tenant_id,
                concept_id=job.concept_id,
                job_id=job.id,
                priority=job.priority,
                heartbeat=beat,
            )
            result = self._router.generate_video(request)
            if not result.success:
                return self._fail(session, job, payload, error=result.error or "unknown_error", provider=result.provider)

            job.provider = result.provider
            job.provider_job_id = result.provider_job_id
            job.provider_video_url = result.video_url
            job.duration_seconds = result.duration
            job.generation_cost = result.cost
            job.status = JOB_UPLOADING
            job.updated_at = self._clock()
            session.commit()

        if not job.storage_url:
            beat()
            job.status = JOB_UPLOADING
            try:
                stored = self._storage.upload(
                    job.provider_video_url or "",
                    f"{job.tenant_id}/{job.id}.mp4",
                    {
                        "job_id": job.id,
                        "tenant_id": job.tenant_id,
                        "provider": job.provider,
                        "provider_job_id": job.provider_job_id,
                    },
                    fetch=self._provider_fetch(job.provider),
                )
            except VideoStorageError as exc:
                return self._fail(session, job, payload, error=str(exc), provider=job.provider)

            job.storage_url = stored.url
            job.cdn_url = stored.cdn_url
            job.status = JOB_VALIDATING
            job.updated_at = self._clock()
            session.commit()

        if job.quality_json is None:
            beat()
            job.status = JOB_VALIDATING
            quality = self._validator.validate(
                job.storage_url,
                resolve_video_format(job.platform),
                reported_duration=job.duration_seconds,
            )
            job.quality_json = _json_dumps(quality.to_dict())
            job.updated_at = self._clock()
            session.commit()
            if not quality.valid:
                logger.warning("generation_job_quality_issues", job_id=job.id, issues=list(quality.issues))

        return self._complete(session, job)

    def _complete(self, session: Session, job: GenerationJob) -> GenerationOutcome:
        now = self._clock()
        quality: Dict[str, Any] = json.loads(job.quality_json or "{}")
        job.status = JOB_COMPLETED
        job.error_message = None
        job.completed_at = now
        job.updated_at = now

        publish(
            session,
            VIDEO_COMPLETED,
            VideoCompletedPayload(
                job_id=job.id,
                tenant_id=job.tenant_id,
                provider=job.provider or "unknown",
                video_url=job.storage_url or "",
                cdn_url=job.cdn_url or job.storage_url or "",
                duration=float(job.duration_seconds or 0.0),
                cost=float(job.generation_cost or 0.0),
                quality_valid=bool(quality.get("valid", True)),
                quality_issues=list(quality.get("issues") or []),
            ),
            tenant_id=job.tenant_id,
            job_id=job.id,
            dedupe_key=f"{VIDEO_COMPLETED}:{job.id}",
            now=now,
        )
        publish(
            session,
            VIDEO_READY,
            VideoReadyPayload(
                video_id=job.id,
                tenant_id=job.tenant_id,
                concept_id=job.concept_id,
                category=job.category,
                platforms=job_target_platforms(job),
                caption=job.caption,
                hashtags=job_hashtags(job),
            ),
            tenant_id=job.tenant_id,
            job_id=job.id,
            dedupe_key=f"{VIDEO_READY}:{job.id}",
            now=now,
        )
        session.commit()
        logger.info(
            "generation_job_completed",
            job_id=job.id,
            provider=job.provider,
            attempt=job.attempt_count,
            cost=job.generation_cost,
        )
        return GenerationOutcome(job_id=job.id, status=JOB_COMPLETED, attempt=int(job.attempt_count), provider=job.provider)

    def _fail(
        self,
        session: Session,
        job: GenerationJob,
        payload: VideoGeneratePayload,
        *,
        error: str,
        provider: Optional[str],
    ) -> GenerationOutcome:
        now = self._clock()
        job.status = JOB_FAILED
        job.error_message = error[:500]
        job.updated_at = now
        publish(
            session,
            VIDEO_FAILED,
            VideoFailedPayload(
                job_id=job.id,
                tenant_id=job.tenant_id,
                error=error,
                provider=provider,
                attempt=payload.attempt,
                category=job.category,
                platform=job.platform,
                prompt=job.prompt_text,
                priority=job.priority,
                concept_id=job.concept_id,
            ),
            tenant_id=job.tenant_id,
            job_id=job.id,
            dedupe_key=f"{VIDEO_FAILED}:{job.id}:{payload.attempt}",
            now=now,
        )
        session.commit()
        logger.warning("generation_job_failed", job_id=job.id, attempt=payload.attempt, provider=provider, error=error)
        return GenerationOutcome(
            job_id=job.id,
            status=JOB_FAILED,
            attempt=payload.attempt,
            provider=provider,
            error=error,
        )
