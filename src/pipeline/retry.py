"""Bounded exponential-backoff retries for failed generation attempts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from src.core.config import get_settings
from src.core.logger import get_logger
from src.core.metrics import record_generation_retry
from src.pipeline.bus import publish
from src.pipeline.events import VIDEO_GENERATE, VideoFailedPayload, VideoGeneratePayload
from src.pipeline.generation import JOB_COMPLETED, JOB_FAILED, generate_dedupe_key
from src.storage.models import GenerationJob


logger = get_logger("viral.pipeline.retry")


@dataclass(frozen=True)
class RetryDecision:
    retried: bool
    attempt: int
    backoff_ms: int = 0
    reason: str = ""
    next_attempt: Optional[int] = None


def backoff_ms_for_attempt(attempt: int, *, base_delay_ms: Optional[int] = None) -> int:
    base = base_delay_ms if base_delay_ms is not None else get_settings().generation_retry_base_delay_ms
    return int(base * 2 ** (max(1, attempt) - 1))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RetryCoordinator:
    def __init__(
        self,
        *,
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        settings = get_settings()
        self._max_attempts = max_attempts or settings.generation_max_attempts
        self._base_delay_ms = base_delay_ms or settings.generation_retry_base_delay_ms
        self._clock = clock or _utc_now

    def handle_failure(self, session: Session, payload: VideoFailedPayload) -> RetryDecision:
        attempt = payload.attempt
        job = session.get(GenerationJob, payload.job_id)
        if job is not None and job.status == JOB_COMPLETED:
            return RetryDecision(retried=False, attempt=attempt, reason="already_completed")

        if attempt >= self._max_attempts:
            message = f"Failed after {attempt} attempts: {payload.error}"
            if job is not None:
                job.status = JOB_FAILED
                job.permanently_failed = True
                job.error_message = message[:500]
                job.updated_at = self._clock()
                session.commit()
            record_generation_retry(outcome="exhausted")
            logger.error("generation_retries_exhausted", job_id=payload.job_id, attempt=attempt, error=payload.error)
            return RetryDecision(retried=False, attempt=attempt, reason=message)

        backoff_ms = backoff_ms_for_attempt(attempt, base_delay_ms=self._base_delay_ms)
        next_attempt = attempt + 1
        publish(
            session,
            VIDEO_GENERATE,
            VideoGeneratePayload(
                job_id=payload.job_id,
                tenant_id=payload.tenant_id,
                concept_id=payload.concept_id or (job.concept_id if job is not None else ""),
                category=payload.category or "tech",
                platform=payload.platform or "tiktok",
                prompt=payload.prompt or "",
                provider=job.requested_provider if job is not None else None,
                priority=payload.priority if payload.priority is not None else 5,
                attempt=next_attempt,
            ),
            tenant_id=payload.tenant_id,
            job_id=payload.job_id,
            delay=timedelta(milliseconds=backoff_ms),
            dedupe_key=generate_dedupe_key(payload.job_id, next_attempt),
            now=self._clock(),
        )
        session.commit()
        record_generation_retry(outcome="scheduled")
        logger.info(
            "generation_retry_scheduled",
            job_id=payload.job_id,
            attempt=attempt,
            next_attempt=next_attempt,
            backoff_ms=backoff_ms,
        )
        return RetryDecision(
            retried=True,
            attempt=attempt,
            backoff_ms=backoff_ms,
            reason=f"Retrying in {backoff_ms}ms",
            next_attempt=next_attempt,
        )
