"""Multi-account posting of completed videos.

Each target platform is handled on its own: pick an account, reserve one
unit of its daily quota, fetch an access token and upload. Quota is given
back whenever the post does not go out. Every outcome is appended to
``social_posts``; the periodic sweep re-queues recent failures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.core.config import get_settings
from src.core.logger import get_logger
from src.core.metrics import record_social_post
from src.core.runtime import RuntimeConfig, load_runtime_config
from src.pipeline.bus import publish
from src.pipeline.events import ANALYTICS_SCRAPE, VIDEO_READY, AnalyticsScrapePayload, VideoReadyPayload
from src.pipeline.generation import JOB_COMPLETED, job_hashtags
from src.social.account_pool import AccountCriteria, AccountPool
from src.social.platforms.base import PlatformPostRequest, PlatformPublisher, PostingAccount
from src.social.tokens import AccessTokenProvider
from src.storage.models import GenerationJob, SocialAccount, SocialPost


POST_POSTED = "posted"
POST_FAILED = "failed"
POST_PENDING = "pending"

logger = get_logger("viral.pipeline.posting")


@dataclass(frozen=True)
class PlatformPostOutcome:
    platform: str
    success: bool
    account_id: Optional[str] = None
    post_id: Optional[str] = None
    post_url: Optional[str] = None
    error: Optional[str] = None
    social_post_id: Optional[str] = None


@dataclass(frozen=True)
class PostingSummary:
    video_id: str
    status: str
    outcomes: Tuple[PlatformPostOutcome, ...] = ()
    successful_platforms: Tuple[str, ...] = ()
    skipped_reason: Optional[str] = None
    analytics_event_id: Optional[str] = None


@dataclass(frozen=True)
class RetrySweepSummary:
    scanned: int
    skipped_succeeded: int
    requeued_videos: Tuple[str, ...] = field(default_factory=tuple)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _unique_platforms(platforms: List[str]) -> List[str]:
    seen: List[str] = []
    for platform in platforms:
        normalized = (platform or "").strip().lower()
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen


def _has_posted(session: Session, job_id: str, platform: str) -> Optional[SocialPost]:
    return session.scalar(
        select(SocialPost)
        .where(
            SocialPost.job_id == job_id,
            SocialPost.platform == platform,
            SocialPost.status == POST_POSTED,
        )
        .limit(1)
    )


class PostingOrchestrator:
    def __init__(
        self,
        *,
        publishers: Mapping[str, PlatformPublisher],
        token_provider: AccessTokenProvider,
        runtime: Optional[RuntimeConfig] = None,
        analytics_delay_hours: Optional[int] = None,
        failure_disable_threshold: Optional[int] = None,
        retry_batch_size: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        settings = get_settings()
        self._publishers = {name.strip().lower(): publisher for name, publisher in publishers.items()}
        self._token_provider = token_provider
        self._runtime = runtime
        self._analytics_delay_hours = (
            analytics_delay_hours if analytics_delay_hours is not None else settings.posting_analytics_delay_hours
        )
        self._failure_disable_threshold = failure_disable_threshold
        self._retry_lookback_hours = settings.posting_retry_lookback_hours
        self._retry_batch_size = retry_batch_size or settings.posting_retry_batch_size
        self._clock = clock or _utc_now

    def _runtime_config(self) -> RuntimeConfig:
        return self._runtime if self._runtime is not None else load_runtime_config()

    def handle_ready(self, session: Session, payload: VideoReadyPayload) -> PostingSummary:
        job = session.get(GenerationJob, payload.video_id)
        if job is None or job.status != JOB_COMPLETED:
            reason = "video_not_found" if job is None else "video_not_completed"
            logger.warning("posting_skipped", video_id=payload.video_id, reason=reason)
            return PostingSummary(video_id=payload.video_id, status="skipped", skipped_reason=reason)

        platforms = _unique_platforms(payload.platforms)
        if not platforms:
            logger.info("posting_skipped", video_id=job.id, reason="no_target_platforms")
            return PostingSummary(video_id=job.id, status="skipped", skipped_reason="no_target_platforms")

        video_url = job.cdn_url or job.storage_url or ""
        pool = AccountPool(session, clock=self._clock, failure_disable_threshold=self._failure_disable_threshold)
        outcomes = [self._post_to_platform(session, pool, job, payload, platform, video_url) for platform in platforms]

        successful = [outcome for outcome in outcomes if outcome.success]
        analytics_event_id: Optional[str] = None
        if successful:
            platform_names = [outcome.platform for outcome in successful]
            event = publish(
                session,
                ANALYTICS_SCRAPE,
                AnalyticsScrapePayload(
                    video_id=job.id,
                    tenant_id=job.tenant_id,
                    platforms=platform_names,
                    post_ids=[outcome.post_id for outcome in successful if outcome.post_id],
                ),
                tenant_id=job.tenant_id,
                job_id=job.id,
                delay=timedelta(hours=self._analytics_delay_hours),
                dedupe_key=f"{ANALYTICS_SCRAPE}:{job.id}:{','.join(sorted(platform_names))}",
                now=self._clock(),
            )
            session.commit()
            analytics_event_id = event.id

        logger.info(
            "posting_completed",
            video_id=job.id,
            platforms=platforms,
            posted=[outcome.platform for outcome in successful],
            failed=[outcome.platform for outcome in outcomes if not outcome.success],
        )
        return PostingSummary(
            video_id=job.id,
            status="processed",
            outcomes=tuple(outcomes),
            successful_platforms=tuple(outcome.platform for outcome in successful),
            analytics_event_id=analytics_event_id,
        )

    def _post_to_platform(
        self,
        session: Session,
        pool: AccountPool,
        job: GenerationJob,
        payload: VideoReadyPayload,
        platform: str,
        video_url: str,
    ) -> PlatformPostOutcome:
        existing = _has_posted(session, job.id, platform)
        if existing is not None:
            logger.info("posting_platform_already_posted", video_id=job.id, platform=platform, post_id=existing.id)
            return PlatformPostOutcome(
                platform=platform,
                success=True,
                account_id=existing.account_id,
                post_id=existing.platform_post_id,
                post_url=existing.post_url,
                social_post_id=existing.id,
            )

        if self._runtime_config().is_platform_paused(platform):
            return self._failed(session, job, platform, None, f"{platform} posting paused by runtime config")

        publisher = self._publishers.get(platform)
        if publisher is None:
            return self._failed(session, job, platform, None, f"Unsupported platform: {platform}")

        account = pool.select_account(
            AccountCriteria(
                platform=platform,
                tenant_id=job.tenant_id,
                category=payload.category or job.category,
                minimum_quota=1,
            )
        )
        if account is None:
            return self._failed(session, job, platform, None, f"No available {platform} account with quota")

        if not pool.reserve_quota(account.id):
            return self._failed(session, job, platform, account.id, f"Failed to reserve quota for {platform}")

        access_token = self._token_provider.get_access_token(session, account.id)
        if access_token is None:
            pool.release_quota(account.id)
            return self._failed(session, job, platform, account.id, f"Failed to get access token for {platform}")

        result = publisher.upload_video(
            self._posting_account(account, access_token),
            PlatformPostRequest(
                video_url=video_url,
                caption=payload.caption,
                hashtags=tuple(payload.hashtags),
            ),
        )
        if not result.success:
            pool.release_quota(account.id)
            error = result.error or f"{platform} upload failed"
            pool.record_post_outcome(account.id, success=False, error=error)
            return self._failed(session, job, platform, account.id, error)

        pool.record_post_outcome(account.id, success=True)
        now = self._clock()
        post = SocialPost(
            job_id=job.id,
            tenant_id=job.tenant_id,
            account_id=account.id,
            platform=platform,
            status=POST_POSTED,
            platform_post_id=result.post_id,
            post_url=result.post_url,
            posted_at=now,
            created_at=now,
        )
        session.add(post)
        session.commit()
        record_social_post(platform=platform, status=POST_POSTED)
        logger.info(
            "posting_platform_posted",
            video_id=job.id,
            platform=platform,
            account_id=account.id,
            post_id=result.post_id,
        )
        return PlatformPostOutcome(
            platform=platform,
            success=True,
            account_id=account.id,
            post_id=result.post_id,
            post_url=result.post_url,
            social_post_id=post.id,
        )

    @staticmethod
    def _posting_account(account: SocialAccount, access_token: str) -> PostingAccount:
        return PostingAccount(
            account_id=account.id,
            platform=account.platform,
            username=account.username,
            access_token=access_token,
            platform_account_id=account.platform_account_id,
        )

    def _failed(
        self,
        session: Session,
        job: GenerationJob,
        platform: str,
        account_id: Optional[str],
        error: str,
    ) -> PlatformPostOutcome:
        post = SocialPost(
            job_id=job.id,
            tenant_id=job.tenant_id,
            account_id=account_id,
            platform=platform,
            status=POST_FAILED,
            error_message=error[:500],
            created_at=self._clock(),
        )
        session.add(post)
        session.commit()
        record_social_post(platform=platform, status=POST_FAILED)
        logger.warning("posting_platform_failed", video_id=job.id, platform=platform, account_id=account_id, error=error)
        return PlatformPostOutcome(
            platform=platform,
            success=False,
            account_id=account_id,
            error=error,
            social_post_id=post.id,
        )

    def retry_failed_posts(self, session: Session) -> RetrySweepSummary:
        """Re-emit ``video/ready`` for recent failures that never succeeded since."""

        now = self._clock()
        cutoff = now - timedelta(hours=self._retry_lookback_hours)
        # One row per (job, platform), newest failure first; repeated failures of
        # an old video must not crowd newer ones out of the batch.
        latest_failure = func.max(SocialPost.created_at).label("latest_failure")
        failed_pairs = session.execute(
            select(SocialPost.job_id, SocialPost.platform, latest_failure)
            .where(SocialPost.status == POST_FAILED, SocialPost.created_at >= cutoff)
            .group_by(SocialPost.job_id, SocialPost.platform)
            .order_by(latest_failure.desc(), SocialPost.job_id.asc(), SocialPost.platform.asc())
            .limit(self._retry_batch_size)
        ).all()

        grouped: Dict[str, List[str]] = {}
        skipped = 0
        for job_id, platform, _ in failed_pairs:
            if _has_posted(session, job_id, platform) is not None:
                skipped += 1
                continue
            grouped.setdefault(job_id, []).append(platform)

        requeued: List[str] = []
        for job_id, platforms in grouped.items():
            job = session.get(GenerationJob, job_id)
            if job is None or job.status != JOB_COMPLETED:
                continue
            publish(
                session,
                VIDEO_READY,
                VideoReadyPayload(
                    video_id=job.id,
                    tenant_id=job.tenant_id,
                    concept_id=job.concept_id,
                    category=job.category,
                    platforms=platforms,
                    caption=job.caption,
                    hashtags=job_hashtags(job),
                ),
                tenant_id=job.tenant_id,
                job_id=job.id,
                dedupe_key=f"{VIDEO_READY}:{job.id}:retry:{now.strftime('%Y%m%dT%H%M')}",
                now=now,
            )
            requeued.append(job.id)
        session.commit()

        logger.info(
            "posting_retry_sweep_completed",
            scanned=len(failed_pairs),
            skipped_succeeded=skipped,
            requeued=len(requeued),
        )
        return RetrySweepSummary(scanned=len(failed_pairs), skipped_succeeded=skipped, requeued_videos=tuple(requeued))
