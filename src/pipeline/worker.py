"""Wires pipeline handlers to the event dispatcher and runs the worker loop."""

from __future__ import annotations

from dataclasses import asdict
import argparse
import json
import time
from typing import Any, Dict, Optional

from redis import Redis
from sqlalchemy.orm import Session, sessionmaker

from src.core.config import get_settings
from src.core.logger import get_logger
from src.core.observability import init_sentry
from src.orchestrator.locks import JOB_LOCK_NAMESPACE, RedisLockManager
from src.pipeline.bus import EventDispatcher, EventHandler, event_payload, lease_heartbeat
from src.pipeline.events import (
    VIDEO_FAILED,
    VIDEO_GENERATE,
    VIDEO_READY,
    VideoFailedPayload,
    VideoGeneratePayload,
    VideoReadyPayload,
)
from src.pipeline.generation import GenerationOrchestrator
from src.pipeline.posting import PostingOrchestrator
from src.pipeline.retry import RetryCoordinator
from src.quality.validators import get_quality_validator
from src.social.platforms.factory import build_platform_publishers
from src.social.tokens import AccessTokenProvider
from src.storage.db import get_session_factory, load_models
from src.storage.models import PipelineEvent
from src.storage.redis_client import get_client as get_redis_client
from src.video.providers.factory import get_provider_router
from src.video.storage import get_video_storage


logger = get_logger("viral.pipeline.worker")


def build_handlers(
    *,
    generation: GenerationOrchestrator,
    retry: RetryCoordinator,
    posting: PostingOrchestrator,
) -> Dict[str, EventHandler]:
    """Map event names to handlers; completed and analytics events have no consumer here."""

    def on_generate(session: Session, event: PipelineEvent) -> Any:
        return generation.handle_generate(
            session,
            VideoGeneratePayload.model_validate(event_payload(event)),
            heartbeat=lease_heartbeat(session),
        )

    def on_failed(session: Session, event: PipelineEvent) -> Any:
        return retry.handle_failure(session, VideoFailedPayload.model_validate(event_payload(event)))

    def on_ready(session: Session, event: PipelineEvent) -> Any:
        summary = posting.handle_ready(session, VideoReadyPayload.model_validate(event_payload(event)))
        return {
            "video_id": summary.video_id,
            "status": summary.status,
            "successful_platforms": list(summary.successful_platforms),
            "skipped_reason": summary.skipped_reason,
        }

    return {
        VIDEO_GENERATE: on_generate,
        VIDEO_FAILED: on_failed,
        VIDEO_READY: on_ready,
    }


def build_posting_orchestrator(redis_client: Optional[Redis] = None) -> PostingOrchestrator:
    return PostingOrchestrator(
        publishers=build_platform_publishers(),
        token_provider=AccessTokenProvider(redis_client=redis_client),
    )


def build_dispatcher(
    *,
    session_factory: Optional[sessionmaker] = None,
    redis_client: Optional[Redis] = None,
) -> EventDispatcher:
    settings = get_settings()
    redis_client = redis_client if redis_client is not None else get_redis_client()
    generation = GenerationOrchestrator(
        router=get_provider_router(),
        storage=get_video_storage(),
        validator=get_quality_validator(),
        lock_manager=RedisLockManager(
            redis_client,
            namespace=JOB_LOCK_NAMESPACE,
            ttl_seconds=settings.job_lock_ttl_seconds,
        ),
    )
    handlers = build_handlers(
        generation=generation,
        retry=RetryCoordinator(),
        posting=build_posting_orchestrator(redis_client),
    )
    return EventDispatcher(session_factory=session_factory or get_session_factory(), handlers=handlers)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the viral video pipeline worker.")
    parser.add_argument("--once", action="store_true", help="Dispatch one batch of due events and exit.")
    parser.add_argument("--poll-seconds", type=float, default=2.0, help="Idle sleep between polls.")
    args = parser.parse_args()

    load_models()
    init_sentry()
    dispatcher = build_dispatcher()
    logger.info("pipeline_worker_started", handlers=dispatcher.handled_event_names)

    if args.once:
        summary = dispatcher.run_once()
        print(json.dumps(asdict(summary), ensure_ascii=True, separators=(",", ":"), sort_keys=True))
        return

    while True:
        summary = dispatcher.run_once()
        if summary.claimed == 0:
            time.sleep(max(0.1, args.poll_seconds))


if __name__ == "__main__":
    main()
