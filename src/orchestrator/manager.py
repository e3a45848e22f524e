"""CLI entrypoint to run one scheduler cycle."""

from __future__ import annotations

from dataclasses import asdict
from datetime import timedelta
import argparse
import json
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from src.core.config import get_settings
from src.core.observability import init_sentry
from src.orchestrator.locks import CRON_LOCK_NAMESPACE, RedisLockManager
from src.orchestrator.scheduler import (
    RESET_DAILY_QUOTAS_TASK,
    RETRY_FAILED_POSTS_TASK,
    CronTask,
    PeriodicScheduler,
    SchedulerRunResult,
)
from src.pipeline.posting import PostingOrchestrator
from src.pipeline.worker import build_posting_orchestrator
from src.social.account_pool import AccountPool
from src.storage.db import get_session_factory, load_models
from src.storage.redis_client import get_client as get_redis_client


def build_cron_tasks(posting: PostingOrchestrator) -> List[CronTask]:
    settings = get_settings()

    def retry_failed_posts(session: Session) -> Dict[str, Any]:
        summary = posting.retry_failed_posts(session)
        return {
            "scanned": summary.scanned,
            "skipped_succeeded": summary.skipped_succeeded,
            "requeued": len(summary.requeued_videos),
        }

    def reset_daily_quotas(session: Session) -> Dict[str, Any]:
        return {"accounts_reset": AccountPool(session).reset_all_quotas()}

    return [
        CronTask(
            name=RETRY_FAILED_POSTS_TASK,
            interval=timedelta(hours=settings.posting_retry_interval_hours),
            runner=retry_failed_posts,
        ),
        CronTask(name=RESET_DAILY_QUOTAS_TASK, interval=timedelta(days=1), runner=reset_daily_quotas),
    ]


def run_scheduler_once(*, task_names: Optional[List[str]] = None) -> SchedulerRunResult:
    settings = get_settings()
    load_models()
    redis_client = get_redis_client()

    scheduler = PeriodicScheduler(
        session_factory=get_session_factory(),
        lock_manager=RedisLockManager(
            redis_client,
            namespace=CRON_LOCK_NAMESPACE,
            ttl_seconds=settings.scheduler_lock_ttl_seconds,
        ),
        tasks=build_cron_tasks(build_posting_orchestrator(redis_client)),
    )
    return scheduler.run_once(task_names=task_names)


def _result_to_dict(result: SchedulerRunResult) -> Dict[str, Any]:
    payload = asdict(result)
    payload["runs"] = [asdict(run) for run in result.runs]
    return payload


def main() -> None:
    parser = argparse.ArgumentParser(description="Run due viral pipeline cron tasks once.")
    parser.add_argument("--task", action="append", default=None, help="Limit the run to this task (repeatable).")
    args = parser.parse_args()

    init_sentry()
    result = run_scheduler_once(task_names=args.task)
    print(json.dumps(_result_to_dict(result), ensure_ascii=True, separators=(",", ":"), sort_keys=True))


if __name__ == "__main__":
    main()
