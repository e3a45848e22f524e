"""Periodic cron tasks with per-task Redis lock isolation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import json
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from src.core.logger import get_logger
from src.core.observability import capture_exception, sentry_scope
from src.orchestrator.locks import RedisLockManager
from src.storage.models import PipelineEvent


RETRY_FAILED_POSTS_TASK = "retry-failed-posts"
RESET_DAILY_QUOTAS_TASK = "reset-daily-quotas"

TaskRunner = Callable[[Session], Mapping[str, Any]]

logger = get_logger("viral.orchestrator.scheduler")


def _json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CronTask:
    name: str
    interval: timedelta
    runner: TaskRunner

    def window_key(self, now: datetime) -> str:
        """Identify the schedule window ``now`` falls into; one run per window."""

        if self.interval >= timedelta(days=1):
            return now.strftime("%Y-%m-%d")
        bucket = int(now.timestamp() // max(1.0, self.interval.total_seconds()))
        return str(bucket)

    def run_key(self, now: datetime) -> str:
        return f"cron/{self.name}:{self.window_key(now)}"


@dataclass(frozen=True)
class CronRunSummary:
    task: str
    status: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SchedulerRunResult:
    total_tasks: int
    executed: int
    skipped_not_due: int
    skipped_locked: int
    failed: int
    runs: List[CronRunSummary]


class PeriodicScheduler:
    """Run due cron tasks once per schedule window across all workers."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        lock_manager: RedisLockManager,
        tasks: Sequence[CronTask],
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._lock_manager = lock_manager
        self._tasks = {task.name: task for task in tasks}
        self._clock = clock or _utc_now

    @property
    def task_names(self) -> List[str]:
        return list(self._tasks)

    def run_once(self, *, task_names: Iterable[str] | None = None) -> SchedulerRunResult:
        selected = list(task_names) if task_names is not None else self.task_names
        executed = 0
        skipped_not_due = 0
        skipped_locked = 0
        failed = 0
        runs: List[CronRunSummary] = []

        for name in selected:
            task = self._tasks.get(name)
            if task is None:
                logger.warning("cron_task_unknown", task=name)
                continue

            now = self._clock()
            run_key = task.run_key(now)
            if self._already_ran(run_key):
                skipped_not_due += 1
                runs.append(CronRunSummary(task=name, status="skipped_not_due", details={"run_key": run_key}))
                continue

            lock = self._lock_manager.acquire(name)
            if lock is None:
                skipped_locked += 1
                runs.append(CronRunSummary(task=name, status="skipped_locked", details={"reason": "cron_lock_exists"}))
                logger.info("cron_task_skipped_locked", task=name)
                continue

            try:
                with sentry_scope(event_name=f"cron/{name}"):
                    details = self._run_task(task)
                executed += 1
                self._record_run(task, now=now, status="done", details=details, run_key=run_key)
                runs.append(CronRunSummary(task=name, status="executed", details=details))
                logger.info("cron_task_executed", task=name, **details)
            except Exception as exc:
                failed += 1
                details = {"error": str(exc)}
                self._record_run(task, now=now, status="failed", details=details, run_key=None)
                runs.append(CronRunSummary(task=name, status="failed", details=details))
                capture_exception(exc)
                logger.error("cron_task_failed", task=name, error=str(exc))
            finally:
                lock.release()

        return SchedulerRunResult(
            total_tasks=len(selected),
            executed=executed,
            skipped_not_due=skipped_not_due,
            skipped_locked=skipped_locked,
            failed=failed,
            runs=runs,
        )

    def _run_task(self, task: CronTask) -> Dict[str, Any]:
        with self._session_factory() as session:
            result = task.runner(session)
            if isinstance(result, Mapping):
                return dict(result)
            return {}

    def _already_ran(self, run_key: str) -> bool:
        with self._session_factory() as session:
            existing = session.scalar(select(PipelineEvent.id).where(PipelineEvent.dedupe_key == run_key))
            return existing is not None

    def _record_run(
        self,
        task: CronTask,
        *,
        now: datetime,
        status: str,
        details: Mapping[str, Any],
        run_key: Optional[str],
    ) -> None:
        # Failed runs keep no dedupe key so the next cycle tries again.
        with self._session_factory() as session:
            session.add(
                PipelineEvent(
                    name=f"cron/{task.name}",
                    payload_json=_json({"status": status, "details": dict(details)}),
                    status=status,
                    dedupe_key=run_key,
                    available_at=now,
                    attempts=1,
                    processed_at=self._clock(),
                    created_at=now,
                )
            )
            session.commit()
