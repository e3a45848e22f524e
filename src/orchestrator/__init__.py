"""Orchestration primitives for cron tasks and resource locks."""

from src.orchestrator.locks import LockHandle, RedisLockManager
from src.orchestrator.scheduler import CronRunSummary, CronTask, PeriodicScheduler, SchedulerRunResult

__all__ = [
    "CronRunSummary",
    "CronTask",
    "LockHandle",
    "PeriodicScheduler",
    "RedisLockManager",
    "SchedulerRunResult",
]
