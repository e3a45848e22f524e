"""Durable event bus backed by the pipeline_events outbox table.

Producers insert events in the same transaction as their state change.
The dispatcher claims due rows with a lease, runs the registered handler
and records the outcome. Delivery is at-least-once: a crashed worker's
lease expires and the event is claimed again, so handlers must be
idempotent on job id. Long handlers keep their lease through
``lease_heartbeat(session)``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime, timedelta, timezone
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel
from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from src.core.config import get_settings
from src.core.logger import bind_job_context, clear_context, get_logger
from src.core.metrics import record_pipeline_event
from src.core.observability import capture_exception, sentry_scope
from src.storage.db import session_scope
from src.storage.models import PipelineEvent


EVENT_PENDING = "pending"
EVENT_PROCESSING = "processing"
EVENT_DONE = "done"
EVENT_FAILED = "failed"
EVENT_IGNORED = "ignored"
EVENT_RETRIED = "retried"

EventHandler = Callable[[Session, PipelineEvent], Any]
Clock = Callable[[], datetime]
Heartbeat = Callable[[], bool]

LEASE_HEARTBEAT_KEY = "pipeline_event_lease_heartbeat"

logger = get_logger("viral.pipeline.bus")


class DeliveryDeferred(RuntimeError):
    """Raised by a handler that cannot run yet; redelivery does not use up a delivery attempt."""


def lease_heartbeat(session: Session) -> Optional[Heartbeat]:
    """Renews the lease of the event being handled on this session, if any."""

    return session.info.get(LEASE_HEARTBEAT_KEY)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)


def _payload_dict(payload: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    return dict(payload)


def _result_dict(result: Any) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    if is_dataclass(result) and not isinstance(result, type):
        return asdict(result)
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, Mapping):
        return dict(result)
    return {"value": result}


def event_payload(event: PipelineEvent) -> Dict[str, Any]:
    try:
        parsed = json.loads(event.payload_json or "{}")
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def publish(
    session: Session,
    name: str,
    payload: Union[BaseModel, Mapping[str, Any]],
    *,
    tenant_id: Optional[str] = None,
    job_id: Optional[str] = None,
    delay: Optional[timedelta] = None,
    dedupe_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PipelineEvent:
    """Stage an event on the session; the caller's commit makes it visible."""

    if dedupe_key:
        existing = session.scalar(select(PipelineEvent).where(PipelineEvent.dedupe_key == dedupe_key))
        if existing is not None:
            logger.info("pipeline_event_deduplicated", name=name, dedupe_key=dedupe_key, event_id=existing.id)
            return existing

    current = now or _utc_now()
    event = PipelineEvent(
        name=name,
        tenant_id=tenant_id,
        job_id=job_id,
        payload_json=_json_dumps(_payload_dict(payload)),
        status=EVENT_PENDING,
        dedupe_key=dedupe_key,
        available_at=current + (delay or timedelta(0)),
        attempts=0,
        created_at=current,
    )
    session.add(event)
    session.flush()
    logger.info(
        "pipeline_event_published",
        name=name,
        event_id=event.id,
        tenant_id=tenant_id,
        job_id=job_id,
        delay_seconds=int((delay or timedelta(0)).total_seconds()),
    )
    return event


@dataclass(frozen=True)
class DispatchSummary:
    claimed: int
    done: int
    retried: int
    failed: int
    ignored: int


class EventDispatcher:
    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        handlers: Mapping[str, EventHandler],
        batch_size: Optional[int] = None,
        lease_seconds: Optional[int] = None,
        max_delivery_attempts: Optional[int] = None,
        redelivery_delay_seconds: Optional[int] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._handlers = dict(handlers)
        self._batch_size = batch_size or settings.event_batch_size
        self._lease_seconds = lease_seconds or settings.event_lease_seconds
        self._max_delivery_attempts = max_delivery_attempts or settings.event_max_delivery_attempts
        self._redelivery_delay_seconds = (
            redelivery_delay_seconds
            if redelivery_delay_seconds is not None
            else settings.event_redelivery_delay_seconds
        )
        self._clock = clock or _utc_now

    @property
    def handled_event_names(self) -> List[str]:
        return sorted(self._handlers)

    def claim_due_events(self, *, limit: Optional[int] = None) -> List[str]:
        safe_limit = max(1, limit or self._batch_size)
        now = self._clock()
        due = or_(
            and_(PipelineEvent.status == EVENT_PENDING, PipelineEvent.available_at <= now),
            and_(PipelineEvent.status == EVENT_PROCESSING, PipelineEvent.locked_until <= now),
        )

        claimed: List[str] = []
        with session_scope(self._session_factory) as session:
            candidate_ids = list(
                session.scalars(
                    select(PipelineEvent.id)
                    .where(due)
                    .order_by(PipelineEvent.available_at.asc(), PipelineEvent.created_at.asc())
                    .limit(safe_limit)
                ).all()
            )
            for event_id in candidate_ids:
                result = session.execute(
                    update(PipelineEvent)
                    .where(PipelineEvent.id == event_id, due)
                    .values(
                        status=EVENT_PROCESSING,
                        locked_until=now + timedelta(seconds=self._lease_seconds),
                        attempts=PipelineEvent.attempts + 1,
                    )
                )
                if result.rowcount == 1:
                    claimed.append(str(event_id))
            session.commit()
        return claimed

    def dispatch(self, event_id: str) -> str:
        with session_scope(self._session_factory) as session:
            event = session.get(PipelineEvent, event_id)
            if event is None:
                return EVENT_IGNORED

            name = event.name
            handler = self._handlers.get(name)
            if handler is None:
                self._finish(session, event, status=EVENT_IGNORED)
                logger.warning("pipeline_event_no_handler", name=name, event_id=event_id)
                return EVENT_IGNORED

            claimed_attempts = int(event.attempts)
            session.info[LEASE_HEARTBEAT_KEY] = lambda: self.extend_lease(session, event_id, claimed_attempts)
            bind_job_context(job_id=event.job_id, tenant_id=event.tenant_id, event_id=event.id)
            try:
                with sentry_scope(tenant_id=event.tenant_id, job_id=event.job_id, event_name=name):
                    result = handler(session, event)
            except DeliveryDeferred as exc:
                session.rollback()
                return self._defer(session, event_id, name=name, reason=str(exc) or exc.__class__.__name__)
            except Exception as exc:
                session.rollback()
                capture_exception(exc)
                return self._record_failure(session, event_id, name=name, error=str(exc) or exc.__class__.__name__)
            finally:
                session.info.pop(LEASE_HEARTBEAT_KEY, None)
                clear_context()

            event = session.get(PipelineEvent, event_id)
            self._finish(session, event, status=EVENT_DONE, result=_result_dict(result))
            logger.info("pipeline_event_done", name=name, event_id=event_id)
            return EVENT_DONE

    def extend_lease(self, session: Session, event_id: str, claimed_attempts: int) -> bool:
        """Push ``locked_until`` out by one lease while this delivery still owns the row."""

        result = session.execute(
            update(PipelineEvent)
            .where(
                PipelineEvent.id == event_id,
                PipelineEvent.status == EVENT_PROCESSING,
                PipelineEvent.attempts == claimed_attempts,
            )
            .values(locked_until=self._clock() + timedelta(seconds=self._lease_seconds))
        )
        session.commit()
        if result.rowcount != 1:
            logger.warning("pipeline_event_lease_lost", event_id=event_id, attempts=claimed_attempts)
            return False
        return True

    def _finish(
        self,
        session: Session,
        event: PipelineEvent,
        *,
        status: str,
        result: Optional[Dict[str, Any]] = None,
    ) -> None:
        event.status = status
        event.locked_until = None
        event.processed_at = self._clock()
        if result is not None:
            event.result_json = _json_dumps(result)
        session.commit()
        record_pipeline_event(name=event.name, status=status)

    def _record_failure(self, session: Session, event_id: str, *, name: str, error: str) -> str:
        event = session.get(PipelineEvent, event_id)
        if event is None:
            return EVENT_FAILED
        event.last_error = error[:500]
        event.locked_until = None
        if event.attempts >= self._max_delivery_attempts:
            event.status = EVENT_FAILED
            event.processed_at = self._clock()
            session.commit()
            record_pipeline_event(name=name, status=EVENT_FAILED)
            logger.error("pipeline_event_failed", name=name, event_id=event_id, attempts=event.attempts, error=error)
            return EVENT_FAILED

        event.status = EVENT_PENDING
        event.available_at = self._clock() + timedelta(seconds=self._redelivery_delay_seconds)
        session.commit()
        record_pipeline_event(name=name, status=EVENT_RETRIED)
        logger.warning(
            "pipeline_event_redelivery_scheduled",
            name=name,
            event_id=event_id,
            attempts=event.attempts,
            error=error,
        )
        return EVENT_RETRIED

    def _defer(self, session: Session, event_id: str, *, name: str, reason: str) -> str:
        event = session.get(PipelineEvent, event_id)
        if event is None:
            return EVENT_IGNORED
        event.attempts = max(0, int(event.attempts) - 1)
        event.status = EVENT_PENDING
        event.locked_until = None
        event.last_error = reason[:500]
        event.available_at = self._clock() + timedelta(seconds=self._redelivery_delay_seconds)
        session.commit()
        record_pipeline_event(name=name, status="deferred")
        logger.info("pipeline_event_deferred", name=name, event_id=event_id, attempts=event.attempts, reason=reason)
        return EVENT_RETRIED

    def run_once(self, *, limit: Optional[int] = None) -> DispatchSummary:
        counts = {EVENT_DONE: 0, EVENT_RETRIED: 0, EVENT_FAILED: 0, EVENT_IGNORED: 0}
        claimed = self.claim_due_events(limit=limit)
        for event_id in claimed:
            outcome = self.dispatch(event_id)
            counts[outcome] = counts.get(outcome, 0) + 1
        return DispatchSummary(
            claimed=len(claimed),
            done=counts[EVENT_DONE],
            retried=counts[EVENT_RETRIED],
            failed=counts[EVENT_FAILED],
            ignored=counts[EVENT_IGNORED],
        )

    def drain(self, *, max_rounds: int = 50) -> DispatchSummary:
        """Dispatch until no due events remain (delayed events stay queued)."""

        totals = DispatchSummary(claimed=0, done=0, retried=0, failed=0, ignored=0)
        for _ in range(max(1, max_rounds)):
            summary = self.run_once()
            if summary.claimed == 0:
                break
            totals = DispatchSummary(
                claimed=totals.claimed + summary.claimed,
                done=totals.done + summary.done,
                retried=totals.retried + summary.retried,
                failed=totals.failed + summary.failed,
                ignored=totals.ignored + summary.ignored,
            )
        return totals
