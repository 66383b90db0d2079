"""
Deferred Task Queue
===================

Durable, at-least-once deferred tasks on top of APScheduler.

- One-shot tasks use a ``date`` trigger in a persistent SQLAlchemy job store,
  so pending SLA checks and period rollovers survive restarts.
- A deterministic job id doubles as the dedupe key: scheduling the same key
  while the first task is still pending is a no-op.
- Every task runs through ``run_deferred_task``, which looks the handler up
  in the registry and retries with a fixed backoff until the configured attempts
  are spent. Handlers must be "reload state, decide, write state" functions.
- Recurring sweeps use an ``interval`` trigger in an in-memory store.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from apscheduler.jobstores.base import ConflictingIdError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from helpdesk.config import settings
from helpdesk.core.clock import ensure_utc, utcnow
from helpdesk.core.interfaces import IDeferredTaskQueue
from helpdesk.shared.infrastructure.logging import get_logger, log_context, log_latency

logger = get_logger(__name__)

TaskHandler = Callable[[dict], Awaitable[None]]


class TaskOutcome(str, Enum):
    """Result of one task attempt."""
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"


class TaskRegistry:
    """Maps task names to async handlers taking the task payload."""

    def __init__(self):
        self._handlers: Dict[str, TaskHandler] = {}

    def register(self, name: str, handler: TaskHandler) -> None:
        self._handlers[name] = handler

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def clear(self) -> None:
        self._handlers.clear()

    async def dispatch(
        self,
        name: str,
        payload: dict,
        attempt: int = 1,
        max_attempts: int = 1
    ) -> TaskOutcome:
        """
        Run one attempt of a task.

        Handler exceptions never escape: they turn into RETRY while attempts
        remain and FAILED afterwards, so one organization's broken task does
        not affect anybody else's.
        """
        handler = self._handlers.get(name)
        if handler is None:
            logger.error("Unknown deferred task", extra={"task": name})
            return TaskOutcome.FAILED

        with log_context(
            task=name,
            attempt=attempt,
            organization_id=payload.get("organization_id"),
            ticket_id=payload.get("ticket_id"),
        ):
            try:
                with log_latency(logger, name):
                    await handler(payload)
            except Exception as e:
                if attempt < max_attempts:
                    logger.warning(
                        "Deferred task failed, will retry",
                        extra={"max_attempts": max_attempts, "error": str(e)}
                    )
                    return TaskOutcome.RETRY
                logger.error(
                    "Deferred task failed permanently",
                    extra={"payload": payload, "error": str(e)},
                    exc_info=True
                )
                return TaskOutcome.FAILED

        return TaskOutcome.COMPLETED


# Handlers are registered at startup; persisted jobs only store a reference
# to run_deferred_task plus (name, payload, attempt).
_registry = TaskRegistry()
_active_queue: Optional["APSchedulerTaskQueue"] = None


def get_task_registry() -> TaskRegistry:
    return _registry


async def run_deferred_task(name: str, payload: dict, attempt: int = 1) -> None:
    """Entry point every persisted one-shot job points at."""
    outcome = await _registry.dispatch(
        name, payload, attempt=attempt, max_attempts=settings.task_max_attempts
    )
    if outcome == TaskOutcome.RETRY:
        if _active_queue is None:
            logger.error("No active task queue to retry on", extra={"task": name})
            return
        await _active_queue.retry(name, payload, attempt + 1)


class APSchedulerTaskQueue(IDeferredTaskQueue):
    """
    Wrapper around APScheduler implementing the deferred task queue.

    Manages the lifecycle of the scheduler and jobs.
    """

    PERSISTENT_STORE = "default"
    MEMORY_STORE = "memory"

    def __init__(
        self,
        store_url: Optional[str] = None,
        retry_delay_seconds: Optional[int] = None,
        misfire_grace_seconds: Optional[int] = None
    ):
        self._store_url = store_url or settings.task_store_url
        self._retry_delay = retry_delay_seconds or settings.task_retry_delay_seconds
        self._misfire_grace = misfire_grace_seconds or settings.task_misfire_grace_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self) -> None:
        """Start the scheduler; pending persisted jobs resume immediately."""
        global _active_queue

        if self._running:
            logger.warning("Task queue already running")
            return

        self._scheduler = AsyncIOScheduler(
            jobstores={
                self.PERSISTENT_STORE: SQLAlchemyJobStore(url=self._store_url),
                self.MEMORY_STORE: MemoryJobStore(),
            },
            job_defaults={"misfire_grace_time": self._misfire_grace},
            timezone=timezone.utc,
        )
        self._scheduler.start()
        self._running = True
        _active_queue = self

        logger.info(
            "Deferred task queue started",
            extra={"handlers": _registry.names(), "retry_delay_seconds": self._retry_delay}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        global _active_queue

        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        if _active_queue is self:
            _active_queue = None
        logger.info("Deferred task queue stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def schedule(
        self,
        name: str,
        payload: dict,
        fire_at: datetime,
        dedupe_key: Optional[str] = None
    ) -> Optional[str]:
        return self._add(name, payload, fire_at, dedupe_key or uuid4().hex, attempt=1)

    async def retry(self, name: str, payload: dict, attempt: int) -> Optional[str]:
        """Re-enqueue a failed task after the fixed backoff."""
        run_at = utcnow() + timedelta(seconds=self._retry_delay)
        return self._add(name, payload, run_at, uuid4().hex, attempt=attempt)

    def add_recurring(
        self,
        job_id: str,
        func: Callable[[], Awaitable[None]],
        interval_seconds: int
    ) -> None:
        """Register a periodic sweep (not persisted, re-added on every start)."""
        self._require_scheduler().add_job(
            func,
            "interval",
            seconds=interval_seconds,
            id=job_id,
            name=job_id,
            jobstore=self.MEMORY_STORE,
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )
        logger.info(
            "Recurring sweep registered",
            extra={"job_id": job_id, "interval_seconds": interval_seconds}
        )

    def _add(
        self,
        name: str,
        payload: dict,
        run_at: datetime,
        job_id: str,
        attempt: int
    ) -> Optional[str]:
        try:
            self._require_scheduler().add_job(
                run_deferred_task,
                "date",
                run_date=ensure_utc(run_at),
                args=[name, payload, attempt],
                id=job_id,
                name=name,
                jobstore=self.PERSISTENT_STORE,
                replace_existing=False
            )
        except ConflictingIdError:
            logger.debug("Deferred task already pending", extra={"task": name, "job_id": job_id})
            return None

        logger.debug(
            "Deferred task scheduled",
            extra={"task": name, "job_id": job_id, "run_at": run_at.isoformat(), "attempt": attempt}
        )
        return job_id

    def _require_scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            raise RuntimeError("Task queue not started. Call start() first.")
        return self._scheduler


__all__ = [
    "TaskHandler",
    "TaskOutcome",
    "TaskRegistry",
    "APSchedulerTaskQueue",
    "get_task_registry",
    "run_deferred_task",
]
