"""
In-memory job queue for asynchronous transcoding jobs.

Design rules:
- Single process, single event loop
- FIFO admission across however many parallel slots are free
- Bounded waiting queue: admission fails fast with QueueFullError
- Cancellation is cooperative only (the queue flips a token, never kills a body)
- Exactly one history entry per job, written at its terminal transition

Job bodies are coroutines. The queue hands each body a JobRunContext
carrying a CancellationToken and a JobProgressTracker. A typical body
compiles an FFmpegPlan and passes it to an executor that lives outside
this package.

All queue-mutating methods (enqueue, cancel_all) and getters are plain
synchronous methods. They must be called from code running on the
event loop, which makes them atomic with respect to each other.
"""

import asyncio
import copy
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union
from collections import deque

from ..config import QueueSettings
from .cancellation import CancellationToken
from .errors import JobCancelledError, QueueFullError, is_job_cancelled_error
from .history import HistoryStore, InMemoryHistoryStore
from .models import (
    CancelAllSummary,
    JobEvent,
    JobEventType,
    JobHistoryEntry,
    JobRunResult,
    JobSnapshot,
    JobState,
    LogLevel,
    QueueFullEvent,
    QueueLimits,
    log_level_for,
)
from .progress import JobProgressTracker

logger = logging.getLogger(__name__)


CANCEL_ALL_REASON = "Cancel All"
CANCEL_ALL_MESSAGE = "Canceled via Cancel All"

_LOGGING_LEVELS: Dict[LogLevel, int] = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass
class JobRunContext:
    """Handed to a job body."""

    token: CancellationToken
    progress: JobProgressTracker

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


@dataclass
class JobPreviewContext:
    """Handed to a generate_preview hook."""

    token: CancellationToken

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


ExecuteFn = Callable[[JobRunContext], Awaitable[Any]]
PreviewFn = Callable[[JobRunResult, JobPreviewContext], Union[Awaitable[None], None]]
JobListener = Callable[[JobEvent], None]


@dataclass
class JobSpec:
    """
    Job submission contract.

    Attributes:
        name: Display name recorded in snapshots and history
        execute: Coroutine function returning JobRunResult, a dict, or None
        metadata: Opaque data copied into snapshots and history
        estimated_total_time_ms: Seeds the progress tracker's estimate
        generate_preview: Optional hook run after a successful body
                          (sync or async), while the job is coolingDown
    """

    name: str
    execute: ExecuteFn
    metadata: Optional[Dict[str, Any]] = None
    estimated_total_time_ms: Optional[float] = None
    generate_preview: Optional[PreviewFn] = None

    def __post_init__(self):
        if not callable(self.execute):
            raise TypeError("JobSpec.execute must be callable")
        if self.generate_preview is not None and not callable(self.generate_preview):
            raise TypeError("JobSpec.generate_preview must be callable")


@dataclass(eq=False)
class _Job:
    """Queue-owned job state. Never handed out; see JobSnapshot."""

    id: str
    name: str
    spec: JobSpec
    progress: JobProgressTracker
    token: CancellationToken = field(default_factory=CancellationToken)
    status: JobState = JobState.QUEUED
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=lambda: _now())
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None
    message: Optional[str] = None
    queue_timer: Optional[asyncio.TimerHandle] = None
    task: Optional["asyncio.Task[None]"] = None
    finalized: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _error_message(error: BaseException) -> str:
    message = str(error)
    return message if message else error.__class__.__name__


class JobQueue:
    """
    Admission, concurrency limiting, cancellation and history for jobs.

    Usage:
        queue = JobQueue(QueueSettings(max_parallel_jobs=2))
        job_id = queue.enqueue(JobSpec(name="export", execute=run_export))
        await queue.wait_for_idle()
        queue.get_history()
    """

    def __init__(
        self,
        settings: Optional[QueueSettings] = None,
        history_store: Optional[HistoryStore] = None,
    ):
        self._settings = settings or QueueSettings()
        self._history: HistoryStore = history_store or InMemoryHistoryStore(
            self._settings.history_limit
        )
        self._queue: Deque[_Job] = deque()
        # Insertion-ordered: iteration follows start order
        self._active: Dict[str, _Job] = {}
        self._idle_waiters: List["asyncio.Future[None]"] = []
        self._listeners: List[JobListener] = []
        self._last_queue_full_event: Optional[QueueFullEvent] = None

    @property
    def settings(self) -> QueueSettings:
        return self._settings

    @property
    def running_count(self) -> int:
        return len(self._active)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    # =========================================================================
    # Admission
    # =========================================================================

    def enqueue(self, spec: JobSpec) -> str:
        """
        Admit a job.

        The capacity check happens before anything else so the caller
        can react synchronously.

        Returns:
            The new job id

        Raises:
            QueueFullError: If the waiting queue is already at max_queue_length
        """
        max_queue_length = self._settings.max_queue_length
        if len(self._queue) >= max_queue_length:
            self._last_queue_full_event = QueueFullEvent(
                occurred_at=_now(),
                queued_jobs=len(self._queue),
            )
            logger.warning(
                f"[JobQueue] Rejected '{spec.name}': queue full "
                f"({len(self._queue)}/{max_queue_length})"
            )
            raise QueueFullError(max_queue_length)

        loop = asyncio.get_running_loop()

        job = _Job(
            id=str(uuid.uuid4()),
            name=spec.name,
            spec=spec,
            progress=JobProgressTracker(spec.estimated_total_time_ms),
            metadata=spec.metadata,
        )
        self._queue.append(job)
        logger.info(f"[JobQueue] Job '{job.name}' ({job.id}) queued at position {len(self._queue)}")

        self._emit(JobEventType.QUEUED, job)
        self._schedule_queue_timeout(job, loop)
        self._process_queue()
        return job.id

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_all(self) -> CancelAllSummary:
        """
        Cancel every running and queued job.

        Running jobs are only asked to stop: their status becomes
        cancelling and their token is signalled. They are finalized when
        their body settles. Queued jobs are finalized immediately, in
        FIFO order.

        Jobs already cancelling or canceled are skipped.
        """
        summary = CancelAllSummary()

        for job in list(self._active.values()):
            if job.status in (JobState.CANCELLING, JobState.CANCELED):
                continue
            self._set_status(job, JobState.CANCELLING)
            summary.running_job_ids.append(job.id)
            if summary.running_job_id is None:
                summary.running_job_id = job.id
            job.token.cancel(CANCEL_ALL_REASON)
            logger.info(f"[JobQueue] Cancellation requested for running job {job.id}")

        while self._queue:
            job = self._queue.popleft()
            self._clear_queue_timeout(job)
            summary.queued_job_ids.append(job.id)
            self._finish_job(job, JobState.CANCELED, message=CANCEL_ALL_MESSAGE)
            self._clear_queue_full_event_if_recovered()

        self._notify_idle_if_needed()
        return summary

    # =========================================================================
    # Read-only views
    # =========================================================================

    def get_active_job(self) -> Optional[JobSnapshot]:
        """First running job, or None."""
        for job in self._active.values():
            return self._to_snapshot(job)
        return None

    def get_active_jobs(self) -> List[JobSnapshot]:
        return [self._to_snapshot(job) for job in self._active.values()]

    def get_queued_jobs(self) -> List[JobSnapshot]:
        return [self._to_snapshot(job) for job in self._queue]

    def get_history(self) -> List[JobHistoryEntry]:
        """Terminal entries, newest first. Always a copy."""
        return self._history.entries()

    def get_limits(self) -> QueueLimits:
        return QueueLimits(
            max_parallel_jobs=self._settings.max_parallel_jobs,
            max_queue_length=self._settings.max_queue_length,
            queue_timeout_ms=self._settings.queue_timeout_ms,
        )

    def get_last_queue_full_event(self) -> Optional[QueueFullEvent]:
        if self._last_queue_full_event is None:
            return None
        return self._last_queue_full_event.model_copy()

    async def wait_for_idle(self) -> None:
        """
        Suspend until nothing is running or queued.

        Any number of callers may wait; all are released together.
        """
        if self._is_idle():
            return
        future: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        self._idle_waiters.append(future)
        await future

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """
        Register a status-change listener.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_type: JobEventType, job: _Job) -> None:
        if not self._listeners:
            return
        event = JobEvent(type=event_type, snapshot=self._to_snapshot(job))
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"[JobQueue] Listener failed on {event_type.value} for job {job.id}")

    # =========================================================================
    # Execution
    # =========================================================================

    def _process_queue(self) -> None:
        while len(self._active) < self._settings.max_parallel_jobs and self._queue:
            job = self._queue.popleft()
            self._clear_queue_timeout(job)
            self._clear_queue_full_event_if_recovered()
            self._start_job(job)

    def _start_job(self, job: _Job) -> None:
        self._active[job.id] = job
        job.status = JobState.RUNNING
        job.started_at = _now()
        logger.info(f"[JobQueue] Job '{job.name}' ({job.id}) started, running: {len(self._active)}")
        self._emit(JobEventType.STARTED, job)
        job.task = asyncio.get_running_loop().create_task(
            self._run_job(job), name=f"nvengine-job-{job.id}"
        )

    async def _run_job(self, job: _Job) -> None:
        ctx = JobRunContext(token=job.token, progress=job.progress)
        try:
            result = JobRunResult.coerce(await job.spec.execute(ctx))

            if result.total_time_ms is not None:
                job.progress.set_total_time(result.total_time_ms)
            if result.output_time_ms is not None:
                job.progress.update_output_time(result.output_time_ms)

            # Token wins over whatever the body returned
            if job.token.cancelled:
                self._finish_job(job, JobState.CANCELED)
                return

            if job.spec.generate_preview is not None:
                self._set_status(job, JobState.COOLING_DOWN)
                outcome = job.spec.generate_preview(result, JobPreviewContext(token=job.token))
                if inspect.isawaitable(outcome):
                    await outcome
                if job.token.cancelled:
                    raise JobCancelledError("Preview cancelled", reason=job.token.reason)

            self._finish_job(job, JobState.COMPLETED, result=result)
        except asyncio.CancelledError:
            self._finish_job(job, JobState.CANCELED)
            raise
        except Exception as error:
            if job.token.cancelled or is_job_cancelled_error(error):
                self._finish_job(job, JobState.CANCELED)
            else:
                self._finish_job(job, JobState.FAILED, error_message=_error_message(error))
        finally:
            self._active.pop(job.id, None)
            job.task = None
            self._process_queue()
            self._notify_idle_if_needed()

    def _set_status(self, job: _Job, status: JobState) -> None:
        job.status = status
        self._emit(JobEventType.STATUS, job)

    def _finish_job(
        self,
        job: _Job,
        status: JobState,
        result: Optional[JobRunResult] = None,
        error_message: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        if job.finalized:
            logger.warning(f"[JobQueue] Job {job.id} already finalized as {job.status.value}")
            return

        job.finalized = True
        job.status = status
        job.finished_at = _now()
        job.error_message = error_message
        if message is None and status == JobState.CANCELED:
            message = job.token.reason
        job.message = message

        self._emit(JobEventType.FINISHED, job)
        self._record_history(job, result)

    def _record_history(self, job: _Job, result: Optional[JobRunResult]) -> None:
        level = log_level_for(job.status)
        entry = JobHistoryEntry(
            job_id=job.id,
            name=job.name,
            status=job.status,
            output_path=result.output_path if result is not None else None,
            error_message=job.error_message,
            started_at=job.started_at,
            finished_at=job.finished_at,
            metadata=copy.deepcopy(job.metadata),
            log_level=level,
            message=job.message,
        )
        self._history.record(entry)

        detail = job.error_message or job.message
        logger.log(
            _LOGGING_LEVELS[level],
            f"[JobQueue] Job '{job.name}' ({job.id}) {job.status.value}"
            + (f": {detail}" if detail else ""),
        )

    # =========================================================================
    # Queue timeout
    # =========================================================================

    def _schedule_queue_timeout(self, job: _Job, loop: asyncio.AbstractEventLoop) -> None:
        if self._settings.queue_timeout_ms <= 0:
            return
        self._clear_queue_timeout(job)
        job.queue_timer = loop.call_later(
            self._settings.queue_timeout_seconds, self._expire_queued_job, job
        )

    def _clear_queue_timeout(self, job: _Job) -> None:
        if job.queue_timer is not None:
            job.queue_timer.cancel()
            job.queue_timer = None

    def _expire_queued_job(self, job: _Job) -> None:
        job.queue_timer = None
        # The job may have been dequeued between scheduling and firing
        if job not in self._queue:
            return

        self._queue.remove(job)
        seconds = int(self._settings.queue_timeout_ms / 1000 + 0.5)
        self._finish_job(
            job,
            JobState.CANCELED,
            message=f"Queue timeout exceeded ({seconds}s)",
        )
        self._clear_queue_full_event_if_recovered()
        self._notify_idle_if_needed()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _is_idle(self) -> bool:
        return not self._active and not self._queue

    def _notify_idle_if_needed(self) -> None:
        if not self._is_idle():
            return
        waiters, self._idle_waiters = self._idle_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def _clear_queue_full_event_if_recovered(self) -> None:
        if (
            self._last_queue_full_event is not None
            and len(self._queue) < self._settings.max_queue_length
        ):
            self._last_queue_full_event = None

    def _to_snapshot(self, job: _Job) -> JobSnapshot:
        return JobSnapshot(
            job_id=job.id,
            name=job.name,
            status=job.status,
            progress=job.progress.snapshot(),
            metadata=copy.deepcopy(job.metadata),
        )
