"""
Job queue: admission, cooperative cancellation, progress and history.

This package tracks job lifecycles. It does NOT spawn FFmpeg; job bodies
supplied by the caller do that (or delegate it).
"""

from .errors import (
    JobError,
    QueueFullError,
    JobCancelledError,
    is_job_cancelled_error,
)
from .models import (
    JobState,
    LogLevel,
    ProgressSnapshot,
    JobSnapshot,
    JobHistoryEntry,
    QueueLimits,
    QueueFullEvent,
    CancelAllSummary,
    JobRunResult,
    JobEvent,
    JobEventType,
    is_job_terminal,
)
from .cancellation import CancellationToken
from .progress import JobProgressTracker
from .history import HistoryStore, InMemoryHistoryStore
from .queue import JobQueue, JobSpec, JobRunContext, JobPreviewContext
from .warnings import QueueWarning, QueueWarningType, build_queue_warnings

__all__ = [
    # Errors
    "JobError",
    "QueueFullError",
    "JobCancelledError",
    "is_job_cancelled_error",
    # Models
    "JobState",
    "LogLevel",
    "ProgressSnapshot",
    "JobSnapshot",
    "JobHistoryEntry",
    "QueueLimits",
    "QueueFullEvent",
    "CancelAllSummary",
    "JobRunResult",
    "JobEvent",
    "JobEventType",
    "is_job_terminal",
    # Runtime
    "CancellationToken",
    "JobProgressTracker",
    "HistoryStore",
    "InMemoryHistoryStore",
    "JobQueue",
    "JobSpec",
    "JobRunContext",
    "JobPreviewContext",
    # Diagnostics
    "QueueWarning",
    "QueueWarningType",
    "build_queue_warnings",
]
