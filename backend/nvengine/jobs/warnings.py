"""
Queue diagnostics for operator-facing surfaces.

Derives warnings from the queue's read-only views only:
- QUEUE_FULL when admission was recently rejected or the queue is at capacity
- QUEUE_TIMEOUT for the latest job dropped by queue expiry
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from .models import JobHistoryEntry, LogLevel, QueueFullEvent, QueueLimits

_TIMEOUT_MARKER = "queue timeout"


class QueueWarningType(str, Enum):
    QUEUE_FULL = "QUEUE_FULL"
    QUEUE_TIMEOUT = "QUEUE_TIMEOUT"


class QueueWarning(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: QueueWarningType
    level: LogLevel
    message: str
    occurred_at: str  # ISO format


def _mentions_timeout(value: Optional[str]) -> bool:
    return isinstance(value, str) and _TIMEOUT_MARKER in value.lower()


def _event_time(entry: JobHistoryEntry) -> datetime:
    moment = entry.finished_at or entry.started_at
    if moment is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    return moment


def _latest_timeout_entry(history: Sequence[JobHistoryEntry]) -> Optional[JobHistoryEntry]:
    latest: Optional[JobHistoryEntry] = None
    for entry in history:
        if not _mentions_timeout(entry.message) and not _mentions_timeout(entry.error_message):
            continue
        if latest is None or _event_time(entry) > _event_time(latest):
            latest = entry
    return latest


def build_queue_warnings(
    history: Sequence[JobHistoryEntry],
    limits: Optional[QueueLimits],
    queued_length: int,
    queue_full_event: Optional[QueueFullEvent],
    now: Optional[datetime] = None,
) -> List[QueueWarning]:
    """
    Build the warning list shown next to the queue.

    Args:
        history: JobQueue.get_history()
        limits: JobQueue.get_limits(); no warnings without limits
        queued_length: Current number of waiting jobs
        queue_full_event: JobQueue.get_last_queue_full_event()
        now: Reference time for derived warnings (defaults to current UTC time)
    """
    if limits is None:
        return []

    now = now or datetime.now(timezone.utc)
    warnings: List[QueueWarning] = []

    if queue_full_event is not None:
        warnings.append(QueueWarning(
            type=QueueWarningType.QUEUE_FULL,
            level=LogLevel.WARN,
            message=(
                f"Queue full: admission rejected with "
                f"{queue_full_event.queued_jobs}/{limits.max_queue_length} waiting"
            ),
            occurred_at=queue_full_event.occurred_at.isoformat(),
        ))
    elif queued_length >= limits.max_queue_length:
        warnings.append(QueueWarning(
            type=QueueWarningType.QUEUE_FULL,
            level=LogLevel.WARN,
            message=f"Queue is at capacity ({queued_length}/{limits.max_queue_length})",
            occurred_at=now.isoformat(),
        ))

    timeout_entry = _latest_timeout_entry(history)
    if timeout_entry is not None:
        occurred = timeout_entry.finished_at or timeout_entry.started_at or now
        warnings.append(QueueWarning(
            type=QueueWarningType.QUEUE_TIMEOUT,
            level=timeout_entry.log_level,
            message=timeout_entry.message or "Queue timeout exceeded",
            occurred_at=occurred.isoformat(),
        ))

    return warnings
