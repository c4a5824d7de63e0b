"""
Job queue data models.

Snapshots and history entries are read-only projections handed to
observers (UI, log exporter). They are never the queue's own state:
the queue builds a fresh copy every time one is requested.

All models use Pydantic for validation.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobState(str, Enum):
    """
    Job lifecycle status.

    queued -> running -> [coolingDown] -> completed | failed | canceled
    running/coolingDown -> cancelling -> canceled
    queued -> canceled (cancel_all or queue timeout)
    """

    QUEUED = "queued"
    RUNNING = "running"
    CANCELLING = "cancelling"  # Cancellation requested, body still unwinding
    COOLING_DOWN = "coolingDown"  # Body finished, preview hook running
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_JOB_STATES: FrozenSet[JobState] = frozenset({
    JobState.COMPLETED,
    JobState.FAILED,
    JobState.CANCELED,
})


def is_job_terminal(status: JobState) -> bool:
    """Terminal states are written once and never change."""
    return status in TERMINAL_JOB_STATES


class LogLevel(str, Enum):
    """Severity recorded alongside each history entry."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def log_level_for(status: JobState) -> LogLevel:
    """Map a job outcome onto its history log level."""
    if status == JobState.FAILED:
        return LogLevel.ERROR
    if status in (JobState.CANCELED, JobState.CANCELLING):
        return LogLevel.WARN
    return LogLevel.INFO


class ProgressSnapshot(BaseModel):
    """Point-in-time view of a JobProgressTracker."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    ratio: float = 0.0  # Always within [0, 1]
    output_time_ms: float = 0.0
    total_time_ms: Optional[float] = None
    estimated_total_time_ms: Optional[float] = None


class JobSnapshot(BaseModel):
    """Read-only projection of a queued or running job."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    job_id: str
    name: str
    status: JobState
    progress: ProgressSnapshot
    metadata: Optional[Dict[str, Any]] = None


class JobHistoryEntry(BaseModel):
    """
    Terminal record of a job.

    Exactly one entry exists per job, written when it reaches a
    terminal state.
    """

    model_config = ConfigDict(extra="forbid")

    job_id: str
    name: str
    status: JobState
    output_path: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None  # None when the job never left the queue
    finished_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    log_level: LogLevel = LogLevel.INFO
    message: Optional[str] = None


class QueueLimits(BaseModel):
    """Effective limits of a JobQueue."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_parallel_jobs: int
    max_queue_length: int
    queue_timeout_ms: int


class QueueFullEvent(BaseModel):
    """
    Most recent admission rejection.

    Retained only while the waiting queue stays at or over capacity.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    occurred_at: datetime
    queued_jobs: int


class CancelAllSummary(BaseModel):
    """What a cancel_all() call touched."""

    model_config = ConfigDict(extra="forbid")

    running_job_id: Optional[str] = None  # First running job signalled
    running_job_ids: List[str] = Field(default_factory=list)
    queued_job_ids: List[str] = Field(default_factory=list)


class JobRunResult(BaseModel):
    """
    Value returned by a job body.

    Bodies may also return a plain dict with the same keys (snake_case or
    camelCase), or None. Unknown keys are kept and reach generate_preview.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        arbitrary_types_allowed=True,
    )

    output_path: Optional[str] = None
    total_time_ms: Optional[float] = None
    output_time_ms: Optional[float] = None
    result: Any = None  # Opaque payload passed through to generate_preview

    @classmethod
    def coerce(cls, value: Any) -> "JobRunResult":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls.model_validate(value)
        raise TypeError(
            f"Job body must return JobRunResult, dict or None, got {type(value).__name__}"
        )


class JobEventType(str, Enum):
    """Notifications published to queue subscribers."""

    QUEUED = "job:queued"
    STARTED = "job:started"
    STATUS = "job:status"
    FINISHED = "job:finished"


class JobEvent(BaseModel):
    """A single status-change notification."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: JobEventType
    snapshot: JobSnapshot
