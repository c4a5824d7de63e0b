"""
Job-queue error types.

All errors inherit from JobError for easy catching.

Only QueueFullError ever reaches an enqueue() caller. Everything raised
from inside a job body is captured by the queue and turned into a
terminal history entry.
"""

from typing import Optional


class JobError(Exception):
    """Base exception for all job-related failures."""
    pass


class QueueFullError(JobError):
    """
    Admission rejected: the waiting queue is at capacity.

    Recoverable. The caller may retry once queued jobs drain.
    """

    def __init__(self, max_queue_length: int):
        self.max_queue_length = max_queue_length
        super().__init__(f"Job queue is full (max {max_queue_length} queued jobs)")


class JobCancelledError(JobError):
    """
    Cooperative cancellation.

    Raised by a job body (usually via CancellationToken.raise_if_cancelled)
    when it observes that it has been asked to stop.
    """

    def __init__(self, message: str = "Job cancelled", reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


def is_job_cancelled_error(error: BaseException) -> bool:
    """Check whether an exception represents cooperative cancellation."""
    return isinstance(error, JobCancelledError)
