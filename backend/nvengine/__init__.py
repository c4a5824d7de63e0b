"""
NodeVision engine core.

Two pieces live here:
- A single-process job queue that admits, runs, cancels and records
  asynchronous transcoding jobs (nvengine.jobs).
- A deterministic compiler that turns an editing node chain into an
  ordered list of FFmpeg stages (nvengine.ffmpeg).

Spawning FFmpeg and parsing its progress stream is NOT done here.
"""

from .config import QueueSettings, ConfigError
from .jobs import (
    JobQueue,
    JobSpec,
    JobState,
    JobProgressTracker,
    CancellationToken,
    QueueFullError,
    JobCancelledError,
)
from .preview import PreviewProgressBridge
from .ffmpeg import build_ffmpeg_plan, compile_plan, PlanValidationError

__version__ = "0.1.0"

__all__ = [
    "QueueSettings",
    "ConfigError",
    "JobQueue",
    "JobSpec",
    "JobState",
    "JobProgressTracker",
    "CancellationToken",
    "QueueFullError",
    "JobCancelledError",
    "PreviewProgressBridge",
    "build_ffmpeg_plan",
    "compile_plan",
    "PlanValidationError",
]
