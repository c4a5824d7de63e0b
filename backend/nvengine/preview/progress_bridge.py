"""
Preview / encoder progress reconciliation.

Two independent signals describe how far a render has got:
- encoder time (continuous, from the transcoder's progress stream)
- preview frame index (discrete, from the live preview)

Both feed one JobProgressTracker. A preview frame only moves the tracker
when it disagrees with the tracker by more than the tolerance, so the
two sources never fight over the value.
"""

import math
from typing import Optional

from ..jobs.models import ProgressSnapshot
from ..jobs.progress import JobProgressTracker

DEFAULT_TOLERANCE_FRAMES = 1


def _validate_fps(fps: float) -> float:
    if isinstance(fps, bool) or not isinstance(fps, (int, float)):
        raise ValueError("PreviewProgressBridge requires fps > 0")
    if not math.isfinite(fps) or fps <= 0:
        raise ValueError("PreviewProgressBridge requires fps > 0")
    return float(fps)


def _validate_frame_index(index: int) -> int:
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise ValueError("frame_index must be a non-negative integer")
    return index


class PreviewProgressBridge:
    """
    Map preview frames and encoder time onto one progress tracker.

    Args:
        progress: Tracker to drive (usually JobRunContext.progress)
        fps: Preview frame rate, must be > 0
        tolerance_frames: Allowed drift in frames before a preview frame
                          overrides the tracker
        estimated_total_frames: When positive, sets the tracker's total
                                time to frames / fps
    """

    def __init__(
        self,
        progress: JobProgressTracker,
        fps: float,
        tolerance_frames: Optional[float] = DEFAULT_TOLERANCE_FRAMES,
        estimated_total_frames: Optional[int] = None,
    ):
        self._progress = progress
        self._frame_duration_ms = 1000.0 / _validate_fps(fps)
        if tolerance_frames is None:
            tolerance_frames = DEFAULT_TOLERANCE_FRAMES
        self._tolerance_ms = max(0.0, tolerance_frames) * self._frame_duration_ms
        self._last_preview_time_ms = 0.0
        self._last_encoder_time_ms = 0.0

        if estimated_total_frames and estimated_total_frames > 0:
            self._progress.set_total_time(estimated_total_frames * self._frame_duration_ms)

    @property
    def frame_duration_ms(self) -> float:
        return self._frame_duration_ms

    @property
    def tolerance_ms(self) -> float:
        return self._tolerance_ms

    def record_encoder_time(self, output_time_ms: float) -> ProgressSnapshot:
        self._last_encoder_time_ms = max(0.0, output_time_ms)
        return self._progress.update_output_time(self._last_encoder_time_ms)

    def record_preview_frame(self, frame_index: int) -> ProgressSnapshot:
        """
        Record that preview frame `frame_index` (0-based) was shown.

        Raises:
            ValueError: If frame_index is not a non-negative integer
        """
        index = _validate_frame_index(frame_index)
        self._last_preview_time_ms = (index + 1) * self._frame_duration_ms

        snapshot = self._progress.snapshot()
        drift = abs(self._last_preview_time_ms - snapshot.output_time_ms)
        if drift > self._tolerance_ms:
            return self._progress.update_output_time(self._last_preview_time_ms)
        return snapshot

    def is_in_sync(self) -> bool:
        snapshot = self._progress.snapshot()
        reference = max(self._last_preview_time_ms, self._last_encoder_time_ms)
        return abs(reference - snapshot.output_time_ms) <= self._tolerance_ms
