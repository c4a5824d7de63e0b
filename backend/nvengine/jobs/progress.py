"""
Per-job progress model.

Progress is a ratio of encoded output time to total duration:
- total_time_ms is the actual duration, once known
- estimated_total_time_ms is a forecast used until then

An actual total always wins. Once set, later estimates are ignored for
the rest of the job.
"""

import math
from typing import Optional

from .models import ProgressSnapshot


def _clamp_non_negative(value: float) -> float:
    """Finite positive values pass; everything else becomes 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if not math.isfinite(value) or value <= 0:
        return 0.0
    return float(value)


class JobProgressTracker:
    """
    Progress ratio driven by elapsed vs total (or estimated) time.

    Usage:
        tracker = JobProgressTracker(estimated_total_time_ms=10_000)
        tracker.update_output_time(2_500)
        tracker.snapshot().ratio  # 0.25
    """

    def __init__(self, estimated_total_time_ms: Optional[float] = None):
        self._output_time_ms = 0.0
        self._total_time_ms: Optional[float] = None
        self._estimated_total_time_ms: Optional[float] = (
            None if estimated_total_time_ms is None
            else _clamp_non_negative(estimated_total_time_ms)
        )
        self._total_locked = False

    @property
    def output_time_ms(self) -> float:
        return self._output_time_ms

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            ratio=self._compute_ratio(),
            output_time_ms=self._output_time_ms,
            total_time_ms=self._total_time_ms,
            estimated_total_time_ms=self._estimated_total_time_ms,
        )

    def update_output_time(self, milliseconds: float) -> ProgressSnapshot:
        self._output_time_ms = _clamp_non_negative(milliseconds)
        return self.snapshot()

    def set_total_time(self, milliseconds: Optional[float]) -> ProgressSnapshot:
        """
        Record the actual total duration.

        A non-null total discards the estimate and blocks any further
        set_estimated_total_time() calls, even if the total is later
        cleared with None.
        """
        if milliseconds is None:
            self._total_time_ms = None
            return self.snapshot()

        self._total_time_ms = _clamp_non_negative(milliseconds)
        self._estimated_total_time_ms = None
        self._total_locked = True
        return self.snapshot()

    def set_estimated_total_time(self, milliseconds: Optional[float]) -> ProgressSnapshot:
        if self._total_locked:
            return self.snapshot()
        self._estimated_total_time_ms = (
            None if milliseconds is None else _clamp_non_negative(milliseconds)
        )
        return self.snapshot()

    def _compute_ratio(self) -> float:
        denominator = (
            self._total_time_ms if self._total_time_ms is not None
            else self._estimated_total_time_ms
        )
        if not denominator or denominator <= 0:
            return 0.0
        raw = self._output_time_ms / denominator
        if not math.isfinite(raw):
            return 0.0
        return max(0.0, min(1.0, raw))
