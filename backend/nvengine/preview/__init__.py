"""Live-preview helpers that feed job progress."""

from .progress_bridge import PreviewProgressBridge, DEFAULT_TOLERANCE_FRAMES

__all__ = [
    "PreviewProgressBridge",
    "DEFAULT_TOLERANCE_FRAMES",
]
