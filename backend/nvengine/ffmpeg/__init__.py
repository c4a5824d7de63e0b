"""
FFmpeg plan compilation.

Compiles an editing node chain into ordered FFmpeg stages. Executing the
plan (spawning ffmpeg, parsing its progress) is NOT done here.
"""

from .errors import PlanError, PlanValidationError
from .nodes import (
    MediaChain,
    MediaNode,
    LoadMediaNode,
    TrimNode,
    TrimRegion,
    ResizeNode,
    CropNode,
    OverlayNode,
    TextNode,
    SpeedNode,
    ChangeFpsNode,
    ExportNode,
)
from .plan import (
    FFmpegPlan,
    BuilderStage,
    InputStage,
    FilterStage,
    OutputStage,
    PreviewFilter,
    PreviewParams,
    PlanMetadata,
)
from .builder import (
    BuildPlanOptions,
    PreviewOverrides,
    build_ffmpeg_plan,
    compile_plan,
    escape_filter_value,
)

__all__ = [
    # Errors
    "PlanError",
    "PlanValidationError",
    # Nodes
    "MediaChain",
    "MediaNode",
    "LoadMediaNode",
    "TrimNode",
    "TrimRegion",
    "ResizeNode",
    "CropNode",
    "OverlayNode",
    "TextNode",
    "SpeedNode",
    "ChangeFpsNode",
    "ExportNode",
    # Plan
    "FFmpegPlan",
    "BuilderStage",
    "InputStage",
    "FilterStage",
    "OutputStage",
    "PreviewFilter",
    "PreviewParams",
    "PlanMetadata",
    # Compiler
    "BuildPlanOptions",
    "PreviewOverrides",
    "build_ffmpeg_plan",
    "compile_plan",
    "escape_filter_value",
]
