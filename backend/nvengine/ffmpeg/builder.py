"""
FFmpeg plan compiler.

Turns a MediaChain into an ordered list of FFmpeg stages:

    input -> [strict trim] -> [crop] -> [resize] -> overlay* -> text*
          -> [speed] -> [changeFps] -> setsar -> output

Design rules:
- Pure function of its input: no hidden state, no I/O, no clock
- Same chain + options -> identical plan, every time
- Single-value nodes (trim, crop, resize, changeFps, export) are last-wins
- Overlay and text nodes are all kept, in chain order
- Speed ratios compound; a compound ratio of exactly 1 emits no stage
"""

import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union, assert_never

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from .errors import PlanValidationError
from .nodes import (
    DEFAULT_NODE_VERSION,
    ChangeFpsNode,
    CropNode,
    ExportNode,
    LoadMediaNode,
    MediaChain,
    MediaNode,
    OverlayNode,
    ResizeNode,
    SpeedNode,
    TextNode,
    TrimNode,
)
from .plan import (
    BuilderStage,
    FFmpegPlan,
    FilterStage,
    InputStage,
    OutputStage,
    PlanMetadata,
    PreviewFilter,
    PreviewParams,
)

logger = logging.getLogger(__name__)


DEFAULT_PREVIEW_WIDTH = 1280
DEFAULT_PREVIEW_HEIGHT = 720
DEFAULT_PREVIEW_FPS = 30

DEFAULT_RESIZE_MODE = "contain"
DEFAULT_INTERPOLATION = "bicubic"
DEFAULT_VSYNC = "cfr"

DEFAULT_TEXT_FONT_SIZE = 48
DEFAULT_TEXT_COLOR = "#ffffff"
DEFAULT_TEXT_X = "(w-text_w)/2"
DEFAULT_TEXT_Y = "(h-text_h)/2"

VIDEO_PIXEL_FORMAT = "yuv420p"
IMAGE_PIXEL_FORMAT = "rgb24"
IMAGE_CONTAINERS = frozenset({"png", "jpg", "jpeg", "webp", "gif"})

# Backslash and colon are separators inside FFmpeg filter arguments
_FILTER_SPECIAL = re.compile(r"[\\:]")

_NODE_LIST = TypeAdapter(List[MediaNode])


class PreviewOverrides(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    width: Optional[int] = None
    height: Optional[int] = None
    max_fps: Optional[float] = None


class BuildPlanOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    preview: Optional[PreviewOverrides] = None


ChainInput = Union[MediaChain, Sequence[Any], Dict[str, Any], None]


# ============================================================================
# Chain parsing
# ============================================================================

@dataclass
class _ChainParts:
    """Nodes grouped by kind, each list in chain order."""

    loads: List[LoadMediaNode] = field(default_factory=list)
    trims: List[TrimNode] = field(default_factory=list)
    resizes: List[ResizeNode] = field(default_factory=list)
    crops: List[CropNode] = field(default_factory=list)
    overlays: List[OverlayNode] = field(default_factory=list)
    texts: List[TextNode] = field(default_factory=list)
    speeds: List[SpeedNode] = field(default_factory=list)
    fps_changes: List[ChangeFpsNode] = field(default_factory=list)
    exports: List[ExportNode] = field(default_factory=list)


@dataclass(frozen=True)
class _TrimWindow:
    start_ms: Optional[float] = None
    end_ms: Optional[float] = None
    strict: bool = False


def _coerce_nodes(chain: ChainInput) -> List[MediaNode]:
    if chain is None:
        raise PlanValidationError("A media chain with nodes is required")

    if isinstance(chain, MediaChain):
        return list(chain.nodes)

    if isinstance(chain, dict):
        raw_nodes = chain.get("nodes")
    elif isinstance(chain, (list, tuple)):
        raw_nodes = chain
    else:
        raise PlanValidationError(
            f"A media chain with nodes is required, got {type(chain).__name__}"
        )

    if not isinstance(raw_nodes, (list, tuple)):
        raise PlanValidationError("A media chain with nodes is required")

    try:
        return _NODE_LIST.validate_python(list(raw_nodes))
    except ValidationError as e:
        raise PlanValidationError(f"Malformed media chain: {e}") from e


def _partition(nodes: Sequence[MediaNode]) -> _ChainParts:
    parts = _ChainParts()
    for node in nodes:
        if isinstance(node, LoadMediaNode):
            parts.loads.append(node)
        elif isinstance(node, TrimNode):
            parts.trims.append(node)
        elif isinstance(node, ResizeNode):
            parts.resizes.append(node)
        elif isinstance(node, CropNode):
            parts.crops.append(node)
        elif isinstance(node, OverlayNode):
            parts.overlays.append(node)
        elif isinstance(node, TextNode):
            parts.texts.append(node)
        elif isinstance(node, SpeedNode):
            parts.speeds.append(node)
        elif isinstance(node, ChangeFpsNode):
            parts.fps_changes.append(node)
        elif isinstance(node, ExportNode):
            parts.exports.append(node)
        else:
            assert_never(node)
    return parts


# ============================================================================
# Value helpers
# ============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _non_negative_or_none(value: Any) -> Optional[float]:
    if not _is_number(value) or not math.isfinite(value) or value < 0:
        return None
    return value


def _seconds(milliseconds: float) -> str:
    return f"{milliseconds / 1000:.3f}"


def _clamp_opacity(value: Any) -> float:
    if not _is_number(value) or math.isnan(value):
        return 1.0
    return float(min(1.0, max(0.0, value)))


def escape_filter_value(value: str) -> str:
    """Prefix every backslash and colon with a backslash."""
    return _FILTER_SPECIAL.sub(lambda match: "\\" + match.group(0), value)


def _region_expr(value: Any, axis: str, missing: Union[int, str]) -> Union[int, float, str]:
    """Fractions (<= 1) become iw/ih expressions; larger values are pixels."""
    if not _is_number(value) or math.isnan(value):
        return missing
    if value > 1:
        return value
    return f"{axis}*{value}"


# ============================================================================
# Resolution rules
# ============================================================================

def _resolve_trim(trims: List[TrimNode]) -> _TrimWindow:
    if not trims:
        return _TrimWindow()
    last = trims[-1]
    return _TrimWindow(
        start_ms=_non_negative_or_none(last.start_ms),
        end_ms=_non_negative_or_none(last.end_ms),
        strict=any(trim.strict_cut for trim in trims),
    )


def _compound_speed(speeds: List[SpeedNode]) -> float:
    ratio = 1.0
    for node in speeds:
        if _is_number(node.ratio) and node.ratio > 0 and math.isfinite(node.ratio):
            ratio *= node.ratio
    return ratio


def _window_length_ms(window: _TrimWindow) -> Optional[float]:
    if window.end_ms is None:
        return None
    return max(0.0, window.end_ms - (window.start_ms or 0.0))


def _input_args(window: _TrimWindow) -> List[str]:
    if window.strict or window.start_ms is None:
        return []
    args = ["-ss", _seconds(window.start_ms)]
    length = _window_length_ms(window)
    if length is not None:
        args.extend(["-t", _seconds(length)])
    return args


def _output_args(window: _TrimWindow, speed_ratio: float) -> List[str]:
    # Duration guard independent of input seeking
    if window.strict or window.start_ms is None or window.end_ms is None:
        return []
    length = _window_length_ms(window)
    return ["-t", _seconds(length / speed_ratio)]


def _strict_trim_stage(window: _TrimWindow, node_version: str) -> Optional[FilterStage]:
    if not window.strict or (window.start_ms is None and window.end_ms is None):
        return None

    start_ms = window.start_ms or 0.0
    params: Dict[str, Any] = {
        "mode": "strict-range" if window.end_ms is not None else "strict-start",
        "start_ms": start_ms,
        "start": _seconds(start_ms),
    }
    if window.end_ms is not None:
        params["end_ms"] = window.end_ms
        params["end"] = _seconds(window.end_ms)
    params["setpts"] = "PTS-STARTPTS"

    return FilterStage(type_id="trim", node_version=node_version, params=params)


def _crop_stage(crops: List[CropNode], trims: List[TrimNode]) -> Optional[FilterStage]:
    if crops:
        crop = crops[-1]
        return FilterStage(
            type_id="crop",
            node_version=crop.node_version,
            params={
                "width": crop.width,
                "height": crop.height,
                "x": crop.x if crop.x is not None else 0,
                "y": crop.y if crop.y is not None else 0,
            },
        )

    # Fall back to the spatial region of the last trim node
    if trims and trims[-1].region is not None:
        trim = trims[-1]
        region = trim.region
        return FilterStage(
            type_id="crop",
            node_version=trim.node_version,
            params={
                "width": _region_expr(region.width, "iw", "iw"),
                "height": _region_expr(region.height, "ih", "ih"),
                "x": _region_expr(region.x, "iw", 0),
                "y": _region_expr(region.y, "ih", 0),
            },
        )

    return None


def _resize_stage(resize: Optional[ResizeNode]) -> Optional[FilterStage]:
    if resize is None:
        return None
    return FilterStage(
        type_id="resize",
        node_version=resize.node_version,
        params={
            "width": resize.width,
            "height": resize.height,
            "mode": resize.mode or DEFAULT_RESIZE_MODE,
            "interpolation": DEFAULT_INTERPOLATION,
        },
    )


def _overlay_stages(overlays: List[OverlayNode]) -> List[FilterStage]:
    stages = []
    for index, overlay in enumerate(overlays):
        source_path = os.path.abspath(overlay.source_path)
        stages.append(FilterStage(
            type_id="overlay",
            node_version=overlay.node_version,
            params={
                "source_path": source_path,
                "escaped_source": escape_filter_value(source_path),
                "label": f"ovl{index}",
                "x": overlay.x if overlay.x is not None else 0,
                "y": overlay.y if overlay.y is not None else 0,
                "opacity": _clamp_opacity(overlay.opacity),
            },
        ))
    return stages


def _text_stages(texts: List[TextNode]) -> List[FilterStage]:
    return [
        FilterStage(
            type_id="text",
            node_version=text.node_version,
            params={
                "text": text.text,
                "escaped_text": escape_filter_value(text.text),
                "font_size": text.font_size if text.font_size is not None else DEFAULT_TEXT_FONT_SIZE,
                "color": text.color or DEFAULT_TEXT_COLOR,
                "x": text.x or DEFAULT_TEXT_X,
                "y": text.y or DEFAULT_TEXT_Y,
            },
        )
        for text in texts
    ]


def _output_stage(export: ExportNode, args: List[str]) -> OutputStage:
    container = (export.container or "").lower()
    default_pixel_format = IMAGE_PIXEL_FORMAT if container in IMAGE_CONTAINERS else VIDEO_PIXEL_FORMAT
    return OutputStage(
        node_version=export.node_version,
        args=args,
        pixel_format=export.pixel_format or default_pixel_format,
        container=export.container,
        video_codec=export.video_codec,
        audio_codec=export.audio_codec,
    )


def _estimate_duration_ms(
    load: LoadMediaNode,
    window: _TrimWindow,
    speed_ratio: float,
) -> Optional[float]:
    """
    Expected output duration.

    Order matters: subtract the trim start, then clamp to the trim
    window, then apply the compound speed ratio.
    """
    if not _is_number(load.duration_ms) or not math.isfinite(load.duration_ms):
        return None

    duration = float(load.duration_ms)
    if window.start_ms is not None and window.start_ms > 0:
        duration -= window.start_ms

    length = _window_length_ms(window)
    if length is not None:
        duration = min(duration, length)

    return max(0.0, duration) / speed_ratio


def _preview_params(
    options: BuildPlanOptions,
    load: LoadMediaNode,
    resize: Optional[ResizeNode],
    fps_node: Optional[ChangeFpsNode],
) -> PreviewParams:
    overrides = options.preview or PreviewOverrides()

    if overrides.width is not None:
        width = overrides.width
    else:
        width = resize.width if resize is not None else DEFAULT_PREVIEW_WIDTH
    if overrides.height is not None:
        height = overrides.height
    else:
        height = resize.height if resize is not None else DEFAULT_PREVIEW_HEIGHT

    if overrides.max_fps is not None:
        max_fps = overrides.max_fps
    elif fps_node is not None:
        max_fps = fps_node.fps
    elif load.fps is not None:
        max_fps = load.fps
    else:
        max_fps = DEFAULT_PREVIEW_FPS

    return PreviewParams(
        width=width,
        height=height,
        max_fps=max_fps,
        filters=[
            PreviewFilter(type="colorspace", params={"profile": "srgb", "format": "rgba"}),
            PreviewFilter(
                type="scale",
                params={"width": width, "height": height, "interpolation": "bilinear"},
            ),
            PreviewFilter(type="setsar", params={"value": 1}),
        ],
    )


# ============================================================================
# Entry point
# ============================================================================

def build_ffmpeg_plan(
    chain: ChainInput,
    options: Optional[Union[BuildPlanOptions, Dict[str, Any]]] = None,
) -> FFmpegPlan:
    """
    Compile a media chain into an FFmpegPlan.

    Args:
        chain: MediaChain, a list of nodes, or raw editor dictionaries
               ({"nodes": [...]} or a bare list)
        options: Optional preview overrides

    Returns:
        FFmpegPlan with stages, preview parameters and metadata

    Raises:
        PlanValidationError: Missing/malformed chain, no (or several)
                             load nodes, or no export node
    """
    nodes = _coerce_nodes(chain)
    if options is None:
        options = BuildPlanOptions()
    elif isinstance(options, dict):
        try:
            options = BuildPlanOptions.model_validate(options)
        except ValidationError as e:
            raise PlanValidationError(f"Invalid plan options: {e}") from e

    parts = _partition(nodes)

    if not parts.loads:
        raise PlanValidationError(
            "A loadMedia, loadImage or loadVideo node is required to build an FFmpeg plan"
        )
    if len(parts.loads) > 1:
        raise PlanValidationError(
            f"Exactly one load node is allowed, found {len(parts.loads)}"
        )
    if not parts.exports:
        raise PlanValidationError("An export node is required to finish the FFmpeg plan")

    load = parts.loads[0]
    export = parts.exports[-1]
    resize = parts.resizes[-1] if parts.resizes else None
    fps_node = parts.fps_changes[-1] if parts.fps_changes else None
    window = _resolve_trim(parts.trims)
    speed_ratio = _compound_speed(parts.speeds)

    stages: List[BuilderStage] = [
        InputStage(
            type_id=load.type_id,
            node_version=load.node_version,
            args=_input_args(window),
            path=os.path.abspath(load.path),
        )
    ]

    strict_trim = _strict_trim_stage(window, parts.trims[-1].node_version if parts.trims else DEFAULT_NODE_VERSION)
    if strict_trim is not None:
        stages.append(strict_trim)

    crop = _crop_stage(parts.crops, parts.trims)
    if crop is not None:
        stages.append(crop)

    resize_stage = _resize_stage(resize)
    if resize_stage is not None:
        stages.append(resize_stage)

    stages.extend(_overlay_stages(parts.overlays))
    stages.extend(_text_stages(parts.texts))

    if speed_ratio != 1:
        stages.append(FilterStage(
            type_id="speed",
            node_version=DEFAULT_NODE_VERSION,
            params={"ratio": speed_ratio, "setpts": f"PTS/{speed_ratio}"},
        ))

    if fps_node is not None:
        stages.append(FilterStage(
            type_id="changeFps",
            node_version=fps_node.node_version,
            params={"fps": fps_node.fps, "vsync": fps_node.vsync or DEFAULT_VSYNC},
        ))

    stages.append(FilterStage(
        type_id="setsar",
        node_version=DEFAULT_NODE_VERSION,
        params={"value": 1},
    ))

    stages.append(_output_stage(export, _output_args(window, speed_ratio)))

    plan = FFmpegPlan(
        stages=stages,
        preview=_preview_params(options, load, resize, fps_node),
        metadata=PlanMetadata(
            estimated_duration_ms=_estimate_duration_ms(load, window, speed_ratio),
            strict_cut=window.strict,
            vsync=fps_node.vsync if fps_node and fps_node.vsync else DEFAULT_VSYNC,
            sar_normalized=True,
        ),
    )

    logger.debug(
        f"[FFmpegPlan] {len(stages)} stages from {len(nodes)} nodes "
        f"(strict_cut={window.strict}, speed={speed_ratio})"
    )
    return plan


# Short alias used by job bodies
compile_plan = build_ffmpeg_plan
