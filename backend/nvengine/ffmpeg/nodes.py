"""
Editing-graph node models.

A MediaChain is the ordered list of nodes the editor produced:
load -> trim -> crop/resize -> overlay/text -> speed/fps -> export.

Nodes are immutable. Field names are snake_case in Python; the editor's
camelCase keys (typeId, durationMs, sourcePath, ...) are accepted as
aliases when parsing raw dictionaries.
"""

from typing import Annotated, Any, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Tag
from pydantic.alias_generators import to_camel

DEFAULT_NODE_VERSION = "1.0.0"

LoadKind = Literal["loadMedia", "loadImage", "loadVideo"]
LOAD_KINDS: FrozenSet[str] = frozenset({"loadMedia", "loadImage", "loadVideo"})
ResizeMode = Literal["contain", "cover", "stretch"]
Vsync = Literal["cfr", "vfr"]

# Crop sizes and offsets may be pixels or FFmpeg expressions ("iw*0.5")
Dimension = Union[int, float, str]


class _NodeBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",  # Editor-only fields (position, ui state) are dropped
        frozen=True,
    )

    id: Optional[str] = None
    node_version: str = DEFAULT_NODE_VERSION


class LoadMediaNode(_NodeBase):
    """Source media. Exactly one per chain."""

    type_id: LoadKind = "loadMedia"
    path: str
    duration_ms: Optional[float] = None
    fps: Optional[float] = None


class TrimRegion(BaseModel):
    """
    Spatial region carried by a trim node.

    Values <= 1 are fractions of the input frame; larger values are pixels.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    x: Optional[Union[int, float]] = None
    y: Optional[Union[int, float]] = None
    width: Optional[Union[int, float]] = None
    height: Optional[Union[int, float]] = None


class TrimNode(_NodeBase):
    """Time window (and optional crop region). Last trim node wins."""

    type_id: Literal["trim"] = "trim"
    # Non-numeric or negative bounds are treated as unset at compile time
    start_ms: Any = None
    end_ms: Any = None
    strict_cut: bool = False
    region: Optional[TrimRegion] = None


class ResizeNode(_NodeBase):
    type_id: Literal["resize"] = "resize"
    width: int
    height: int
    mode: Optional[ResizeMode] = None


class CropNode(_NodeBase):
    type_id: Literal["crop"] = "crop"
    width: Dimension
    height: Dimension
    x: Optional[Dimension] = None
    y: Optional[Dimension] = None


class OverlayNode(_NodeBase):
    """Image overlay. Every overlay node becomes its own stage."""

    type_id: Literal["overlay"] = "overlay"
    source_path: str
    x: Optional[Dimension] = None
    y: Optional[Dimension] = None
    opacity: Any = None  # Clamped to [0, 1] at compile time; non-numeric means 1


class TextNode(_NodeBase):
    type_id: Literal["text"] = "text"
    text: str
    font_size: Optional[int] = None
    color: Optional[str] = None
    x: Optional[str] = None
    y: Optional[str] = None


class SpeedNode(_NodeBase):
    """Playback speed multiplier. Ratios <= 0 are ignored."""

    type_id: Literal["speed"] = "speed"
    ratio: Any = None  # Only positive finite numbers count; anything else is a no-op


class ChangeFpsNode(_NodeBase):
    type_id: Literal["changeFps"] = "changeFps"
    fps: float
    vsync: Optional[Vsync] = None


class ExportNode(_NodeBase):
    """Output settings. Last export node wins."""

    type_id: Literal["export"] = "export"
    container: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    pixel_format: Optional[str] = None


def _node_tag(value: Any) -> Optional[str]:
    """Discriminator for raw dicts (camelCase or snake_case) and node instances."""
    if isinstance(value, dict):
        kind = value.get("typeId", value.get("type_id"))
    else:
        kind = getattr(value, "type_id", None)
    if kind in LOAD_KINDS:
        return "load"
    return kind if isinstance(kind, str) else None


MediaNode = Annotated[
    Union[
        Annotated[LoadMediaNode, Tag("load")],
        Annotated[TrimNode, Tag("trim")],
        Annotated[ResizeNode, Tag("resize")],
        Annotated[CropNode, Tag("crop")],
        Annotated[OverlayNode, Tag("overlay")],
        Annotated[TextNode, Tag("text")],
        Annotated[SpeedNode, Tag("speed")],
        Annotated[ChangeFpsNode, Tag("changeFps")],
        Annotated[ExportNode, Tag("export")],
    ],
    Discriminator(_node_tag),
]


class MediaChain(BaseModel):
    """Ordered editing graph, flattened to a list."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    nodes: List[MediaNode]
