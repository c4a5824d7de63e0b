"""
Compiled FFmpeg plan models.

An FFmpegPlan is the only artifact handed to the (external) command
builder. This package promises its shape, not how it becomes a
subprocess invocation.

Stages are ordered: one input stage, zero or more filter stages, one
output stage.
"""

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import PlanError
from .nodes import LoadKind, Vsync


class _StageBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type_id: str
    node_version: str


class InputStage(_StageBase):
    stage: Literal["input"] = "input"
    type_id: LoadKind
    args: List[str] = Field(default_factory=list)  # Input-side options (seek)
    path: str  # Absolute source path


class FilterStage(_StageBase):
    stage: Literal["filter"] = "filter"
    params: Dict[str, Any] = Field(default_factory=dict)


class OutputStage(_StageBase):
    stage: Literal["output"] = "output"
    type_id: Literal["export"] = "export"
    args: List[str] = Field(default_factory=list)  # Output-side options (duration guard)
    pixel_format: str
    interpolation: Literal["bicubic"] = "bicubic"
    container: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None


BuilderStage = Annotated[
    Union[InputStage, FilterStage, OutputStage],
    Field(discriminator="stage"),
]


class PreviewFilter(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["colorspace", "scale", "setsar"]
    params: Dict[str, Any] = Field(default_factory=dict)


class PreviewParams(BaseModel):
    """Live-preview decode parameters. Independent of the main stage list."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    width: int
    height: int
    max_fps: float
    filters: List[PreviewFilter] = Field(default_factory=list)


class PlanMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    estimated_duration_ms: Optional[float] = None  # None when source duration is unknown
    strict_cut: bool = False
    vsync: Vsync = "cfr"
    sar_normalized: bool = True


class FFmpegPlan(BaseModel):
    """Ordered stages + preview parameters + duration/flags metadata."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    stages: List[BuilderStage]
    preview: PreviewParams
    metadata: PlanMetadata

    @property
    def input_stage(self) -> InputStage:
        stage = self.stages[0] if self.stages else None
        if not isinstance(stage, InputStage):
            raise PlanError("FFmpegPlan must start with an input stage")
        return stage

    @property
    def output_stage(self) -> OutputStage:
        stage = self.stages[-1] if self.stages else None
        if not isinstance(stage, OutputStage):
            raise PlanError("FFmpegPlan must end with an output stage")
        return stage

    @property
    def filter_stages(self) -> List[FilterStage]:
        return [stage for stage in self.stages if isinstance(stage, FilterStage)]

    def find_stages(self, type_id: str) -> List[FilterStage]:
        """All filter stages of a kind, in plan order."""
        return [stage for stage in self.filter_stages if stage.type_id == type_id]

    def find_stage(self, type_id: str) -> Optional[FilterStage]:
        """First filter stage of a kind, or None."""
        matches = self.find_stages(type_id)
        return matches[0] if matches else None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self, indent: int = 2) -> str:
        """Serialize with stable key ordering."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=False)
