"""
Tests for the FFmpeg plan compiler.

Covers:
1. Stage ordering and last-wins resolution
2. Trim seeking, strict cuts and duration estimates
3. Overlay/text escaping and clamping
4. Preview parameters and overrides
5. Rejection of incomplete chains
"""

import os

import pytest

from nvengine.ffmpeg import (
    ChangeFpsNode,
    CropNode,
    ExportNode,
    FilterStage,
    InputStage,
    LoadMediaNode,
    MediaChain,
    OutputStage,
    OverlayNode,
    PlanError,
    PlanValidationError,
    ResizeNode,
    SpeedNode,
    TextNode,
    TrimNode,
    TrimRegion,
    build_ffmpeg_plan,
    compile_plan,
    escape_filter_value,
)


def stage_types(plan):
    return [stage.type_id for stage in plan.stages]


# =============================================================================
# Trim and duration
# =============================================================================

def test_fast_trim_seeks_on_input_and_guards_output_duration():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4", duration_ms=10_000, fps=30),
        TrimNode(start_ms=1_200, end_ms=4_200),
        ResizeNode(width=1920, height=1080),
        ExportNode(),
    ])

    assert isinstance(plan.input_stage, InputStage)
    assert plan.input_stage.args == ["-ss", "1.200", "-t", "3.000"]
    assert plan.find_stage("trim") is None
    assert plan.find_stage("resize").params["interpolation"] == "bicubic"
    assert plan.output_stage.args == ["-t", "3.000"]
    assert plan.metadata.estimated_duration_ms == 3_000
    assert plan.metadata.strict_cut is False


def test_no_trim_keeps_source_duration():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4", duration_ms=5_000),
        CropNode(width=400, height=300),
        ResizeNode(width=1024, height=576),
        ExportNode(),
    ])

    assert stage_types(plan) == ["loadMedia", "crop", "resize", "setsar", "export"]
    assert plan.input_stage.args == []
    assert plan.output_stage.args == []
    assert plan.find_stage("crop").params == {"width": 400, "height": 300, "x": 0, "y": 0}
    assert plan.metadata.estimated_duration_ms == 5_000


def test_strict_trim_emits_filter_stage_instead_of_seek_args():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4", duration_ms=10_000),
        TrimNode(start_ms=500, end_ms=2_500, strict_cut=True),
        ExportNode(),
    ])

    assert plan.input_stage.args == []
    assert plan.output_stage.args == []
    trim = plan.find_stage("trim")
    assert trim.params == {
        "mode": "strict-range",
        "start_ms": 500,
        "start": "0.500",
        "end_ms": 2_500,
        "end": "2.500",
        "setpts": "PTS-STARTPTS",
    }
    assert plan.metadata.strict_cut is True
    assert plan.metadata.estimated_duration_ms == 2_000


def test_strict_flag_from_any_trim_node_and_window_from_last():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        TrimNode(start_ms=100, strict_cut=True),
        TrimNode(start_ms=3_000),
        ExportNode(),
    ])

    trim = plan.find_stage("trim")
    assert trim.params["mode"] == "strict-start"
    assert trim.params["start"] == "3.000"
    assert "end" not in trim.params
    assert plan.metadata.estimated_duration_ms is None


def test_start_only_trim_seeks_without_duration():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4", duration_ms=8_000),
        TrimNode(start_ms=2_000),
        ExportNode(),
    ])

    assert plan.input_stage.args == ["-ss", "2.000"]
    assert plan.output_stage.args == []
    assert plan.metadata.estimated_duration_ms == 6_000


def test_negative_trim_values_are_ignored():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4", duration_ms=4_000),
        TrimNode(start_ms=-100, end_ms=-5),
        ExportNode(),
    ])

    assert plan.input_stage.args == []
    assert plan.metadata.estimated_duration_ms == 4_000


def test_non_numeric_trim_bounds_are_treated_as_unset():
    plan = build_ffmpeg_plan([
        {"typeId": "loadMedia", "path": "clip.mp4", "durationMs": 10_000},
        {"typeId": "trim", "startMs": "abc", "endMs": 2_000},
        {"typeId": "export"},
    ])

    assert plan.input_stage.args == []
    assert plan.output_stage.args == []
    assert plan.metadata.estimated_duration_ms == 2_000


# =============================================================================
# Crop / resize
# =============================================================================

def test_last_crop_and_resize_win():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        CropNode(width=100, height=100),
        CropNode(width="iw*0.5", height="ih*0.5", x=10, y=20),
        ResizeNode(width=640, height=360),
        ResizeNode(width=1280, height=720, mode="cover"),
        ExportNode(),
    ])

    assert len(plan.find_stages("crop")) == 1
    assert plan.find_stage("crop").params == {"width": "iw*0.5", "height": "ih*0.5", "x": 10, "y": 20}
    resize = plan.find_stage("resize")
    assert resize.params == {"width": 1280, "height": 720, "mode": "cover", "interpolation": "bicubic"}


def test_resize_mode_defaults_to_contain():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        ResizeNode(width=1280, height=720),
        ExportNode(),
    ])
    assert plan.find_stage("resize").params["mode"] == "contain"


def test_trim_region_becomes_crop_when_no_crop_node():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        TrimNode(region=TrimRegion(x=0.25, width=0.5, height=480)),
        ExportNode(),
    ])

    assert plan.find_stage("crop").params == {
        "width": "iw*0.5",
        "height": 480,
        "x": "iw*0.25",
        "y": 0,
    }


def test_crop_node_takes_precedence_over_trim_region():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        TrimNode(region=TrimRegion(width=0.5, height=0.5)),
        CropNode(width=200, height=100),
        ExportNode(),
    ])
    assert plan.find_stage("crop").params["width"] == 200


# =============================================================================
# Overlay / text
# =============================================================================

def test_overlay_opacity_is_clamped():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        OverlayNode(source_path="logo.png", opacity=2),
        OverlayNode(source_path="badge.png", opacity=-0.5),
        OverlayNode(source_path="mark.png", opacity="half"),
        ExportNode(),
    ])

    overlays = plan.find_stages("overlay")
    assert [stage.params["opacity"] for stage in overlays] == [1.0, 0.0, 1.0]
    assert [stage.params["label"] for stage in overlays] == ["ovl0", "ovl1", "ovl2"]


def test_overlay_resolves_absolute_and_escaped_source():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        OverlayNode(source_path="assets/logo:v2.png", x=16),
        ExportNode(),
    ])

    params = plan.find_stage("overlay").params
    expected = os.path.abspath("assets/logo:v2.png")
    assert params["source_path"] == expected
    assert params["escaped_source"] == expected.replace("\\", "\\\\").replace(":", "\\:")
    assert params["x"] == 16
    assert params["y"] == 0


def test_text_defaults_and_escaping():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        TextNode(text="Time: 10\\20"),
        TextNode(text="second", font_size=24, color="#ff0000", x="10", y="20"),
        ExportNode(),
    ])

    first, second = plan.find_stages("text")
    assert first.params["escaped_text"] == "Time\\: 10\\\\20"
    assert first.params["font_size"] == 48
    assert first.params["color"] == "#ffffff"
    assert first.params["x"] == "(w-text_w)/2"
    assert first.params["y"] == "(h-text_h)/2"
    assert second.params["font_size"] == 24
    assert second.params["x"] == "10"


def test_escape_filter_value():
    assert escape_filter_value("C:\\media\\clip.mov") == "C\\:\\\\media\\\\clip.mov"
    assert escape_filter_value("plain") == "plain"


# =============================================================================
# Speed / fps / output
# =============================================================================

def test_speed_ratios_compound_and_invalid_ratios_are_ignored():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4", duration_ms=8_000),
        SpeedNode(ratio=2),
        SpeedNode(ratio=0),
        SpeedNode(ratio=-3),
        SpeedNode(ratio=2),
        ExportNode(),
    ])

    speed = plan.find_stage("speed")
    assert speed.params == {"ratio": 4.0, "setpts": "PTS/4.0"}
    assert plan.metadata.estimated_duration_ms == 2_000


def test_non_numeric_speed_ratios_are_ignored():
    plan = build_ffmpeg_plan({
        "nodes": [
            {"typeId": "loadMedia", "path": "clip.mp4", "durationMs": 6_000},
            {"typeId": "speed", "ratio": "fast"},
            {"typeId": "speed", "ratio": "2"},
            {"typeId": "speed", "ratio": 3},
            {"typeId": "export"},
        ]
    })

    assert plan.find_stage("speed").params["ratio"] == 3
    assert plan.metadata.estimated_duration_ms == 2_000


def test_only_non_numeric_speed_ratios_emit_no_stage():
    plan = build_ffmpeg_plan([
        {"typeId": "loadMedia", "path": "clip.mp4"},
        {"typeId": "speed", "ratio": "2"},
        {"typeId": "speed", "ratio": None},
        {"typeId": "export"},
    ])
    assert plan.find_stage("speed") is None


def test_speed_ratio_of_one_emits_no_stage():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        SpeedNode(ratio=2),
        SpeedNode(ratio=0.5),
        ExportNode(),
    ])
    assert plan.find_stage("speed") is None


def test_speed_divides_output_duration_guard():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        TrimNode(start_ms=0, end_ms=4_000),
        SpeedNode(ratio=2),
        ExportNode(),
    ])
    assert plan.output_stage.args == ["-t", "2.000"]


def test_change_fps_last_wins_and_vsync_defaults():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        ChangeFpsNode(fps=60, vsync="vfr"),
        ChangeFpsNode(fps=24),
        ExportNode(),
    ])

    assert plan.find_stage("changeFps").params == {"fps": 24, "vsync": "cfr"}
    assert plan.metadata.vsync == "cfr"


def test_full_chain_stage_order():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        ExportNode(),
        ChangeFpsNode(fps=25),
        SpeedNode(ratio=1.5),
        TextNode(text="title"),
        OverlayNode(source_path="logo.png"),
        ResizeNode(width=1280, height=720),
        CropNode(width=100, height=100),
        TrimNode(start_ms=0, end_ms=1_000, strict_cut=True),
    ])

    assert stage_types(plan) == [
        "loadMedia", "trim", "crop", "resize", "overlay", "text",
        "speed", "changeFps", "setsar", "export",
    ]
    assert isinstance(plan.stages[-1], OutputStage)
    assert all(isinstance(stage, FilterStage) for stage in plan.stages[1:-1])


def test_output_stage_pixel_format_and_last_export_wins():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4"),
        ExportNode(container="mov", pixel_format="yuv422p10le"),
        ExportNode(container="mp4", video_codec="libx264", audio_codec="aac"),
    ])

    output = plan.output_stage
    assert output.pixel_format == "yuv420p"
    assert output.interpolation == "bicubic"
    assert output.container == "mp4"
    assert output.video_codec == "libx264"
    assert output.audio_codec == "aac"


def test_image_export_defaults_to_rgb24():
    plan = build_ffmpeg_plan([
        LoadMediaNode(type_id="loadImage", path="still.png"),
        ExportNode(container="PNG"),
    ])
    assert plan.input_stage.type_id == "loadImage"
    assert plan.output_stage.pixel_format == "rgb24"


def test_setsar_always_present():
    plan = build_ffmpeg_plan([LoadMediaNode(path="clip.mp4"), ExportNode()])
    assert stage_types(plan) == ["loadMedia", "setsar", "export"]
    assert plan.find_stage("setsar").params == {"value": 1}
    assert plan.metadata.sar_normalized is True
    assert plan.input_stage.path == os.path.abspath("clip.mp4")


def test_node_version_is_carried_onto_stages():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4", node_version="2.1.0"),
        ResizeNode(width=640, height=360, node_version="1.4.0"),
        ExportNode(node_version="3.0.0"),
    ])

    assert plan.input_stage.node_version == "2.1.0"
    assert plan.find_stage("resize").node_version == "1.4.0"
    assert plan.output_stage.node_version == "3.0.0"


# =============================================================================
# Preview
# =============================================================================

def test_preview_defaults():
    plan = build_ffmpeg_plan([LoadMediaNode(path="clip.mp4"), ExportNode()])

    preview = plan.preview
    assert (preview.width, preview.height, preview.max_fps) == (1280, 720, 30)
    assert [f.type for f in preview.filters] == ["colorspace", "scale", "setsar"]
    assert preview.filters[0].params == {"profile": "srgb", "format": "rgba"}
    assert preview.filters[1].params["interpolation"] == "bilinear"


def test_preview_follows_resize_and_fps_nodes():
    plan = build_ffmpeg_plan([
        LoadMediaNode(path="clip.mp4", fps=50),
        ResizeNode(width=960, height=540),
        ChangeFpsNode(fps=24),
        ExportNode(),
    ])
    assert (plan.preview.width, plan.preview.height, plan.preview.max_fps) == (960, 540, 24)


def test_preview_uses_source_fps_when_no_change_fps():
    plan = build_ffmpeg_plan([LoadMediaNode(path="clip.mp4", fps=50), ExportNode()])
    assert plan.preview.max_fps == 50


def test_preview_overrides_win():
    plan = build_ffmpeg_plan(
        [LoadMediaNode(path="clip.mp4", fps=50), ResizeNode(width=960, height=540), ExportNode()],
        {"preview": {"width": 320, "height": 180, "max_fps": 12}},
    )
    assert (plan.preview.width, plan.preview.height, plan.preview.max_fps) == (320, 180, 12)


def test_explicit_zero_overrides_are_not_treated_as_missing():
    plan = build_ffmpeg_plan(
        [LoadMediaNode(path="clip.mp4", fps=0), ExportNode()],
        {"preview": {"width": 0}},
    )
    assert plan.preview.width == 0
    assert plan.preview.height == 720
    assert plan.preview.max_fps == 0


# =============================================================================
# Input handling and validation
# =============================================================================

def test_raw_editor_dictionaries_are_accepted():
    chain = {
        "nodes": [
            {"id": "n1", "typeId": "loadVideo", "path": "clip.mp4", "durationMs": 6_000, "position": {"x": 1}},
            {"id": "n2", "typeId": "trim", "startMs": 1_000, "endMs": 3_000},
            {"id": "n3", "typeId": "overlay", "sourcePath": "logo.png", "opacity": 0.5},
            {"id": "n4", "typeId": "export", "container": "mp4"},
        ]
    }

    plan = build_ffmpeg_plan(chain)

    assert plan.input_stage.type_id == "loadVideo"
    assert plan.input_stage.args == ["-ss", "1.000", "-t", "2.000"]
    assert plan.find_stage("overlay").params["opacity"] == 0.5
    assert plan.metadata.estimated_duration_ms == 2_000


def test_media_chain_model_is_accepted():
    chain = MediaChain(nodes=[LoadMediaNode(path="clip.mp4"), ExportNode()])
    assert stage_types(compile_plan(chain)) == ["loadMedia", "setsar", "export"]


def test_empty_chain_is_rejected():
    with pytest.raises(PlanValidationError, match="load"):
        build_ffmpeg_plan([])


def test_chain_without_export_is_rejected():
    with pytest.raises(PlanValidationError, match="export"):
        build_ffmpeg_plan([LoadMediaNode(path="clip.mp4")])


def test_missing_chain_is_rejected():
    with pytest.raises(PlanValidationError):
        build_ffmpeg_plan(None)
    with pytest.raises(PlanValidationError):
        build_ffmpeg_plan({"nodes": "not-a-list"})


def test_multiple_load_nodes_are_rejected():
    with pytest.raises(PlanValidationError, match="Exactly one load node"):
        build_ffmpeg_plan([LoadMediaNode(path="a.mp4"), LoadMediaNode(path="b.mp4"), ExportNode()])


def test_unknown_node_type_is_rejected():
    with pytest.raises(PlanValidationError, match="Malformed"):
        build_ffmpeg_plan([{"typeId": "blur"}, {"typeId": "export"}])


def test_plan_validation_error_is_a_value_error():
    with pytest.raises(ValueError):
        build_ffmpeg_plan([])


def test_plan_without_input_or_output_stage_raises():
    plan = build_ffmpeg_plan([LoadMediaNode(path="clip.mp4"), ExportNode()])
    broken = plan.model_copy(update={"stages": plan.filter_stages})

    with pytest.raises(PlanError, match="input stage"):
        broken.input_stage
    with pytest.raises(PlanError, match="output stage"):
        broken.output_stage


def test_compilation_is_deterministic():
    chain = [
        LoadMediaNode(path="clip.mp4", duration_ms=9_000, fps=25),
        TrimNode(start_ms=1_000, end_ms=5_000),
        OverlayNode(source_path="logo.png", opacity=0.8),
        TextNode(text="hello"),
        SpeedNode(ratio=2),
        ExportNode(container="mp4"),
    ]
    assert build_ffmpeg_plan(chain).to_json() == build_ffmpeg_plan(chain).to_json()
