"""Composition planner for the local FFmpeg strategy.

Builds a validated :class:`EncoderCommand` from downloaded assets and pacing:

1. Per image: scale/crop to the frame, then a pan/zoom motion curve.
2. Cross-fade chain between consecutive images.
3. Captions, either as timed drawtext or as an ASS subtitle overlay.
4. Optional text watermark.
5. Narration, plus background music ducked against it.

The output is cut to the paced total, so narration shorter than the video
is padded with silence rather than truncating it.
"""

import logging
import os
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from render_worker.config import Settings, get_settings
from render_worker.render.ass_generator import font_for_language, generate_ass, requires_script_font
from render_worker.render.captions import CaptionCue, CaptionTrack
from render_worker.render.filter_graph import (
    EncoderCommand,
    EncoderInput,
    Expr,
    Filter,
    FilterGraph,
)
from render_worker.render.pacing import FPS, Scene

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MotionEffect:
    """zoompan expressions for one motion curve."""

    name: str
    zoom: str
    x: str
    y: str


MOTION_EFFECTS: list[MotionEffect] = [
    MotionEffect("zoom_in", "min(zoom+0.0015,1.5)", "iw/2-(iw/zoom/2)", "ih/2-(ih/zoom/2)"),
    MotionEffect("zoom_out", "if(eq(on,1),1.5,max(1.0,zoom-0.0015))", "iw/2-(iw/zoom/2)", "ih/2-(ih/zoom/2)"),
    MotionEffect("pan_right", "1.2", "if(eq(on,1),0,min(x+1,iw-iw/zoom))", "(ih-ih/zoom)/2"),
    MotionEffect("pan_left", "1.2", "if(eq(on,1),iw-iw/zoom,max(x-1,0))", "(ih-ih/zoom)/2"),
]

EffectChooser = Callable[[Sequence[MotionEffect]], MotionEffect]


@dataclass(frozen=True)
class DrawtextStyle:
    font_color: str = "white"
    border_width: int = 3
    border_color: str = "black"
    box: bool = False
    box_color: str = "black@0.5"


DRAWTEXT_PRESETS: dict[str, DrawtextStyle] = {
    "bold-stroke": DrawtextStyle(border_width=6),
    "red-highlight": DrawtextStyle(border_width=6, border_color="red"),
    "karaoke-card": DrawtextStyle(border_width=0, box=True, box_color="0xFF00FF@0.5"),
    "beast": DrawtextStyle(font_color="yellow", border_width=8),
    "default": DrawtextStyle(),
}

# Top-right, away from the caption band
WATERMARK_MARGIN = 24
WATERMARK_ALPHA = 0.5

# Sidechain compressor tuning for music under narration
DUCK_THRESHOLD = 0.02
DUCK_RATIO = 8
DUCK_ATTACK_MS = 20
DUCK_RELEASE_MS = 400


@dataclass
class CompositionRequest:
    image_paths: list[str]
    audio_path: str
    output_path: str
    work_dir: str
    scenes: list[Scene]
    transition_overlap_frames: int
    # Target length; defaults to the scenes minus their dissolves
    total_duration_frames: int | None = None
    fps: int = FPS
    width: int = 720
    height: int = 1280
    captions: CaptionTrack | None = None
    caption_preset: str = "karaoke-card"
    caption_position: str = "bottom"
    caption_language: str | None = None
    music_path: str | None = None
    music_volume: float = 0.2
    watermark_text: str | None = None
    preset: str | None = None


@dataclass
class CompositionPlan:
    command: EncoderCommand
    # Files that must exist before the encoder runs (path -> content)
    files: dict[str, str] = field(default_factory=dict)
    effects: list[str] = field(default_factory=list)
    caption_mode: str | None = None

    def write_files(self) -> None:
        for path, content in self.files.items():
            Path(path).write_text(content, encoding="utf-8")


def total_duration_frames(request: CompositionRequest) -> int:
    if request.total_duration_frames is not None:
        return request.total_duration_frames
    scenes = request.scenes
    return sum(s.duration_frames for s in scenes) - request.transition_overlap_frames * max(0, len(scenes) - 1)


def _y_expression(position: str, margin_v: int) -> str:
    if position == "top":
        return str(margin_v)
    if position == "center":
        return "(h-text_h)/2"
    return f"h-text_h-{margin_v}"


class CompositionPlanner:
    """Turns assets and scenes into an FFmpeg invocation."""

    def __init__(self, settings: Settings | None = None, choose_effect: EffectChooser | None = None):
        self.settings = settings or get_settings()
        self.choose_effect = choose_effect or random.choice

    def plan(self, request: CompositionRequest) -> CompositionPlan:
        image_paths = request.image_paths
        if image_paths:
            inputs = [EncoderInput(path) for path in image_paths]
        else:
            # No visuals: a solid frame under the narration and captions
            source = f"color=c=black:s={request.width}x{request.height}:r={request.fps}"
            inputs = [EncoderInput(source, ["-f", "lavfi"])]
        audio_index = len(inputs)
        inputs.append(EncoderInput(request.audio_path))
        music_index = None
        if request.music_path:
            music_index = len(inputs)
            inputs.append(EncoderInput(request.music_path, ["-stream_loop", "-1"]))

        graph = FilterGraph()
        effects: list[str] = []
        files: dict[str, str] = {}

        video_label = self._add_visuals(graph, request, effects)
        video_label, caption_mode = self._add_captions(graph, request, files, video_label)
        video_label = self._add_watermark(graph, request, video_label)
        audio_label = self._add_audio(graph, request, audio_index, music_index)

        settings = self.settings
        total_frames = total_duration_frames(request)
        output_options = [
            "-c:v", "libx264",
            "-preset", request.preset or settings.render_preset,
            # Single-threaded encode keeps peak memory bounded on small workers
            "-threads", "1",
            "-filter_threads", "1",
            "-filter_complex_threads", "1",
            "-crf", str(settings.render_crf),
            "-c:a", "aac",
            "-b:a", settings.render_audio_bitrate,
            "-pix_fmt", "yuv420p",
            "-r", str(request.fps),
            "-t", f"{total_frames / request.fps:.3f}",
            "-movflags", "+faststart",
            "-f", "mp4",
        ]

        command = EncoderCommand(
            inputs=inputs,
            graph=graph,
            maps=[video_label, audio_label],
            output_options=output_options,
            output_path=request.output_path,
        )
        command.validate()
        logger.info(
            f"[Composition] {len(image_paths)} images, {total_frames} frames, captions={caption_mode}, "
            f"music={music_index is not None}, watermark={bool(request.watermark_text)}"
        )
        return CompositionPlan(command=command, files=files, effects=effects, caption_mode=caption_mode)

    def _motion_filters(self, request: CompositionRequest, frames: int, effect: MotionEffect) -> list[Filter]:
        w, h = request.width, request.height
        return [
            Filter("scale", [(None, w), (None, h), ("force_original_aspect_ratio", "increase")]),
            Filter("crop", [(None, w), (None, h)]),
            Filter("setsar", [(None, 1)]),
            Filter(
                "zoompan",
                [
                    ("z", Expr(effect.zoom)),
                    ("x", Expr(effect.x)),
                    ("y", Expr(effect.y)),
                    ("d", frames),
                    ("s", f"{w}x{h}"),
                    ("fps", request.fps),
                ],
            ),
        ]

    def _add_visuals(self, graph: FilterGraph, request: CompositionRequest, effects: list[str]) -> str:
        if not request.image_paths:
            return graph.chain("0:v", [Filter("setsar", [(None, 1)])], "vbase")

        overlap = request.transition_overlap_frames
        scenes = request.scenes
        streams: list[str] = []

        for i in range(len(request.image_paths)):
            scene_frames = scenes[i].duration_frames if i < len(scenes) else scenes[-1].duration_frames
            effect = self.choose_effect(MOTION_EFFECTS)
            effects.append(effect.name)
            # Each stream also covers the dissolve into the next scene
            frames = scene_frames + overlap
            streams.append(graph.chain(f"{i}:v", self._motion_filters(request, frames, effect), f"v{i}"))

        # Hold the last frame if the scenes run short of the output length
        hold = Filter("tpad", [("stop", -1), ("stop_mode", "clone")])
        if len(streams) == 1:
            return graph.chain(streams[0], [hold], "vbase")

        fade_seconds = overlap / request.fps
        previous = streams[0]
        offset_frames = scenes[0].duration_frames - overlap
        for i in range(1, len(streams)):
            out = f"x{i}"
            graph.add(
                [previous, streams[i]],
                [
                    Filter(
                        "xfade",
                        [
                            ("transition", "fade"),
                            ("duration", round(fade_seconds, 6)),
                            ("offset", round(offset_frames / request.fps, 6)),
                        ],
                    )
                ],
                [out],
            )
            previous = out
            if i < len(scenes):
                offset_frames += scenes[i].duration_frames - overlap
        return graph.chain(previous, [hold], "vbase")

    def _drawtext_filter(self, cue: CaptionCue, request: CompositionRequest) -> Filter:
        style = DRAWTEXT_PRESETS.get((request.caption_preset or "default").lower(), DRAWTEXT_PRESETS["default"])
        position = (request.caption_position or "bottom").lower()
        margin_v = {"top": 100, "center": 50}.get(position, 150)
        params: list = [
            ("text", cue.text),
            ("expansion", "none"),
            ("font", font_for_language(request.caption_language)),
            ("fontsize", max(24, int(request.height * 0.045))),
            ("fontcolor", style.font_color),
            ("x", Expr("(w-text_w)/2")),
            ("y", Expr(_y_expression(position, margin_v))),
            ("enable", Expr(f"between(t,{cue.start:.3f},{cue.end:.3f})")),
        ]
        if style.border_width:
            params.extend([("borderw", style.border_width), ("bordercolor", style.border_color)])
        if style.box:
            params.extend([("box", 1), ("boxcolor", style.box_color), ("boxborderw", 16)])
        return Filter("drawtext", params)

    def _add_captions(
        self,
        graph: FilterGraph,
        request: CompositionRequest,
        files: dict[str, str],
        source: str,
    ) -> tuple[str, str | None]:
        track = request.captions
        if track is None or not track.cues:
            return source, None

        if track.source_format == "json" and not track.has_word_timings:
            filters = [self._drawtext_filter(cue, request) for cue in track.cues if cue.text]
            if not filters:
                return source, None
            return graph.chain(source, filters, "vcap"), "drawtext"

        ass_path = os.path.join(request.work_dir, "captions.ass")
        files[ass_path] = generate_ass(
            track.cues,
            preset=request.caption_preset,
            position=request.caption_position,
            language=request.caption_language,
        )
        params: list = [("filename", ass_path)]
        if requires_script_font(request.caption_language):
            params.append(("fontsdir", self.settings.fonts_dir))
        return graph.chain(source, [Filter("subtitles", params)], "vcap"), "ass"

    def _add_watermark(self, graph: FilterGraph, request: CompositionRequest, source: str) -> str:
        if not request.watermark_text:
            return source
        watermark = Filter(
            "drawtext",
            [
                ("text", request.watermark_text),
                ("expansion", "none"),
                ("fontsize", max(18, int(request.height * 0.022))),
                ("fontcolor", f"white@{WATERMARK_ALPHA}"),
                ("x", Expr(f"w-text_w-{WATERMARK_MARGIN}")),
                ("y", WATERMARK_MARGIN * 2),
            ],
        )
        return graph.chain(source, [watermark], "vwm")

    def _add_audio(
        self,
        graph: FilterGraph,
        request: CompositionRequest,
        audio_index: int,
        music_index: int | None,
    ) -> str:
        if music_index is None:
            return graph.chain(f"{audio_index}:a", [Filter("apad")], "aout")

        # Clean narration copy for the mix, second copy drives the compressor
        graph.add([f"{audio_index}:a"], [Filter("apad"), Filter("asplit", [(None, 2)])], ["narr", "narr_sc"])
        graph.chain(f"{music_index}:a", [Filter("volume", [(None, request.music_volume)])], "music_vol")
        graph.add(
            ["music_vol", "narr_sc"],
            [
                Filter(
                    "sidechaincompress",
                    [
                        ("threshold", DUCK_THRESHOLD),
                        ("ratio", DUCK_RATIO),
                        ("attack", DUCK_ATTACK_MS),
                        ("release", DUCK_RELEASE_MS),
                        ("makeup", 1),
                    ],
                )
            ],
            ["music_ducked"],
        )
        graph.add(
            ["narr", "music_ducked"],
            [Filter("amix", [("inputs", 2), ("duration", "first"), ("normalize", 0)])],
            ["aout"],
        )
        return "aout"
