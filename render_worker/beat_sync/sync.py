import logging
from dataclasses import dataclass, field

from render_worker.beat_sync.cut_points import generate_cut_points
from render_worker.beat_sync.detection import extract_beats, fallback_beat_grid, probe_duration
from render_worker.beat_sync.strong_beats import detect_strong_beats
from render_worker.render.pacing import (
    DURATION_FALLBACK_SECONDS,
    FPS,
    DurationBounds,
    PacingStyle,
    seconds_to_frames,
)

logger = logging.getLogger(__name__)


@dataclass
class BeatSyncResult:
    total_duration_frames: int
    beat_frames: list[int] = field(default_factory=list)
    strong_beat_frames: list[int] = field(default_factory=list)
    cut_frames: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalDurationInFrames": self.total_duration_frames,
            "beatFrames": self.beat_frames,
            "strongBeatFrames": self.strong_beat_frames,
            "cutFrames": self.cut_frames,
        }


def clamped_total_frames(duration_seconds: float | None, bounds: DurationBounds, fps: int = FPS) -> int:
    if duration_seconds is None:
        logger.warning(
            f"[BeatSync] Duration unknown, using fallback of {DURATION_FALLBACK_SECONDS}s"
        )
        duration_seconds = DURATION_FALLBACK_SECONDS
    return bounds.clamp(seconds_to_frames(duration_seconds, fps))


def run_beat_sync(
    audio_path: str | None,
    pacing_style: "str | PacingStyle | None",
    bounds: DurationBounds,
    fps: int = FPS,
    duration_seconds: float | None = None,
) -> BeatSyncResult:
    """Probe, clamp, and (for beat-aware styles) detect beats.

    ``duration_seconds`` skips the probe when the caller already knows the
    duration, e.g. from caption timings.
    """
    style = PacingStyle.parse(pacing_style)

    if duration_seconds is None and audio_path:
        duration_seconds = probe_duration(audio_path)
    total = clamped_total_frames(duration_seconds, bounds, fps)

    if style is PacingStyle.SMOOTH or not audio_path:
        return BeatSyncResult(total_duration_frames=total)

    beat_seconds = extract_beats(audio_path)
    if not beat_seconds:
        logger.warning("[BeatSync] No beats detected, using synthetic grid")
        beat_seconds = fallback_beat_grid(total / fps)

    beat_frames = sorted({seconds_to_frames(t, fps) for t in beat_seconds})
    beat_frames = [f for f in beat_frames if 0 <= f <= total]

    strong = detect_strong_beats(beat_frames, style)
    cuts = generate_cut_points(beat_frames, strong, total, style)
    logger.info(
        f"[BeatSync] total={total}f beats={len(beat_frames)} strong={len(strong)} cuts={len(cuts)}"
    )
    return BeatSyncResult(
        total_duration_frames=total,
        beat_frames=beat_frames,
        strong_beat_frames=strong,
        cut_frames=cuts,
    )
