"""Pacing engine: allocates screen time per visual asset.

Scenes are measured in frames at a fixed frame rate. Consecutive scenes are
blended with a cross-fade of ``transition_overlap`` frames, so each scene is
lengthened by the overlap to keep the perceived total equal to the target.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

FPS = 30

# Used when the narration duration cannot be probed
DURATION_FALLBACK_SECONDS = 45

# Tail added after the last caption when the duration comes from captions
CAPTION_DURATION_BUFFER_SECONDS = 1

DEFAULT_MOTION_PRESETS = ["kenBurns", "cinematicZoom", "documentarySlowPan"]


class PacingStyle(str, Enum):
    SMOOTH = "smooth"
    RHYTHMIC = "rhythmic"
    VIRAL = "viral"
    DRAMATIC = "dramatic"

    @classmethod
    def parse(cls, value: "str | PacingStyle | None") -> "PacingStyle":
        """Unknown or missing styles fall back to smooth."""
        if isinstance(value, PacingStyle):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.SMOOTH


class DurationBucket(str, Enum):
    SHORT = "30-60"
    MEDIUM = "60-90"
    LONG = "90-120"

    @classmethod
    def parse(cls, value: "str | DurationBucket | None") -> "DurationBucket":
        """Unknown buckets behave like the longest bucket."""
        if isinstance(value, DurationBucket):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            return cls.LONG


# Floor/ceiling per bucket, in seconds
DURATION_BOUNDS_SECONDS: dict[DurationBucket, tuple[int, int]] = {
    DurationBucket.SHORT: (30, 60),
    DurationBucket.MEDIUM: (60, 90),
    DurationBucket.LONG: (90, 120),
}

TRANSITION_OVERLAP_FRAMES: dict[PacingStyle, int] = {
    PacingStyle.SMOOTH: 20,
    PacingStyle.RHYTHMIC: 16,
    PacingStyle.VIRAL: 12,
    PacingStyle.DRAMATIC: 16,
}


@dataclass(frozen=True)
class DurationBounds:
    min_frames: int
    max_frames: int

    def clamp(self, frames: int) -> int:
        return max(self.min_frames, min(self.max_frames, frames))


@dataclass
class Scene:
    """One visual asset's allocated screen time."""

    asset: str | None
    duration_frames: int
    index: int

    def to_dict(self) -> dict:
        return {
            "asset": self.asset,
            "durationInFrames": self.duration_frames,
            "index": self.index,
        }


def duration_bounds(bucket: "str | DurationBucket | None", fps: int = FPS) -> DurationBounds:
    low, high = DURATION_BOUNDS_SECONDS[DurationBucket.parse(bucket)]
    return DurationBounds(min_frames=low * fps, max_frames=high * fps)


def transition_overlap_frames(style: "str | PacingStyle | None") -> int:
    return TRANSITION_OVERLAP_FRAMES[PacingStyle.parse(style)]


def seconds_to_frames(seconds: float, fps: int = FPS) -> int:
    return int(round(seconds * fps))


def build_scenes(
    assets: Sequence[str],
    total_duration_frames: int,
    cut_frames: Sequence[int],
    pacing_style: "str | PacingStyle | None",
    transition_overlap: int,
) -> list[Scene]:
    """Split the total duration into per-asset scenes.

    Without cut points every asset gets an equal share, widened by the
    transition overlap. With cut points, segments are the gaps between sorted
    boundaries and assets are assigned round-robin.
    """
    # Scene lengths do not depend on pacing_style yet; only the overlap does
    asset_list: list[str | None] = list(assets) or [None]
    n = len(asset_list)

    if not cut_frames:
        per_scene = (total_duration_frames + (n - 1) * transition_overlap) // n
        per_scene = max(1, per_scene)
        return [Scene(asset=asset, duration_frames=per_scene, index=i) for i, asset in enumerate(asset_list)]

    boundaries = [0, *sorted(cut_frames), total_duration_frames]
    scenes: list[Scene] = []
    for i in range(len(boundaries) - 1):
        duration = max(1, boundaries[i + 1] - boundaries[i])
        scenes.append(Scene(asset=asset_list[i % n], duration_frames=duration, index=i))

    if len(scenes) < n:
        # Fewer segments than assets; the final scene absorbs the shortfall
        shortfall = (n - len(scenes)) * (total_duration_frames // n)
        scenes[-1].duration_frames += shortfall

    return scenes


def select_motion_presets(
    scene_count: int,
    motion_presets: Sequence[str] | None = None,
    motion_preset: str | None = None,
) -> list[str]:
    """Per-scene motion preset names for the remote renderer.

    An explicit list cycles by scene index; a single preset repeats.
    """
    if motion_presets:
        presets = list(motion_presets)
    elif motion_preset:
        presets = [motion_preset]
    else:
        presets = DEFAULT_MOTION_PRESETS
    return [presets[i % len(presets)] for i in range(scene_count)]
