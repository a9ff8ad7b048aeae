from typing import Sequence

from render_worker.render.pacing import FPS, PacingStyle

DEFAULT_PERIOD = 4
DRAMATIC_PERIOD = 2
MIN_PERIOD = 2

# Strong beats must not drift further apart than ~2 seconds
MAX_STRONG_BEAT_GAP_FRAMES = 2 * FPS


def detect_strong_beats(beat_frames: Sequence[int], pacing_style: "str | PacingStyle | None") -> list[int]:
    """Every period-th beat, with the period shrunk when beats are sparse."""
    style = PacingStyle.parse(pacing_style)
    period = DRAMATIC_PERIOD if style is PacingStyle.DRAMATIC else DEFAULT_PERIOD

    beats = list(beat_frames)
    if len(beats) < period:
        return []

    gaps = sorted(b - a for a, b in zip(beats, beats[1:]))
    median_gap = gaps[len(gaps) // 2] if gaps else 0

    if period * median_gap > MAX_STRONG_BEAT_GAP_FRAMES and period > MIN_PERIOD:
        period = MIN_PERIOD

    return beats[period - 1::period]
