from typing import Sequence

from render_worker.render.pacing import PacingStyle


def generate_cut_points(
    beat_frames: Sequence[int],
    strong_beat_frames: Sequence[int],
    total_duration_frames: int,
    pacing_style: "str | PacingStyle | None",
) -> list[int]:
    """Scene boundaries derived from beats.

    Always empty: every scene gets equal screen time. Beat data is still
    carried for visual emphasis downstream.
    """
    return []
