"""Beat and duration extraction for narration audio."""

import logging
import subprocess

from render_worker.config import get_settings
from render_worker.utils.media_info import get_media_duration_seconds

logger = logging.getLogger(__name__)

BEAT_DETECTION_TIMEOUT_SECONDS = 60


def probe_duration(audio_path: str) -> float | None:
    """Return the audio duration in seconds, or None when it cannot be probed."""
    try:
        duration = get_media_duration_seconds(audio_path)
    except RuntimeError as e:
        logger.warning(f"[BeatSync] Duration probe failed for {audio_path}: {e}")
        return None
    if duration <= 0:
        logger.warning(f"[BeatSync] Probed zero duration for {audio_path}")
        return None
    return duration


def extract_beats(audio_path: str) -> list[float]:
    """Detect beat timestamps (seconds) with the aubio CLI.

    Returns an empty list when aubio is missing, fails, or times out.
    """
    settings = get_settings()
    cmd = [settings.aubio_path, "beat", audio_path]

    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=BEAT_DETECTION_TIMEOUT_SECONDS
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"[BeatSync] Beat detection unavailable: {e}")
        return []

    if result.returncode != 0:
        logger.warning(f"[BeatSync] aubio exited with {result.returncode}: {result.stderr[-500:]}")
        return []

    beats: list[float] = []
    for line in result.stdout.splitlines():
        try:
            value = float(line.strip())
        except ValueError:
            continue
        if value >= 0:
            beats.append(value)
    return sorted(beats)


def _grid_interval(duration_seconds: float) -> float:
    # Denser for short clips, sparser for long ones
    if duration_seconds < 20:
        return 0.5
    if duration_seconds < 45:
        return 0.55
    if duration_seconds < 90:
        return 0.6
    return 0.65


def fallback_beat_grid(duration_seconds: float) -> list[float]:
    """Synthetic beat timestamps used when real detection is unavailable."""
    span = max(1.0, duration_seconds)
    interval = _grid_interval(span)
    beats = []
    i = 0
    while i * interval < span:
        beats.append(round(i * interval, 6))
        i += 1
    return beats
