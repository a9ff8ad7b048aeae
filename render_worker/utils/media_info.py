"""Media file information utilities using FFprobe."""

import json
import subprocess

from render_worker.config import get_settings

PROBE_TIMEOUT_SECONDS = 10


def _run_ffprobe(file_path: str, *args, timeout: float = PROBE_TIMEOUT_SECONDS) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise RuntimeError(f"ffprobe could not run: {e}") from e

    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def get_media_duration_seconds(file_path: str) -> float:
    """
    Get media file duration in seconds.

    Raises:
        RuntimeError: If ffprobe fails or duration not found
    """
    data = _run_ffprobe(file_path, "-show_entries", "format=duration")
    format_info = data.get("format", {})

    if "duration" not in format_info:
        raise RuntimeError(f"Duration not found in: {file_path}")

    duration = float(format_info["duration"])
    if duration < 0:
        raise RuntimeError(f"Negative duration reported for: {file_path}")
    return duration
