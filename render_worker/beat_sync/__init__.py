from render_worker.beat_sync.cut_points import generate_cut_points
from render_worker.beat_sync.detection import extract_beats, fallback_beat_grid, probe_duration
from render_worker.beat_sync.strong_beats import detect_strong_beats
from render_worker.beat_sync.sync import BeatSyncResult, run_beat_sync

__all__ = [
    "BeatSyncResult",
    "detect_strong_beats",
    "extract_beats",
    "fallback_beat_grid",
    "generate_cut_points",
    "probe_duration",
    "run_beat_sync",
]
