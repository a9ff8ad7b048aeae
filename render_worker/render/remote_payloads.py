"""Input props for the remote compositions.

Each builder takes already-resolved signed URLs and parsed data and returns
the JSON document the remote composition reads. Network access is limited to
:func:`fetch_caption_track`.
"""

import logging
from typing import Any, Callable, Sequence

import httpx

from render_worker.beat_sync import BeatSyncResult
from render_worker.render.captions import CaptionCue, CaptionTrack, parse_captions
from render_worker.render.pacing import (
    CAPTION_DURATION_BUFFER_SECONDS,
    FPS,
    DurationBounds,
    Scene,
    seconds_to_frames,
    select_motion_presets,
    transition_overlap_frames,
)
from render_worker.schemas.jobs import (
    KineticJobPayload,
    MonetizationDirective,
    ReelJobPayload,
    RenderingHints,
    StockVideoJobPayload,
)

logger = logging.getLogger(__name__)

DEFAULT_RHYTHM = {"entryFrames": 30, "holdFrames": 60, "exitFrames": 15, "totalFrames": 105}
DEFAULT_TRANSITION_IN = {"transitionType": "fade", "transitionDuration": 0}


async def fetch_caption_track(
    url: str | None,
    source_name: str = "",
    http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
) -> CaptionTrack | None:
    """Download and parse a caption document. Any failure yields ``None``."""
    if not url:
        return None
    factory = http_client_factory or (lambda: httpx.AsyncClient(timeout=30.0))
    try:
        async with factory() as client:
            response = await client.get(url)
        if not response.is_success:
            logger.warning(f"[RemoteProps] Caption fetch returned {response.status_code}")
            return None
        track = parse_captions(response.text, source_name)
    except Exception as e:
        # Captions are optional for remote renders
        logger.warning(f"[RemoteProps] Caption fetch failed for {source_name or url}: {e}")
        return None
    return track if track.cues else None


def watermark_props(monetization: MonetizationDirective, default_text: str) -> dict[str, Any]:
    watermark = monetization.watermark
    return {
        "enabled": watermark.text_enabled,
        "type": "text",
        "value": watermark.value or default_text,
    }


def caption_config(hints: RenderingHints, include_language: bool = False) -> dict[str, Any]:
    config: dict[str, Any] = {
        "enabled": hints.captions.enabled,
        "preset": hints.captions.preset,
        "position": hints.captions.position,
    }
    if include_language:
        config["language"] = hints.caption_language
    return config


def caption_total_frames(cues: Sequence[CaptionCue], bounds: DurationBounds, fps: int = FPS) -> int | None:
    """Duration implied by the last caption plus a short tail, clamped to bounds."""
    if not cues:
        return None
    end = max(cue.end for cue in cues) + CAPTION_DURATION_BUFFER_SECONDS
    return bounds.clamp(seconds_to_frames(end, fps))


def scene_props(scenes: Sequence[Scene]) -> list[dict[str, Any]]:
    return [
        {"durationInFrames": scene.duration_frames, "imageUrl": scene.asset or "", "imageIndex": scene.index}
        for scene in scenes
    ]


def reel_input_props(
    job: ReelJobPayload,
    *,
    audio_url: str,
    caption_url: str | None,
    image_urls: Sequence[str],
    cues: Sequence[CaptionCue],
    music_url: str | None,
    sync: BeatSyncResult | None,
    scenes: Sequence[Scene] | None,
    default_watermark: str,
) -> dict[str, Any]:
    hints = job.hints
    props: dict[str, Any] = {
        "audioUrl": audio_url,
        "captionUrl": caption_url,
        "captionEntries": [cue.to_dict() for cue in cues],
        "captionConfig": caption_config(hints, include_language=True),
        "imageUrls": list(image_urls),
        "musicUrl": music_url,
        "width": hints.width,
        "height": hints.height,
        "musicVolume": hints.music_volume,
        "motionPresets": select_motion_presets(
            max(len(image_urls), 1), hints.motion_presets, hints.motion_preset
        ),
        "pacingStyle": hints.pacing_style.value,
        "transitionOverlap": transition_overlap_frames(hints.pacing_style),
        "watermark": watermark_props(job.monetization, default_watermark),
    }
    if hints.motion_emotion:
        props["motionEmotion"] = hints.motion_emotion
    if sync is not None and scenes:
        props.update(
            scenes=scene_props(scenes),
            totalDurationInFrames=sync.total_duration_frames,
            beatFrames=sync.beat_frames,
            strongBeatFrames=sync.strong_beat_frames,
        )
    return props


def stock_video_input_props(
    job: StockVideoJobPayload,
    *,
    audio_url: str,
    caption_url: str | None,
    clip_urls: Sequence[str],
    cues: Sequence[CaptionCue],
    music_url: str | None,
    bounds: DurationBounds,
    default_watermark: str,
) -> dict[str, Any]:
    hints = job.hints
    scene_assets = [
        {"type": "video" if job.assets.clip_type(i) == "stock_video" else "image", "url": url}
        for i, url in enumerate(clip_urls)
    ]
    # Without captions the composition gets the full allowance and trims to the narration
    total = caption_total_frames(cues, bounds) or bounds.max_frames
    return {
        "audioUrl": audio_url,
        "captionUrl": caption_url,
        "captionEntries": [cue.to_dict() for cue in cues],
        "captionConfig": caption_config(hints, include_language=True),
        "sceneAssets": scene_assets,
        "musicUrl": music_url,
        "width": hints.width,
        "height": hints.height,
        "musicVolume": hints.music_volume,
        "totalDurationInFrames": total,
        "watermark": watermark_props(job.monetization, default_watermark),
    }


def normalize_graphic_scenes(raw_scenes: Sequence[Any]) -> list[dict[str, Any]]:
    """Fill in ``words``, ``rhythm`` and ``transitionIn`` on every scene."""
    normalized = []
    for raw in raw_scenes:
        scene = dict(raw) if isinstance(raw, dict) else {}
        text = scene.get("text") if isinstance(scene.get("text"), str) else ""
        words = scene.get("words")
        if not isinstance(words, list) or not words:
            words = text.split()
        rhythm = scene.get("rhythm") if isinstance(scene.get("rhythm"), dict) else dict(DEFAULT_RHYTHM)
        transition_in = (
            scene.get("transitionIn") if isinstance(scene.get("transitionIn"), dict) else dict(DEFAULT_TRANSITION_IN)
        )
        normalized.append({**scene, "text": text, "words": words, "rhythm": rhythm, "transitionIn": transition_in})
    return normalized


def kinetic_input_props(
    job: KineticJobPayload,
    *,
    music_url: str | None,
    default_composition: str,
    default_watermark: str,
) -> tuple[str, dict[str, Any]]:
    """Returns ``(composition_id, input_props)``.

    Graphic-motion timelines render with the job's composition; legacy
    word timelines always use the default kinetic composition.
    """
    source = job.input_props
    props: dict[str, Any] = {
        "width": source.width,
        "height": source.height,
        "fps": source.fps,
        "fontFamily": source.font_family,
    }

    if source.graphic_scenes:
        composition = job.composition_id or default_composition
        props["graphicMotionTimeline"] = {
            **(source.graphic_motion_timeline or {}),
            "scenes": normalize_graphic_scenes(source.graphic_scenes),
        }
    else:
        composition = default_composition
        props["timeline"] = source.timeline

    if music_url:
        props["musicUrl"] = music_url
        props["musicVolume"] = job.music_volume if job.music_volume is not None else 0.2
    props["watermark"] = watermark_props(job.monetization, default_watermark)
    return composition, props
