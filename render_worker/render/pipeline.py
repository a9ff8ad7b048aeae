"""
Render pipeline: one attempt of one queued job.

The pipeline owns the scratch directory, asset transfer, strategy execution
and finalization:

- Local encode: download assets, pace scenes, plan the FFmpeg graph, encode,
  upload, finalize the step.
- Remote render: sign asset URLs, build the composition's input props, let the
  remote renderer produce the video, store it, finalize the step (or the
  project for kinetic typography).
- Video tools: download one video, resize or recompress it with FFmpeg,
  upload, finalize the project without billing.

Failures are recorded on the step/project before being re-raised, so the
queue can retry the attempt.
"""

import asyncio
import logging
import os
import resource
import shutil
import tempfile
from pathlib import Path
from typing import Callable

import httpx

from render_worker.beat_sync import BeatSyncResult, run_beat_sync
from render_worker.config import Settings, get_settings
from render_worker.exceptions import InputTooLargeError
from render_worker.render.captions import CaptionCue, CaptionTrack, parse_captions
from render_worker.render.composition import CompositionPlanner, CompositionRequest
from render_worker.render.encoder import run_encoder
from render_worker.render.pacing import (
    PacingStyle,
    build_scenes,
    duration_bounds,
    transition_overlap_frames,
)
from render_worker.render.remote_client import LambdaRenderBackend, RemoteRenderClient
from render_worker.render.remote_payloads import (
    caption_total_frames,
    fetch_caption_track,
    kinetic_input_props,
    reel_input_props,
    stock_video_input_props,
)
from render_worker.render.router import RenderStrategy
from render_worker.render.video_tools import MAX_INPUT_BYTES, build_video_tools_command, video_tools_result_key
from render_worker.schemas.jobs import (
    KineticJobPayload,
    MediaJobPayload,
    ReelJobPayload,
    RenderJobPayload,
    StockVideoJobPayload,
    VideoToolsJobPayload,
)
from render_worker.services.finalize import (
    FinalizeResult,
    finalize_project_success,
    finalize_render_success,
)
from render_worker.services.mail_service import MailService
from render_worker.services.render_repository import RenderRepository
from render_worker.services.storage_service import get_storage_service

logger = logging.getLogger(__name__)

X264_PRESETS = {
    "ultrafast", "superfast", "veryfast", "faster", "fast",
    "medium", "slow", "slower", "veryslow",
}


def media_result_key(user_id: str, media_id: str) -> str:
    return f"users/{user_id}/media/{media_id}/video/render/final_render.mp4"


def project_result_key(user_id: str, project_id: str) -> str:
    return f"users/{user_id}/projects/{project_id}/output.mp4"


def log_memory(stage: str) -> None:
    """Log peak RSS of this process and of finished children (ffmpeg, aubio)."""
    own = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    children = resource.getrusage(resource.RUSAGE_CHILDREN).ru_maxrss
    logger.info(f"[Memory] {stage}: peak rss={own // 1024}MB children={children // 1024}MB")


def _extension(storage_key: str, default: str = "") -> str:
    suffix = Path(storage_key).suffix
    return suffix if suffix else default


class RenderPipeline:
    """Runs a validated job with the strategy chosen by the router."""

    def __init__(
        self,
        settings: Settings | None = None,
        storage=None,
        repository: RenderRepository | None = None,
        mailer: MailService | None = None,
        planner: CompositionPlanner | None = None,
        remote_client: RemoteRenderClient | None = None,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or get_storage_service()
        self.repository = repository or RenderRepository()
        self.mailer = mailer or MailService(self.settings)
        self.planner = planner or CompositionPlanner(self.settings)
        self._remote_client = remote_client
        self._http_client_factory = http_client_factory

    @property
    def remote_client(self) -> RemoteRenderClient:
        # Built on first remote use so local-only workers need no renderer settings
        if self._remote_client is None:
            self._remote_client = RemoteRenderClient(
                LambdaRenderBackend(self.settings), self.storage, self.settings
            )
        return self._remote_client

    async def run(self, job: RenderJobPayload, strategy: RenderStrategy, final_attempt: bool = True) -> dict:
        """Execute one attempt. Returns a summary dict for the task result."""
        work_dir = tempfile.mkdtemp(prefix="render_")
        try:
            if isinstance(job, KineticJobPayload):
                output_key = await self._run_kinetic(job)
            elif isinstance(job, VideoToolsJobPayload):
                output_key = await self._run_video_tools(job, work_dir)
            elif isinstance(job, StockVideoJobPayload):
                output_key = await self._run_remote_stock_video(job, work_dir)
            elif strategy is RenderStrategy.LOCAL_ENCODE:
                output_key = await self._run_local(job, work_dir)
            else:
                output_key = await self._run_remote_reel(job, work_dir)
        except Exception as e:
            await asyncio.to_thread(self._record_failure, job, e, final_attempt)
            raise
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        return {"status": "completed", "strategy": strategy.value, "output_key": output_key}

    def _record_failure(self, job: RenderJobPayload, error: Exception, final_attempt: bool) -> None:
        message = str(error) or error.__class__.__name__
        try:
            if isinstance(job, (KineticJobPayload, VideoToolsJobPayload)):
                self.repository.record_project_failure(job.project_id, message, final=final_attempt)
            else:
                self.repository.record_step_failure(job.step_id, message, final=final_attempt)
        except Exception as db_error:
            logger.error(f"[Pipeline] Failed to record error status: {db_error}")

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _sign(self, storage_key: str | None) -> str | None:
        if not storage_key:
            return None
        return await self.storage.get_signed_url(storage_key, self.settings.asset_signed_url_ttl_seconds)

    async def _existing_music(self, storage_key: str | None, job_ref: str) -> bool:
        if not storage_key:
            return False
        exists = await asyncio.to_thread(self.storage.file_exists, storage_key)
        if not exists:
            logger.warning(f"[Pipeline] Music asset {storage_key} not found, skipping music for {job_ref}")
        return exists

    async def _remote_cues(self, job: MediaJobPayload, caption_key: str | None, caption_url: str | None) -> list[CaptionCue]:
        if not job.hints.captions.enabled or not caption_url:
            return []
        track = await fetch_caption_track(caption_url, caption_key or "", self._http_client_factory)
        return track.cues if track else []

    async def _finalize_media(self, job: MediaJobPayload, result_key: str) -> FinalizeResult:
        result = await finalize_render_success(
            job.media_id, job.step_id, result_key, self.repository, self.storage, self.mailer
        )
        if result.failed_actions:
            logger.warning(f"[Pipeline] Media {job.media_id} post-commit failures: {result.failed_actions}")
        return result

    # ------------------------------------------------------------------
    # Local encode
    # ------------------------------------------------------------------

    async def _run_local(self, job: ReelJobPayload, work_dir: str) -> str:
        settings = self.settings
        hints = job.hints
        assets = job.assets
        fps = settings.render_fps
        logger.info(f"[LocalRender] Media {job.media_id}: downloading {len(assets.images)} images to {work_dir}")

        audio_path = os.path.join(work_dir, f"audio{_extension(assets.audio, '.mp3')}")
        image_paths = [
            os.path.join(work_dir, f"image_{i:03d}{_extension(key, '.jpg')}")
            for i, key in enumerate(assets.images)
        ]
        downloads = [self.storage.download_file(assets.audio, audio_path)]
        downloads += [self.storage.download_file(key, path) for key, path in zip(assets.images, image_paths)]

        caption_path = None
        if assets.caption and hints.captions.enabled:
            caption_path = os.path.join(work_dir, f"source_captions{_extension(assets.caption, '.srt')}")
            downloads.append(self.storage.download_file(assets.caption, caption_path))

        music_path = None
        if await self._existing_music(assets.music, job.media_id):
            music_path = os.path.join(work_dir, f"music{_extension(assets.music, '.mp3')}")
            downloads.append(self.storage.download_file(assets.music, music_path))

        await asyncio.gather(*downloads)
        log_memory("assets downloaded")

        captions: CaptionTrack | None = None
        if caption_path:
            text = Path(caption_path).read_text(encoding="utf-8", errors="replace")
            captions = parse_captions(text, assets.caption)
            if not captions.cues:
                captions = None

        style = hints.pacing_style
        overlap = transition_overlap_frames(style)
        bounds = duration_bounds(job.duration_bucket, fps)
        sync = await asyncio.to_thread(run_beat_sync, audio_path, style, bounds, fps)
        scenes = build_scenes(image_paths, sync.total_duration_frames, sync.cut_frames, style, overlap)

        watermark = job.monetization.watermark
        preset = job.options.preset if job.options.preset in X264_PRESETS else None
        output_path = os.path.join(work_dir, "final_render.mp4")
        plan = self.planner.plan(
            CompositionRequest(
                image_paths=image_paths,
                audio_path=audio_path,
                output_path=output_path,
                work_dir=work_dir,
                scenes=scenes,
                transition_overlap_frames=overlap,
                total_duration_frames=sync.total_duration_frames,
                fps=fps,
                width=hints.width,
                height=hints.height,
                captions=captions,
                caption_preset=hints.captions.preset,
                caption_position=hints.captions.position,
                caption_language=hints.caption_language,
                music_path=music_path,
                music_volume=hints.music_volume,
                watermark_text=watermark.value if watermark.text_enabled else None,
                preset=preset,
            )
        )
        plan.write_files()

        logger.info(
            f"[LocalRender] Media {job.media_id}: encoding {len(scenes)} scenes, "
            f"{sync.total_duration_frames} frames, effects={plan.effects}"
        )
        await run_encoder(plan.command.to_args(settings.ffmpeg_path), settings.encoder_timeout_seconds)
        log_memory("encode finished")

        result_key = media_result_key(job.user_id, job.media_id)
        await self.storage.upload_file(output_path, result_key, "video/mp4")
        logger.info(f"[LocalRender] Media {job.media_id}: uploaded {result_key}")

        result = await self._finalize_media(job, result_key)
        if result.step_updated:
            await asyncio.to_thread(self.repository.add_asset, job.media_id, "video", result_key)
        return result_key

    # ------------------------------------------------------------------
    # Remote render
    # ------------------------------------------------------------------

    async def _run_remote_reel(self, job: ReelJobPayload, work_dir: str) -> str:
        settings = self.settings
        hints = job.hints
        assets = job.assets
        fps = settings.render_fps
        logger.info(f"[RemoteRender] Media {job.media_id}: signing audio, caption, {len(assets.images)} images")

        audio_url, caption_url, *image_urls = await asyncio.gather(
            self._sign(assets.audio),
            self._sign(assets.caption),
            *(self._sign(key) for key in assets.images),
        )
        cues = await self._remote_cues(job, assets.caption, caption_url)

        style = hints.pacing_style
        overlap = transition_overlap_frames(style)
        bounds = duration_bounds(job.duration_bucket, fps)
        sync: BeatSyncResult | None = None
        scenes = None
        if image_urls:
            if style is PacingStyle.SMOOTH and cues:
                # Smooth pacing only needs the length, which the captions already give
                sync = BeatSyncResult(total_duration_frames=caption_total_frames(cues, bounds, fps))
            else:
                audio_path = os.path.join(work_dir, f"audio{_extension(assets.audio, '.mp3')}")
                await self.storage.download_file(assets.audio, audio_path)
                sync = await asyncio.to_thread(run_beat_sync, audio_path, style, bounds, fps)
            scenes = build_scenes(image_urls, sync.total_duration_frames, sync.cut_frames, style, overlap)
            logger.info(f"[RemoteRender] Media {job.media_id}: {len(scenes)} scenes, {sync.total_duration_frames} frames")

        music_url = None
        if await self._existing_music(assets.music, job.media_id):
            music_url = await self._sign(assets.music)

        props = reel_input_props(
            job,
            audio_url=audio_url,
            caption_url=caption_url,
            image_urls=image_urls,
            cues=cues,
            music_url=music_url,
            sync=sync,
            scenes=scenes,
            default_watermark=settings.watermark_default_text,
        )
        result_key = await self.remote_client.render(
            settings.remotion_reel_composition,
            props,
            f"render-{job.media_id}.mp4",
            media_result_key(job.user_id, job.media_id),
        )
        await self._finalize_media(job, result_key)
        return result_key

    async def _run_remote_stock_video(self, job: StockVideoJobPayload, work_dir: str) -> str:
        settings = self.settings
        assets = job.assets
        logger.info(f"[RemoteRender] Media {job.media_id}: signing {len(assets.stock_videos)} clips")

        audio_url, caption_url, *clip_urls = await asyncio.gather(
            self._sign(assets.audio),
            self._sign(assets.caption),
            *(self._sign(key) for key in assets.stock_videos),
        )
        cues = await self._remote_cues(job, assets.caption, caption_url)

        music_url = None
        if await self._existing_music(assets.music, job.media_id):
            music_url = await self._sign(assets.music)

        props = stock_video_input_props(
            job,
            audio_url=audio_url,
            caption_url=caption_url,
            clip_urls=clip_urls,
            cues=cues,
            music_url=music_url,
            bounds=duration_bounds(job.duration_bucket, settings.render_fps),
            default_watermark=settings.watermark_default_text,
        )
        result_key = await self.remote_client.render(
            settings.remotion_stock_composition,
            props,
            f"render-{job.media_id}.mp4",
            media_result_key(job.user_id, job.media_id),
        )
        await self._finalize_media(job, result_key)
        return result_key

    async def _run_kinetic(self, job: KineticJobPayload) -> str:
        settings = self.settings
        music_url = None
        if await self._existing_music(job.music_blob_id, job.project_id):
            music_url = await self._sign(job.music_blob_id)

        composition, props = kinetic_input_props(
            job,
            music_url=music_url,
            default_composition=settings.remotion_kinetic_composition,
            default_watermark=settings.watermark_default_text,
        )
        logger.info(f"[Kinetic] Project {job.project_id}: rendering {composition}")
        result_key = await self.remote_client.render(
            composition,
            props,
            f"kinetic-{job.project_id}.mp4",
            project_result_key(job.user_id, job.project_id),
        )
        result = await finalize_project_success(job.project_id, result_key, self.repository)
        if result.failed_actions:
            logger.warning(f"[Pipeline] Project {job.project_id} post-commit failures: {result.failed_actions}")
        return result_key

    # ------------------------------------------------------------------
    # Video tools
    # ------------------------------------------------------------------

    async def _run_video_tools(self, job: VideoToolsJobPayload, work_dir: str) -> str:
        settings = self.settings
        input_path = os.path.join(work_dir, "input")
        output_path = os.path.join(work_dir, "output.mp4")
        logger.info(f"[VideoTools] Project {job.project_id}: {job.tool_type} of {job.input_blob_id}")

        await self.storage.download_file(job.input_blob_id, input_path)
        size = os.path.getsize(input_path)
        if size > MAX_INPUT_BYTES:
            raise InputTooLargeError(f"Input file exceeds 100MB limit ({size} bytes)")

        command = build_video_tools_command(job, input_path, output_path)
        await run_encoder(command.to_args(settings.ffmpeg_path), settings.encoder_timeout_seconds)
        log_memory("video tool finished")

        result_key = video_tools_result_key(job.user_id, job.project_id, job.output_file_name)
        await self.storage.upload_file(output_path, result_key, "video/mp4")

        result = await finalize_project_success(job.project_id, result_key, self.repository, charge_credits=False)
        if not result.parent_finalized:
            logger.info(f"[VideoTools] Project {job.project_id} already finalized")
        return result_key
