"""Celery tasks for video rendering."""

import asyncio
import logging
from typing import Any

from render_worker.celery_app import celery_app
from render_worker.config import get_settings
from render_worker.exceptions import InvalidJobPayloadError
from render_worker.render.pipeline import RenderPipeline
from render_worker.render.router import RenderStrategy, route_job
from render_worker.schemas.jobs import parse_job_payload

logger = logging.getLogger(__name__)

settings = get_settings()


def _run_attempt(task, payload: dict[str, Any], strategy: RenderStrategy) -> dict:
    """Validate the payload and run one attempt, retrying on failure.

    An invalid payload is not retried: no later attempt could succeed.
    """
    try:
        job = parse_job_payload(payload)
    except InvalidJobPayloadError as e:
        logger.error(f"[Task] Rejected payload: {e.message}")
        return {"status": "error", "code": e.code, "message": e.message}

    final_attempt = task.request.retries >= task.max_retries
    logger.info(
        f"[Task] {job.kind} job {job.job_id or task.request.id} via {strategy.value} "
        f"(attempt {task.request.retries + 1}/{task.max_retries + 1})"
    )

    pipeline = RenderPipeline()

    # Run the async pipeline in a fresh event loop
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(pipeline.run(job, strategy, final_attempt=final_attempt))
    except Exception as e:
        logger.error(f"[Task] Attempt failed: {e}")
        if not final_attempt:
            countdown = settings.task_retry_backoff_seconds * (2 ** task.request.retries)
            raise task.retry(exc=e, countdown=countdown)
        raise
    finally:
        loop.close()


@celery_app.task(bind=True, max_retries=settings.task_max_retries)
def render_local_task(self, payload: dict[str, Any]) -> dict:
    """Encode a reel or run a video tool on this worker with FFmpeg."""
    return _run_attempt(self, payload, RenderStrategy.LOCAL_ENCODE)


@celery_app.task(bind=True, max_retries=settings.task_max_retries)
def render_remote_task(self, payload: dict[str, Any]) -> dict:
    """Render a reel, stock-video reel or kinetic typography video remotely."""
    return _run_attempt(self, payload, RenderStrategy.REMOTE_RENDER)


def submit_render_job(payload: dict[str, Any]):
    """Validate, route and enqueue a job on its strategy's queue.

    Raises:
        InvalidJobPayloadError: The payload matches no job kind.
    """
    job = parse_job_payload(payload)
    strategy = route_job(job, settings.remote_render_enabled)
    if strategy is RenderStrategy.LOCAL_ENCODE:
        task, queue = render_local_task, settings.local_render_queue
    else:
        task, queue = render_remote_task, settings.remote_render_queue

    logger.info(f"[Submit] {job.kind} job {job.job_id} -> {strategy.value} ({queue})")
    return task.apply_async(args=[job.model_dump(mode="json", by_alias=True)], queue=queue)
