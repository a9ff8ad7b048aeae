"""Celery application configuration."""

from celery import Celery

from render_worker.config import get_settings

settings = get_settings()

celery_app = Celery(
    "render_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["render_worker.tasks.render_task"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    task_soft_time_limit=3300,  # Soft limit 55 minutes
    worker_prefetch_multiplier=1,  # Process one task at a time
    task_acks_late=True,  # Acknowledge after task completion
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    task_routes={
        "render_worker.tasks.render_task.render_local_task": {"queue": settings.local_render_queue},
        "render_worker.tasks.render_task.render_remote_task": {"queue": settings.remote_render_queue},
    },
)
