"""Strategy routing between local FFmpeg encoding and the remote renderer."""

from enum import Enum

from render_worker.render.pacing import DurationBucket
from render_worker.schemas.jobs import ReelJobPayload, RenderJobPayload, VideoToolsJobPayload


class RenderStrategy(str, Enum):
    LOCAL_ENCODE = "local"
    REMOTE_RENDER = "remote"


def select_strategy(duration_bucket: "str | DurationBucket | None", remote_enabled: bool) -> RenderStrategy:
    """Shortest bucket goes remote when enabled; everything else encodes locally.

    Unknown buckets are treated as the longest bucket.
    """
    bucket = DurationBucket.parse(duration_bucket)
    if remote_enabled and bucket is DurationBucket.SHORT:
        return RenderStrategy.REMOTE_RENDER
    return RenderStrategy.LOCAL_ENCODE


def route_job(job: RenderJobPayload, remote_enabled: bool) -> RenderStrategy:
    """Reels follow the bucket policy; stock-video and kinetic jobs need the remote compositions.

    Video tools are plain FFmpeg transcodes and always run locally.
    """
    if isinstance(job, ReelJobPayload):
        return select_strategy(job.duration_bucket, remote_enabled)
    if isinstance(job, VideoToolsJobPayload):
        return RenderStrategy.LOCAL_ENCODE
    return RenderStrategy.REMOTE_RENDER
