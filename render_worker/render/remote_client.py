"""Remote render client (Remotion Lambda).

The client submits a composition with its input props, polls progress on a
fixed interval until a hard deadline, then downloads the output object and
stores it under the caller's result key.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import httpx

from render_worker.config import Settings, get_settings
from render_worker.exceptions import ConfigurationError, RemoteRenderError, RemoteRenderTimeoutError

logger = logging.getLogger(__name__)

OUTPUT_PRESIGN_TTL_SECONDS = 900
DOWNLOAD_ATTEMPTS = 3
DOWNLOAD_RETRY_DELAY_SECONDS = 2.0
DEFAULT_FATAL_MESSAGE = "Remote render failed"


@dataclass
class RenderHandle:
    render_id: str
    bucket_name: str


@dataclass
class RenderProgress:
    done: bool = False
    fatal_error: bool = False
    overall_progress: float | None = None
    out_key: str | None = None
    output_file: str | None = None
    error_message: str | None = None
    errors: list[str] = field(default_factory=list)

    def output_key(self) -> str | None:
        """Object key of the finished render; ``outputFile`` only counts when it is not a URL."""
        if self.out_key:
            return self.out_key
        if self.output_file and not self.output_file.startswith("http"):
            return self.output_file
        return None

    def failure_message(self) -> str:
        if self.errors and self.errors[0]:
            return self.errors[0]
        return self.error_message or DEFAULT_FATAL_MESSAGE


class RemoteRenderBackend(Protocol):
    def start_render(self, composition: str, input_props: dict[str, Any], out_name: str) -> RenderHandle: ...

    def get_progress(self, handle: RenderHandle) -> RenderProgress: ...

    def presign_output(self, handle: RenderHandle, key: str, expires_seconds: int) -> str: ...


def _error_text(error: Any) -> str | None:
    if isinstance(error, dict):
        return error.get("message")
    if isinstance(error, str):
        return error
    return getattr(error, "message", None)


class LambdaRenderBackend:
    """Remotion Lambda via the ``remotion-lambda`` SDK, S3 presigning via boto3."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        if not settings.remotion_serve_url or not settings.remotion_function_name:
            raise ConfigurationError("REMOTION_SERVE_URL and REMOTION_FUNCTION_NAME must be set")

        import boto3
        from remotion_lambda import RemotionClient

        self.settings = settings
        self._client = RemotionClient(
            region=settings.remotion_region,
            serve_url=settings.remotion_serve_url,
            function_name=settings.remotion_function_name,
        )
        self._s3 = boto3.client("s3", region_name=settings.remotion_region)

    def start_render(self, composition: str, input_props: dict[str, Any], out_name: str) -> RenderHandle:
        from remotion_lambda import Privacy, RenderMediaParams, ValidStillImageFormats

        params = RenderMediaParams(
            composition=composition,
            input_props=input_props,
            codec="h264",
            image_format=ValidStillImageFormats.JPEG,
            max_retries=1,
            out_name=out_name,
            frames_per_lambda=self.settings.remotion_frames_per_lambda,
            privacy=Privacy.PRIVATE,
        )
        response = self._client.render_media_on_lambda(params)
        if response is None:
            raise RemoteRenderError("Remote renderer did not accept the render")
        return RenderHandle(render_id=response.render_id, bucket_name=response.bucket_name)

    def get_progress(self, handle: RenderHandle) -> RenderProgress:
        raw = self._client.get_render_progress(render_id=handle.render_id, bucket_name=handle.bucket_name)
        errors = [text for text in (_error_text(e) for e in (getattr(raw, "errors", None) or [])) if text]
        return RenderProgress(
            done=bool(getattr(raw, "done", False)),
            fatal_error=bool(getattr(raw, "fatalErrorEncountered", False)),
            overall_progress=getattr(raw, "overallProgress", None),
            out_key=getattr(raw, "outKey", None),
            output_file=getattr(raw, "outputFile", None),
            error_message=getattr(raw, "errorMessage", None),
            errors=errors,
        )

    def presign_output(self, handle: RenderHandle, key: str, expires_seconds: int) -> str:
        return self._s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": handle.bucket_name, "Key": key},
            ExpiresIn=expires_seconds,
        )


class RemoteRenderClient:
    """Submit, poll, download, store."""

    def __init__(
        self,
        backend: RemoteRenderBackend,
        storage,
        settings: Settings | None = None,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings()
        self.backend = backend
        self.storage = storage
        self.poll_interval = settings.remote_poll_interval_seconds
        self.timeout = settings.remote_poll_timeout_seconds
        self._http_client_factory = http_client_factory or (lambda: httpx.AsyncClient(timeout=120.0))
        self._sleep = sleep
        self._clock = clock

    async def render(self, composition: str, input_props: dict[str, Any], out_name: str, result_key: str) -> str:
        """Render remotely and store the output under ``result_key``.

        Raises:
            RemoteRenderError: The renderer reported a fatal error, finished
                without an output key, or the output could not be downloaded.
            RemoteRenderTimeoutError: No completion before the deadline.
        """
        handle = await asyncio.to_thread(self.backend.start_render, composition, input_props, out_name)
        logger.info(f"[RemoteRender] Started renderId={handle.render_id} ({composition}), polling...")

        deadline = self._clock() + self.timeout
        poll_count = 0
        while self._clock() < deadline:
            progress = await asyncio.to_thread(self.backend.get_progress, handle)

            if progress.done:
                key = progress.output_key()
                if not key:
                    raise RemoteRenderError("Remote render finished but no output key")
                logger.info(f"[RemoteRender] Render {handle.render_id} done, downloading {key}")
                url = await asyncio.to_thread(
                    self.backend.presign_output, handle, key, OUTPUT_PRESIGN_TTL_SECONDS
                )
                data = await self._download(url)
                await self.storage.upload_bytes(result_key, data, "video/mp4")
                logger.info(f"[RemoteRender] Stored {len(data)} bytes at {result_key}")
                return result_key

            if progress.fatal_error:
                message = progress.failure_message()
                logger.error(f"[RemoteRender] Render {handle.render_id} fatal error: {message}")
                for i, extra in enumerate(progress.errors[1:], start=1):
                    logger.error(f"[RemoteRender] error[{i}]: {extra}")
                raise RemoteRenderError(message)

            poll_count += 1
            if poll_count == 1 or poll_count % 10 == 0:
                pct = ""
                if progress.overall_progress is not None:
                    pct = f" progress={round(progress.overall_progress * 100)}%"
                logger.info(f"[RemoteRender] Poll #{poll_count}{pct}")
            await self._sleep(self.poll_interval)

        raise RemoteRenderTimeoutError(
            f"Remote render {handle.render_id} timed out after {int(self.timeout // 60)} minutes"
        )

    async def _download(self, url: str) -> bytes:
        """Fetch the output, retrying 404s while the object propagates."""
        response: httpx.Response | None = None
        async with self._http_client_factory() as client:
            for attempt in range(1, DOWNLOAD_ATTEMPTS + 1):
                response = await client.get(url)
                if response.is_success:
                    return response.content
                if response.status_code == 404 and attempt < DOWNLOAD_ATTEMPTS:
                    logger.warning(f"[RemoteRender] Download attempt {attempt} got 404, retrying...")
                    await self._sleep(DOWNLOAD_RETRY_DELAY_SECONDS)
                    continue
                break
        status = response.status_code if response is not None else "unknown"
        raise RemoteRenderError(f"Failed to download render: {status}")
