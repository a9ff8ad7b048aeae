"""Tests for the remote render client."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from render_worker.config import Settings
from render_worker.exceptions import ConfigurationError, RemoteRenderError, RemoteRenderTimeoutError
from render_worker.render.remote_client import (
    OUTPUT_PRESIGN_TTL_SECONDS,
    LambdaRenderBackend,
    RemoteRenderClient,
    RenderHandle,
    RenderProgress,
)

RESULT_KEY = "users/u1/media/m1/video/render/final_render.mp4"


class FakeBackend:
    """Scripted progress sequence; the last entry repeats."""

    def __init__(self, progresses):
        self.progresses = list(progresses)
        self.started = []
        self.presigned = []

    def start_render(self, composition, input_props, out_name):
        self.started.append((composition, input_props, out_name))
        return RenderHandle(render_id="r-1", bucket_name="remotionlambda-bucket")

    def get_progress(self, handle):
        if len(self.progresses) > 1:
            return self.progresses.pop(0)
        return self.progresses[0]

    def presign_output(self, handle, key, expires_seconds):
        self.presigned.append((handle.bucket_name, key, expires_seconds))
        return f"https://s3.example.com/{key}"


class FakeClock:
    """Monotonic clock advanced only by the injected sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def http_factory(responses):
    """AsyncClient factory replaying (status, body) pairs; records request URLs."""
    calls = []
    queue = list(responses)

    def handler(request):
        calls.append(str(request.url))
        status, body = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status, content=body)

    def factory():
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    factory.calls = calls
    return factory


@pytest.fixture
def settings():
    return Settings(remote_poll_interval_seconds=3.0, remote_poll_timeout_seconds=30)


@pytest.fixture
def storage():
    storage = MagicMock()
    storage.upload_bytes = AsyncMock(side_effect=lambda key, data, content_type=None: key)
    return storage


def make_client(backend, storage, settings, clock, responses=((200, b"video-bytes"),)):
    factory = http_factory(responses)
    client = RemoteRenderClient(
        backend,
        storage,
        settings,
        http_client_factory=factory,
        sleep=clock.sleep,
        clock=clock,
    )
    return client, factory


class TestRenderProgress:
    """Tests for progress interpretation."""

    def test_output_key_prefers_out_key(self):
        """Test outKey over outputFile."""
        assert RenderProgress(done=True, out_key="a.mp4", output_file="b.mp4").output_key() == "a.mp4"

    def test_output_file_used_when_not_url(self):
        """Test outputFile as a key only when it is not a URL."""
        assert RenderProgress(done=True, output_file="renders/r/out.mp4").output_key() == "renders/r/out.mp4"
        assert RenderProgress(done=True, output_file="https://bucket/out.mp4").output_key() is None

    def test_failure_message_precedence(self):
        """Test errors[0], then errorMessage, then the default."""
        assert RenderProgress(fatal_error=True, errors=["first", "second"], error_message="x").failure_message() == "first"
        assert RenderProgress(fatal_error=True, error_message="lambda crashed").failure_message() == "lambda crashed"
        assert RenderProgress(fatal_error=True).failure_message() == "Remote render failed"


class TestRemoteRenderClient:
    """Tests for submit, poll, download and store."""

    @pytest.mark.asyncio
    async def test_success_after_polls(self, settings, storage):
        """Test polling until done, then presign, download and upload."""
        backend = FakeBackend([
            RenderProgress(overall_progress=0.1),
            RenderProgress(overall_progress=0.6),
            RenderProgress(done=True, out_key="renders/r-1/out.mp4"),
        ])
        clock = FakeClock()
        client, factory = make_client(backend, storage, settings, clock)

        key = await client.render("ReelComposition", {"audioUrl": "a"}, "render-m1.mp4", RESULT_KEY)

        assert key == RESULT_KEY
        assert backend.started == [("ReelComposition", {"audioUrl": "a"}, "render-m1.mp4")]
        assert backend.presigned == [("remotionlambda-bucket", "renders/r-1/out.mp4", OUTPUT_PRESIGN_TTL_SECONDS)]
        assert factory.calls == ["https://s3.example.com/renders/r-1/out.mp4"]
        storage.upload_bytes.assert_awaited_once_with(RESULT_KEY, b"video-bytes", "video/mp4")
        assert clock.sleeps == [3.0, 3.0]

    @pytest.mark.asyncio
    async def test_fatal_error_message(self, settings, storage):
        """Test that a fatal error surfaces the first reported error."""
        backend = FakeBackend([RenderProgress(fatal_error=True, errors=["Chromium crashed", "retry failed"])])
        client, _ = make_client(backend, storage, settings, FakeClock())

        with pytest.raises(RemoteRenderError, match="Chromium crashed"):
            await client.render("ReelComposition", {}, "render-m1.mp4", RESULT_KEY)
        storage.upload_bytes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_done_without_output_key(self, settings, storage):
        """Test that completion without a usable key is an error."""
        backend = FakeBackend([RenderProgress(done=True, output_file="https://public.example.com/out.mp4")])
        client, _ = make_client(backend, storage, settings, FakeClock())

        with pytest.raises(RemoteRenderError, match="no output key"):
            await client.render("ReelComposition", {}, "render-m1.mp4", RESULT_KEY)

    @pytest.mark.asyncio
    async def test_timeout(self, settings, storage):
        """Test the hard deadline while the render never completes."""
        backend = FakeBackend([RenderProgress(overall_progress=0.2)])
        clock = FakeClock()
        client, _ = make_client(backend, storage, settings, clock)

        with pytest.raises(RemoteRenderTimeoutError):
            await client.render("ReelComposition", {}, "render-m1.mp4", RESULT_KEY)

        assert len(clock.sleeps) == 10
        storage.upload_bytes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_download_retries_404(self, settings, storage):
        """Test that 404s are retried while the output propagates."""
        backend = FakeBackend([RenderProgress(done=True, out_key="out.mp4")])
        clock = FakeClock()
        client, factory = make_client(
            backend, storage, settings, clock, responses=[(404, b""), (404, b""), (200, b"late-bytes")]
        )

        await client.render("ReelComposition", {}, "render-m1.mp4", RESULT_KEY)

        assert len(factory.calls) == 3
        assert clock.sleeps == [2.0, 2.0]
        storage.upload_bytes.assert_awaited_once_with(RESULT_KEY, b"late-bytes", "video/mp4")

    @pytest.mark.asyncio
    async def test_download_gives_up_after_three_404s(self, settings, storage):
        """Test the download attempt limit."""
        backend = FakeBackend([RenderProgress(done=True, out_key="out.mp4")])
        client, factory = make_client(backend, storage, settings, FakeClock(), responses=[(404, b"")])

        with pytest.raises(RemoteRenderError, match="Failed to download render: 404"):
            await client.render("ReelComposition", {}, "render-m1.mp4", RESULT_KEY)
        assert len(factory.calls) == 3

    @pytest.mark.asyncio
    async def test_download_server_error_not_retried(self, settings, storage):
        """Test that non-404 failures are not retried."""
        backend = FakeBackend([RenderProgress(done=True, out_key="out.mp4")])
        client, factory = make_client(backend, storage, settings, FakeClock(), responses=[(500, b"")])

        with pytest.raises(RemoteRenderError, match="500"):
            await client.render("ReelComposition", {}, "render-m1.mp4", RESULT_KEY)
        assert len(factory.calls) == 1


class TestLambdaBackend:
    """Tests for backend configuration checks."""

    def test_requires_serve_url_and_function(self):
        """Test that missing renderer settings fail fast."""
        with pytest.raises(ConfigurationError):
            LambdaRenderBackend(Settings(remotion_serve_url="", remotion_function_name=""))
