"""Tests for the worker process launcher."""

from unittest.mock import MagicMock, patch

from render_worker.config import Settings
from render_worker.worker_entrypoint import run_celery_workers, worker_command


class TestWorkerEntrypoint:
    """Tests for per-queue worker processes."""

    def test_worker_command(self):
        """Test the celery invocation for one queue."""
        assert worker_command("render-tasks", 1, "local") == [
            "celery", "-A", "render_worker.celery_app", "worker", "--loglevel=info",
            "-Q", "render-tasks", "--concurrency=1", "-n", "local@%h",
        ]

    def test_one_worker_per_queue(self):
        """Test that each queue gets its own process and concurrency."""
        settings = Settings(local_render_concurrency=1, remote_render_concurrency=6)
        process = MagicMock()
        process.wait.return_value = 0
        with patch("render_worker.worker_entrypoint.get_settings", return_value=settings), \
                patch("render_worker.worker_entrypoint.subprocess.Popen", return_value=process) as popen:
            assert run_celery_workers() == 0

        commands = [call.args[0] for call in popen.call_args_list]
        assert [cmd[cmd.index("-Q") + 1] for cmd in commands] == ["render-tasks", "remotion-render-tasks"]
        assert "--concurrency=6" in commands[1]

    def test_exit_code_propagates(self):
        """Test that a crashed worker's exit code is returned."""
        ok, crashed = MagicMock(), MagicMock()
        ok.wait.return_value = 0
        crashed.wait.return_value = 137
        with patch("render_worker.worker_entrypoint.subprocess.Popen", side_effect=[ok, crashed]):
            assert run_celery_workers() == 137
