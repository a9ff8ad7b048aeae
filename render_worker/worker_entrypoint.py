"""Worker entrypoint for Cloud Run.

Runs a health check server and one Celery worker per render queue. Local
encoding and remote rendering get separate concurrency limits.
"""

import logging
import os
import subprocess
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

from render_worker.config import get_settings

logger = logging.getLogger(__name__)


class HealthHandler(BaseHTTPRequestHandler):
    """Simple health check handler."""

    def do_GET(self):
        if self.path == "/health" or self.path == "/":
            self.send_response(200)
            self.send_header("Content-type", "text/plain")
            self.end_headers()
            self.wfile.write(b"OK")
        else:
            self.send_response(404)
            self.end_headers()

    def log_message(self, format, *args):
        # Suppress access logs
        pass


def run_health_server():
    """Run the health check server."""
    port = int(os.environ.get("PORT", 8080))
    server = HTTPServer(("0.0.0.0", port), HealthHandler)
    logger.info(f"Health server running on port {port}")
    server.serve_forever()


def worker_command(queue: str, concurrency: int, node_name: str) -> list[str]:
    return [
        "celery",
        "-A", "render_worker.celery_app",
        "worker",
        "--loglevel=info",
        "-Q", queue,
        f"--concurrency={concurrency}",
        "-n", f"{node_name}@%h",
    ]


def run_celery_workers() -> int:
    """Start one worker per queue and wait; returns the first non-zero exit code."""
    settings = get_settings()
    commands = [
        worker_command(settings.local_render_queue, settings.local_render_concurrency, "local"),
        worker_command(settings.remote_render_queue, settings.remote_render_concurrency, "remote"),
    ]
    processes = [subprocess.Popen(cmd) for cmd in commands]
    exit_code = 0
    for process in processes:
        code = process.wait()
        if code and not exit_code:
            exit_code = code
    return exit_code


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    # Start health server in background thread
    health_thread = threading.Thread(target=run_health_server, daemon=True)
    health_thread.start()

    raise SystemExit(run_celery_workers())
