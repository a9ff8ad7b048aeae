"""FFmpeg subprocess runner with a hard wall-clock timeout."""

import asyncio
import logging
from typing import Sequence

from render_worker.exceptions import EncoderError, EncoderTimeoutError

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000


def stderr_tail(stderr: bytes | str, limit: int = STDERR_TAIL_CHARS) -> str:
    text = stderr.decode("utf-8", errors="replace") if isinstance(stderr, bytes) else stderr
    return text[-limit:]


async def run_encoder(args: Sequence[str], timeout_seconds: float) -> None:
    """Run an encoder invocation to completion.

    Raises:
        EncoderTimeoutError: The process outlived ``timeout_seconds`` and was killed.
        EncoderError: The process could not start or exited non-zero.
    """
    logger.info(f"[FFmpeg] Command: {' '.join(args)}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise EncoderError(f"Failed to start FFmpeg: {e}") from e

    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.error(f"[FFmpeg] Killed after {timeout_seconds}s")
        raise EncoderTimeoutError(f"FFmpeg timed out after {timeout_seconds}s")

    if proc.returncode != 0:
        tail = stderr_tail(stderr or b"")
        logger.error(f"[FFmpeg] Process failed with code {proc.returncode}. Last logs:\n{tail}")
        raise EncoderError(
            f"FFmpeg exited with code {proc.returncode}: {tail}",
            stderr_tail=tail,
        )

    logger.info("[FFmpeg] Process finished successfully")
