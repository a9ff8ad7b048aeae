"""Idempotent finalization shared by every render strategy.

The step update is the single gate: only the attempt that moves the step out
of ``processing`` goes on to finalize the parent, and only the attempt that
completes the parent runs the post-commit actions. Post-commit actions are
best-effort; a failure in one is logged and does not affect the others.

Repository and SMTP calls are blocking, so they run in worker threads.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from render_worker.services.mail_service import MailService
from render_worker.services.render_repository import RenderRepository

logger = logging.getLogger(__name__)

CREDIT_COSTS: dict[str, int] = {
    "30-60": 1,
    "60-90": 2,
    "90-120": 3,
}
DEFAULT_CREDIT_COST = 1
DEFAULT_TOPIC = "Media"
RESULT_URL_TTL_SECONDS = 7 * 24 * 3600


@dataclass(frozen=True)
class PostCommitAction:
    name: str
    run: Callable[[], Awaitable[None]]


@dataclass
class FinalizeResult:
    step_updated: bool = False
    parent_finalized: bool = False
    failed_actions: list[str] = field(default_factory=list)


async def run_post_commit_actions(actions: Iterable[PostCommitAction]) -> list[str]:
    """Run each action in order, isolating failures. Returns the names that failed."""
    failed: list[str] = []
    for action in actions:
        try:
            await action.run()
        except Exception as e:
            logger.error(f"[Finalize] {action.name} failed: {e}")
            failed.append(action.name)
    return failed


def credit_cost_for(duration_bucket: str | None) -> int:
    return CREDIT_COSTS.get(duration_bucket or "", DEFAULT_CREDIT_COST)


async def finalize_render_success(
    media_id: str,
    step_id: str,
    result_ref: str,
    repository: RenderRepository,
    storage,
    mailer: MailService,
) -> FinalizeResult:
    """Mark a render step and its media completed, then bill and notify once."""
    result = FinalizeResult()

    result.step_updated = await asyncio.to_thread(
        repository.update_step_status_only_if_processing, step_id, "success", result_ref
    )
    if not result.step_updated:
        logger.info(f"[Finalize] Step {step_id} already finalized, skipping")
        return result

    result.parent_finalized = await asyncio.to_thread(
        repository.finalize_media_only_if_not_completed, media_id, result_ref
    )
    if not result.parent_finalized:
        logger.info(f"[Finalize] Media {media_id} already completed, skipping side effects")
        return result

    info = await asyncio.to_thread(repository.get_media_info, media_id)
    if info is None:
        logger.warning(f"[Finalize] Media {media_id} not found after completion")
        return result

    config = info.input_config or {}
    duration = config.get("duration") or "30-60"
    topic = config.get("topic") or DEFAULT_TOPIC
    credit_cost = credit_cost_for(duration)

    async def propagate_to_project() -> None:
        await asyncio.to_thread(repository.update_project_on_media_complete, media_id, result_ref)

    async def notify() -> None:
        signed_url = await storage.get_signed_url(result_ref, RESULT_URL_TTL_SECONDS)
        await asyncio.to_thread(mailer.send_render_complete_email, info.email, signed_url, topic, info.name)

    async def bill() -> None:
        await asyncio.to_thread(
            repository.deduct_credits,
            info.user_id,
            credit_cost,
            f"Media generation: {topic}",
            media_id,
            {"media_id": media_id, "topic": topic, "duration": duration, "creditCost": credit_cost},
        )

    actions = [PostCommitAction("project_propagation", propagate_to_project)]
    if info.email:
        actions.append(PostCommitAction("completion_email", notify))
    if info.user_id:
        actions.append(PostCommitAction("credit_deduction", bill))

    result.failed_actions = await run_post_commit_actions(actions)
    logger.info(f"[Finalize] Media {media_id} completed with {result_ref}")
    return result


async def finalize_project_success(
    project_id: str,
    result_ref: str,
    repository: RenderRepository,
    charge_credits: bool = True,
) -> FinalizeResult:
    """Project-level finalization for kinetic typography and video tool renders.

    Video tools are free, so they finalize with ``charge_credits=False``.
    """
    result = FinalizeResult(step_updated=True)

    result.parent_finalized = await asyncio.to_thread(
        repository.finalize_project_only_if_not_completed, project_id, result_ref
    )
    if not result.parent_finalized:
        logger.info(f"[Finalize] Project {project_id} already completed, skipping side effects")
        return result

    if not charge_credits:
        logger.info(f"[Finalize] Project {project_id} completed with {result_ref}")
        return result

    info = await asyncio.to_thread(repository.get_project_info, project_id)
    if info is None or not info.user_id:
        return result

    async def bill() -> None:
        if info.credit_cost <= 0:
            return
        await asyncio.to_thread(
            repository.deduct_credits,
            info.user_id,
            info.credit_cost,
            "Kinetic Typography render",
            project_id,
            {"project_id": project_id, "tool_type": "kinetic-typography", "creditCost": info.credit_cost},
        )

    result.failed_actions = await run_post_commit_actions([PostCommitAction("credit_deduction", bill)])
    logger.info(f"[Finalize] Project {project_id} completed with {result_ref}")
    return result
