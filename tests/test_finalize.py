"""Tests for idempotent finalization and post-commit actions."""

import smtplib
import threading
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from render_worker.models import CreditTransaction, Media, MediaStep, Project, User
from render_worker.services.finalize import (
    RESULT_URL_TTL_SECONDS,
    PostCommitAction,
    credit_cost_for,
    finalize_project_success,
    finalize_render_success,
    run_post_commit_actions,
)
from render_worker.services.render_repository import MediaInfo, RenderRepository

RESULT_KEY = "users/u/media/m/video/render/final_render.mp4"


@pytest.fixture
def repository(session_factory):
    return RenderRepository(session_factory)


@pytest.fixture
def storage():
    storage = MagicMock()
    storage.get_signed_url = AsyncMock(return_value="https://signed.example.com/video.mp4")
    return storage


@pytest.fixture
def mailer():
    return MagicMock()


def balance(session_factory, user_id):
    with session_factory() as db:
        return db.get(User, uuid.UUID(user_id)).credits_balance


def ledger(session_factory):
    with session_factory() as db:
        return db.execute(select(CreditTransaction)).scalars().all()


class TestPostCommitActions:
    """Tests for the action runner."""

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self):
        """Test that a failing action does not stop the ones after it."""
        calls = []

        async def ok():
            calls.append("ok")

        async def boom():
            raise RuntimeError("smtp down")

        async def after():
            calls.append("after")

        failed = await run_post_commit_actions([
            PostCommitAction("ok", ok),
            PostCommitAction("boom", boom),
            PostCommitAction("after", after),
        ])

        assert failed == ["boom"]
        assert calls == ["ok", "after"]

    def test_credit_costs(self):
        """Test the duration bucket price table."""
        assert credit_cost_for("30-60") == 1
        assert credit_cost_for("60-90") == 2
        assert credit_cost_for("90-120") == 3
        assert credit_cost_for("45-50") == 1
        assert credit_cost_for(None) == 1


class TestFinalizeRenderSuccess:
    """Tests for media-level finalization."""

    @pytest.mark.asyncio
    async def test_first_success(self, repository, storage, mailer, seeded, session_factory):
        """Test step, media and project completion with one bill and one email."""
        result = await finalize_render_success(
            seeded["media_id"], seeded["step_id"], RESULT_KEY, repository, storage, mailer
        )

        assert result.step_updated is True
        assert result.parent_finalized is True
        assert result.failed_actions == []

        with session_factory() as db:
            assert db.get(MediaStep, uuid.UUID(seeded["step_id"])).status == "success"
            assert db.get(Media, uuid.UUID(seeded["media_id"])).status == "completed"
            assert db.get(Project, uuid.UUID(seeded["project_id"])).output_url == RESULT_KEY

        storage.get_signed_url.assert_awaited_once_with(RESULT_KEY, RESULT_URL_TTL_SECONDS)
        mailer.send_render_complete_email.assert_called_once_with(
            "creator@example.com", "https://signed.example.com/video.mp4", "Volcanoes", "Creator"
        )
        assert balance(session_factory, seeded["user_id"]) == 8
        [tx] = ledger(session_factory)
        assert tx.description == "Media generation: Volcanoes"
        assert tx.extra_metadata["creditCost"] == 2

    @pytest.mark.asyncio
    async def test_second_call_has_no_side_effects(self, repository, storage, mailer, seeded, session_factory):
        """Test that a retried finalization neither bills nor emails again."""
        await finalize_render_success(seeded["media_id"], seeded["step_id"], RESULT_KEY, repository, storage, mailer)
        result = await finalize_render_success(
            seeded["media_id"], seeded["step_id"], RESULT_KEY, repository, storage, mailer
        )

        assert result.step_updated is False
        assert result.parent_finalized is False
        assert mailer.send_render_complete_email.call_count == 1
        assert balance(session_factory, seeded["user_id"]) == 8
        assert len(ledger(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_already_successful_step(self, repository, storage, mailer, seeded, session_factory):
        """Test that a step finalized elsewhere skips everything."""
        repository.update_step_status_only_if_processing(seeded["step_id"], "success", "earlier.mp4")

        result = await finalize_render_success(
            seeded["media_id"], seeded["step_id"], RESULT_KEY, repository, storage, mailer
        )

        assert result.step_updated is False
        with session_factory() as db:
            assert db.get(Media, uuid.UUID(seeded["media_id"])).status == "processing"
        mailer.send_render_complete_email.assert_not_called()
        assert balance(session_factory, seeded["user_id"]) == 10

    @pytest.mark.asyncio
    async def test_media_already_completed(self, repository, storage, mailer, seeded, session_factory):
        """Test that the step is recorded but parent side effects are skipped."""
        repository.finalize_media_only_if_not_completed(seeded["media_id"], "earlier.mp4")

        result = await finalize_render_success(
            seeded["media_id"], seeded["step_id"], RESULT_KEY, repository, storage, mailer
        )

        assert result.step_updated is True
        assert result.parent_finalized is False
        mailer.send_render_complete_email.assert_not_called()
        assert ledger(session_factory) == []

    @pytest.mark.asyncio
    async def test_email_failure_still_bills(self, repository, storage, mailer, seeded, session_factory):
        """Test that an SMTP error is isolated from billing and project propagation."""
        mailer.send_render_complete_email.side_effect = smtplib.SMTPException("relay refused")

        result = await finalize_render_success(
            seeded["media_id"], seeded["step_id"], RESULT_KEY, repository, storage, mailer
        )

        assert result.parent_finalized is True
        assert result.failed_actions == ["completion_email"]
        assert balance(session_factory, seeded["user_id"]) == 8
        with session_factory() as db:
            assert db.get(Project, uuid.UUID(seeded["project_id"])).status == "completed"

    @pytest.mark.asyncio
    async def test_insufficient_credits_is_reported(self, repository, storage, mailer, seeded, session_factory):
        """Test that a failed deduction does not undo completion."""
        with session_factory() as db:
            db.get(User, uuid.UUID(seeded["user_id"])).credits_balance = 1

        result = await finalize_render_success(
            seeded["media_id"], seeded["step_id"], RESULT_KEY, repository, storage, mailer
        )

        assert result.failed_actions == ["credit_deduction"]
        assert balance(session_factory, seeded["user_id"]) == 1
        with session_factory() as db:
            assert db.get(Media, uuid.UUID(seeded["media_id"])).status == "completed"

    @pytest.mark.asyncio
    async def test_blocking_calls_run_off_the_event_loop(self, storage, mailer, seeded):
        """Test that SMTP and database calls run in worker threads."""
        loop_thread = threading.get_ident()
        threads = {}

        def record(name, value):
            def call(*args, **kwargs):
                threads[name] = threading.get_ident()
                return value
            return call

        repository = MagicMock()
        repository.update_step_status_only_if_processing.side_effect = record("step", True)
        repository.finalize_media_only_if_not_completed.side_effect = record("media", True)
        repository.get_media_info.return_value = MediaInfo(
            user_id=seeded["user_id"], input_config={}, project_id=None, email="creator@example.com", name="Creator"
        )
        repository.deduct_credits.side_effect = record("bill", None)
        mailer.send_render_complete_email.side_effect = record("email", None)

        result = await finalize_render_success(
            seeded["media_id"], seeded["step_id"], RESULT_KEY, repository, storage, mailer
        )

        assert result.failed_actions == []
        assert set(threads) == {"step", "media", "bill", "email"}
        assert loop_thread not in threads.values()


class TestFinalizeProjectSuccess:
    """Tests for project-level finalization."""

    @pytest.mark.asyncio
    async def test_bills_project_cost_once(self, repository, seeded, session_factory):
        """Test completion and a single deduction of the project's credit cost."""
        first = await finalize_project_success(seeded["project_id"], "kinetic.mp4", repository)
        second = await finalize_project_success(seeded["project_id"], "kinetic.mp4", repository)

        assert first.parent_finalized is True
        assert first.failed_actions == []
        assert second.parent_finalized is False
        assert balance(session_factory, seeded["user_id"]) == 8
        [tx] = ledger(session_factory)
        assert tx.description == "Kinetic Typography render"
        assert tx.reference_id == seeded["project_id"]

    @pytest.mark.asyncio
    async def test_free_project_completes_without_billing(self, repository, seeded, session_factory):
        """Test that a free render completes the project and leaves credits alone."""
        result = await finalize_project_success(
            seeded["project_id"], "users/u/media/p/video/output.mp4", repository, charge_credits=False
        )

        assert result.parent_finalized is True
        assert balance(session_factory, seeded["user_id"]) == 10
        assert ledger(session_factory) == []
        with session_factory() as db:
            project = db.get(Project, uuid.UUID(seeded["project_id"]))
            assert project.status == "completed"
            assert project.output_url == "users/u/media/p/video/output.mp4"
