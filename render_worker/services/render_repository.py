"""Database access for render bookkeeping.

State transitions are conditional UPDATEs (compare-and-swap on ``status``),
so concurrent or retried attempts can race without a lock: whichever attempt
wins the update performs the side effects, the others see ``False``.
"""

import logging
import uuid
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from render_worker.exceptions import InsufficientCreditsError, RenderWorkerError
from render_worker.models import CreditTransaction, Media, MediaAsset, MediaStep, Project, User

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


@dataclass
class MediaInfo:
    user_id: str | None
    input_config: dict[str, Any]
    project_id: str | None
    email: str | None
    name: str | None


@dataclass
class ProjectInfo:
    user_id: str
    credit_cost: int
    metadata: dict[str, Any] | None


def _as_uuid(value: "str | uuid.UUID") -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class RenderRepository:
    """Conditional state transitions and read accessors used by render jobs."""

    def __init__(self, session_factory: SessionFactory | None = None):
        if session_factory is None:
            from render_worker.models.database import get_sync_db

            session_factory = get_sync_db
        self._session_factory = session_factory

    def update_step_status_only_if_processing(
        self,
        step_id: str,
        status: str,
        result_ref: Any = None,
        error_message: str | None = None,
    ) -> bool:
        """Move a step out of ``processing``. Returns whether this call applied it."""
        with self._session_factory() as db:
            result = db.execute(
                update(MediaStep)
                .where(MediaStep.id == _as_uuid(step_id), MediaStep.status == "processing")
                .values(
                    status=status,
                    blob_storage_id=result_ref,
                    error_message=error_message,
                    completed_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def finalize_media_only_if_not_completed(self, media_id: str, result_ref: str) -> bool:
        with self._session_factory() as db:
            result = db.execute(
                update(Media)
                .where(Media.id == _as_uuid(media_id), Media.status != "completed")
                .values(status="completed", blob_storage_id=result_ref, completed_at=func.now())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def update_project_on_media_complete(self, media_id: str, result_ref: str) -> bool:
        """Complete the project linked to a media row, if any and not already completed."""
        with self._session_factory() as db:
            project_id = db.execute(
                select(Media.project_id).where(Media.id == _as_uuid(media_id))
            ).scalar_one_or_none()
            if project_id is None:
                return False
            result = db.execute(
                update(Project)
                .where(Project.id == project_id, Project.status != "completed")
                .values(status="completed", output_url=result_ref, completed_at=func.now())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def finalize_project_only_if_not_completed(self, project_id: str, result_ref: str) -> bool:
        with self._session_factory() as db:
            result = db.execute(
                update(Project)
                .where(Project.id == _as_uuid(project_id), Project.status != "completed")
                .values(status="completed", output_url=result_ref, completed_at=func.now())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def record_step_failure(self, step_id: str, error_message: str, *, final: bool) -> bool:
        """Persist a failed attempt on a step still in ``processing``.

        Only the final attempt flips the status to ``failed``; earlier attempts
        keep ``processing`` so a later retry can still finalize the step.
        """
        values: dict[str, Any] = {"error_message": error_message}
        if final:
            values.update(status="failed", completed_at=func.now())
        with self._session_factory() as db:
            result = db.execute(
                update(MediaStep)
                .where(MediaStep.id == _as_uuid(step_id), MediaStep.status == "processing")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def record_project_failure(self, project_id: str, error_message: str, *, final: bool) -> bool:
        values: dict[str, Any] = {"error_message": error_message}
        if final:
            values["status"] = "failed"
        with self._session_factory() as db:
            result = db.execute(
                update(Project)
                .where(Project.id == _as_uuid(project_id), Project.status != "completed")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def get_media_info(self, media_id: str) -> MediaInfo | None:
        with self._session_factory() as db:
            row = db.execute(
                select(Media.user_id, Media.input_config, Media.project_id, User.email, User.name)
                .outerjoin(User, Media.user_id == User.id)
                .where(Media.id == _as_uuid(media_id))
            ).one_or_none()
            if row is None:
                return None
            return MediaInfo(
                user_id=str(row.user_id) if row.user_id else None,
                input_config=row.input_config or {},
                project_id=str(row.project_id) if row.project_id else None,
                email=row.email,
                name=row.name,
            )

    def get_project_info(self, project_id: str) -> ProjectInfo | None:
        with self._session_factory() as db:
            project = db.get(Project, _as_uuid(project_id))
            if project is None:
                return None
            return ProjectInfo(
                user_id=str(project.user_id),
                credit_cost=project.credit_cost or 0,
                metadata=project.extra_metadata,
            )

    def add_asset(self, media_id: str, asset_type: str, result_ref: str) -> None:
        with self._session_factory() as db:
            db.add(MediaAsset(media_id=_as_uuid(media_id), type=asset_type, blob_storage_id=result_ref))

    def deduct_credits(
        self,
        user_id: str,
        amount: int,
        description: str,
        reference_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Debit a user's balance and record the ledger entry. Returns the new balance.

        Raises:
            InsufficientCreditsError: Balance is lower than ``amount``.
        """
        with self._session_factory() as db:
            user = db.execute(
                select(User).where(User.id == _as_uuid(user_id)).with_for_update()
            ).scalar_one_or_none()
            if user is None:
                raise RenderWorkerError(f"User not found: {user_id}", code="USER_NOT_FOUND")
            if user.credits_balance < amount:
                raise InsufficientCreditsError(
                    f"Insufficient credits: balance {user.credits_balance}, need {amount}"
                )

            user.credits_balance -= amount
            db.add(
                CreditTransaction(
                    user_id=user.id,
                    transaction_type="deduction",
                    amount=-amount,
                    balance_after=user.credits_balance,
                    description=description,
                    reference_id=reference_id,
                    extra_metadata=metadata,
                )
            )
            logger.info(f"[Credits] Deducted {amount} from user {user_id}, balance {user.credits_balance}")
            return user.credits_balance
