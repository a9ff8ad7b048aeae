import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from render_worker.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class Project(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "projects"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Status: draft, processing, completed, failed
    status: Mapped[str] = mapped_column(String(50), default="processing", index=True)
    tool_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    output_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    credit_cost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # "metadata" is reserved on declarative classes
    extra_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Project {self.id} ({self.status})>"
