import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from render_worker.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class Media(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "media"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Status: pending, processing, completed, failed
    status: Mapped[str] = mapped_column(String(50), default="processing", index=True)
    # Upstream request: duration bucket, topic, language, ...
    input_config: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    blob_storage_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    steps: Mapped[list["MediaStep"]] = relationship(
        "MediaStep", back_populates="media", cascade="all, delete-orphan"
    )
    assets: Mapped[list["MediaAsset"]] = relationship(
        "MediaAsset", back_populates="media", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Media {self.id} ({self.status})>"


class MediaStep(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "media_steps"

    media_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("media.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step: Mapped[str] = mapped_column(String(50), default="render")

    # Status: pending, processing, success, failed
    status: Mapped[str] = mapped_column(String(50), default="processing", index=True)
    blob_storage_id: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    media: Mapped["Media"] = relationship("Media", back_populates="steps")

    def __repr__(self) -> str:
        return f"<MediaStep {self.step} ({self.status})>"


class MediaAsset(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "media_assets"

    media_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("media.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Asset type: audio, caption, image, video
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    blob_storage_id: Mapped[str] = mapped_column(Text, nullable=False)

    media: Mapped["Media"] = relationship("Media", back_populates="assets")
