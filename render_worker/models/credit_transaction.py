import uuid
from typing import Any

from sqlalchemy import ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from render_worker.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class CreditTransaction(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "credit_transactions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Transaction type: deduction, purchase, refund
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    extra_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<CreditTransaction {self.transaction_type} {self.amount}>"
