"""
Module: pharmacy_kernel.models.recall
Responsibility: ORM persistence for batch recalls.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - affected_quantity is the batch quantity at the moment of the recall.
    - 0 <= returned_quantity <= affected_quantity.
    - Status moves active -> resolved | cancelled only.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import Base, UUIDString


class RecallStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class Recall(Base):
    """A recall announced against one batch."""

    __tablename__ = "recalls"

    __table_args__ = (
        CheckConstraint("affected_quantity >= 0", name="ck_recall_affected"),
        CheckConstraint(
            "returned_quantity >= 0 AND returned_quantity <= affected_quantity",
            name="ck_recall_returned",
        ),
        Index("idx_recalls_batch", "batch_id"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("batches.id", ondelete="CASCADE"), nullable=False,
    )
    recall_reason: Mapped[str] = mapped_column(Text, nullable=False)
    recall_date: Mapped[date] = mapped_column(Date, nullable=False)
    announced_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RecallStatus.ACTIVE.value)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    affected_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    returned_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    batch = relationship("Batch", back_populates="recalls")
    alerts = relationship("Alert", back_populates="recall", cascade="all")

    def __repr__(self) -> str:
        return f"<Recall batch={self.batch_id} {self.status}>"
