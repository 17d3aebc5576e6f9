"""
Module: pharmacy_kernel.models.movement
Responsibility: ORM persistence for the append-only inventory movement
    ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Movements are never updated, and deleted only together with their
      batch (db/integrity.py).
    - For every batch, initial purchase quantity plus the sum of all later
      signed movement quantities equals the current batch quantity.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import Base, UUIDString


class MovementType(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    RETURN = "return"
    ADJUSTMENT = "adjustment"
    DISPOSAL = "disposal"


class ReferenceType(str, Enum):
    """Record that caused a movement."""

    SALE = "sale"
    PURCHASE_ORDER = "purchase_order"
    RECALL = "recall"


class InventoryMovement(Base):
    """A signed quantity change on a batch."""

    __tablename__ = "inventory_movements"

    __table_args__ = (
        Index("idx_movements_batch", "batch_id"),
        Index("idx_movements_reference", "reference_type", "reference_id"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("batches.id", ondelete="CASCADE"), nullable=False,
    )
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    moved_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    movement_date: Mapped[datetime] = mapped_column(nullable=False)

    batch = relationship("Batch", back_populates="movements")

    def __repr__(self) -> str:
        return f"<InventoryMovement {self.movement_type} {self.quantity:+d}>"
