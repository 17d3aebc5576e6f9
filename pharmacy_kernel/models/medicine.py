"""
Module: pharmacy_kernel.models.medicine
Responsibility: ORM persistence for the medicine catalog and known
    medicine-to-medicine interactions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Medicine identity is immutable; medicines are soft-deactivated
      (is_active=False) and never hard-deleted while batches reference them
      (RESTRICT, enforced in db/integrity.py).
    - reorder_point > minimum_stock_level by convention only (not enforced).
    - MedicineInteraction pairs are stored with the smaller id first, so an
      unordered pair has exactly one row.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import Base, TrackedBase, UUIDString


class InteractionType(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"


class Medicine(TrackedBase):
    """
    Catalog entry for a medicine.

    Guarantees:
        - barcode is unique when present.
        - minimum_stock_level drives the LOW_STOCK status projection;
          reorder_point drives reorder alerts and automatic procurement.
    """

    __tablename__ = "medicines"

    __table_args__ = (
        Index("idx_medicines_name", "name"),
        CheckConstraint("minimum_stock_level >= 0", name="ck_medicine_min_stock"),
        CheckConstraint("reorder_point >= 0", name="ck_medicine_reorder_point"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    generic_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    composition: Mapped[str | None] = mapped_column(Text, nullable=True)
    manufacturer: Mapped[str | None] = mapped_column(String(100), nullable=True)
    dosage_form: Mapped[str | None] = mapped_column(String(50), nullable=True)
    strength: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    barcode: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    storage_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    side_effects: Mapped[str | None] = mapped_column(Text, nullable=True)

    requires_prescription: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    minimum_stock_level: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    reorder_point: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    batches = relationship("Batch", back_populates="medicine")

    def __repr__(self) -> str:
        return f"<Medicine {self.name} {self.strength or ''}>"


class MedicineInteraction(Base):
    """Known interaction between two medicines."""

    __tablename__ = "medicine_interactions"

    __table_args__ = (
        UniqueConstraint("medicine_id_1", "medicine_id_2", name="uq_medicine_interaction_pair"),
        CheckConstraint("medicine_id_1 < medicine_id_2", name="ck_interaction_pair_order"),
    )

    medicine_id_1: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medicines.id", ondelete="CASCADE"), nullable=False,
    )
    medicine_id_2: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medicines.id", ondelete="CASCADE"), nullable=False,
    )
    interaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<MedicineInteraction {self.medicine_id_1}<->{self.medicine_id_2} {self.interaction_type}>"
