"""
Module: pharmacy_kernel.models.batch
Responsibility: ORM persistence for stock lots.  A Batch is one lot of a
    medicine with a single expiry date and an on-hand quantity.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity >= 0 (DB check constraint; the Stock Ledger's compare-and-swap
      update never produces a negative value).
    - batch_number is unique per medicine.
    - version is the optimistic-concurrency counter.  Every quantity change
      increments it; a stale ORM flush raises StaleDataError.
    - Quantity is the single source of truth for availability.  It changes
      only through the Stock Ledger, paired with an InventoryMovement.

Failure modes:
    - IntegrityError on duplicate (medicine_id, batch_number).
    - IntegrityError on a direct write that would make quantity negative.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import TrackedBase, UUIDString


class Batch(TrackedBase):
    """
    One lot of a medicine.

    Guarantees:
        - Deleting a Batch removes its Alerts, Recalls and InventoryMovements.
        - Deleting a Batch with Sales is rejected (db/integrity.py).
    """

    __tablename__ = "batches"

    __table_args__ = (
        UniqueConstraint("medicine_id", "batch_number", name="uq_batch_medicine_number"),
        CheckConstraint("quantity >= 0", name="ck_batch_quantity_non_negative"),
        Index("idx_batches_medicine", "medicine_id"),
        Index("idx_batches_expiry", "expiry_date"),
    )

    medicine_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medicines.id", ondelete="RESTRICT"), nullable=False,
    )
    supplier_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True,
    )
    batch_number: Mapped[str] = mapped_column(String(50), nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    manufacture_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    cost_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    selling_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    mrp: Mapped[Decimal | None] = mapped_column(nullable=True)

    barcode: Mapped[str | None] = mapped_column(String(100), nullable=True)
    storage_location: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ocr_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_recalled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_expired: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    medicine = relationship("Medicine", back_populates="batches")
    supplier = relationship("Supplier")
    alerts = relationship(
        "Alert",
        back_populates="batch",
        cascade="all",
    )
    recalls = relationship(
        "Recall",
        back_populates="batch",
        cascade="all",
        order_by="Recall.recall_date",
    )
    movements = relationship(
        "InventoryMovement",
        back_populates="batch",
        cascade="all",
        order_by="InventoryMovement.movement_date",
    )

    def days_until_expiry(self, today: date) -> int:
        return (self.expiry_date - today).days

    def is_past_expiry(self, today: date) -> bool:
        return self.is_expired or self.expiry_date < today

    def __repr__(self) -> str:
        return f"<Batch {self.batch_number} qty={self.quantity} v{self.version}>"
