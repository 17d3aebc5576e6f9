"""
Module: pharmacy_kernel.models.supplier
Responsibility: ORM persistence for suppliers and their per-order ratings.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Supplier.rating is the mean of all historical SupplierRating.overall_rating
      values (maintained by ProcurementEngine.rate_supplier).
    - Supplier.on_time_delivery_rate is a percentage recomputed only when a
      purchase order transitions to delivered.
    - SupplierRating scores are 1-5 (DB check constraints).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import Base, TrackedBase, UUIDString


class Supplier(TrackedBase):
    """A supplier of medicine batches."""

    __tablename__ = "suppliers"

    __table_args__ = (
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_supplier_rating_range"),
    )

    supplier_name: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(50), nullable=True)
    country: Mapped[str | None] = mapped_column(String(50), nullable=True)

    rating: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    on_time_delivery_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Supplier {self.supplier_name} rating={self.rating}>"


class SupplierRating(Base):
    """Quality, delivery and communication scores for one purchase order."""

    __tablename__ = "supplier_ratings"

    __table_args__ = (
        Index("idx_supplier_ratings_supplier", "supplier_id"),
        CheckConstraint("quality_rating BETWEEN 1 AND 5", name="ck_rating_quality"),
        CheckConstraint("delivery_rating BETWEEN 1 AND 5", name="ck_rating_delivery"),
        CheckConstraint("communication_rating BETWEEN 1 AND 5", name="ck_rating_communication"),
    )

    supplier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False,
    )
    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=True,
    )
    quality_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    communication_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    overall_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    rated_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    rated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
