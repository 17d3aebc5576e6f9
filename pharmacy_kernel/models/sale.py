"""
Module: pharmacy_kernel.models.sale
Responsibility: ORM persistence for dispensing records.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Sales are append-only: no UPDATE, no DELETE (db/integrity.py).
    - quantity_sold > 0 (DB check constraint).
    - total_amount == quantity_sold * sale_price exactly (computed by the
      Sale Transaction Processor; no discount is applied).
    - A Sale exists only if quantity_sold <= batch quantity at commit time.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import Base, UUIDString


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    INSURANCE = "insurance"


class Sale(Base):
    """An immutable record of medicine dispensed from a batch."""

    __tablename__ = "sales"

    __table_args__ = (
        CheckConstraint("quantity_sold > 0", name="ck_sale_quantity_positive"),
        Index("idx_sales_batch", "batch_id"),
        Index("idx_sales_date", "sale_date"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("batches.id", ondelete="RESTRICT"), nullable=False,
    )
    prescription_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("prescriptions.id", ondelete="SET NULL"), nullable=True,
    )
    quantity_sold: Mapped[int] = mapped_column(Integer, nullable=False)
    sale_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    customer_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    sold_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sale_date: Mapped[datetime] = mapped_column(nullable=False)

    batch = relationship("Batch")

    def __repr__(self) -> str:
        return f"<Sale {self.quantity_sold} x {self.sale_price} = {self.total_amount}>"
