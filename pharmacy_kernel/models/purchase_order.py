"""
Module: pharmacy_kernel.models.purchase_order
Responsibility: ORM persistence for purchase orders and the externally
    produced demand predictions that size automatic orders.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - order_number is unique.  Automatic orders use
      "<prefix>-YYYYMMDD-<medicine_id>", so a retried auto-order for the same
      medicine on the same day resolves to the existing row.
    - Status moves forward only (pending -> approved -> shipped -> delivered,
      skipping allowed); any non-terminal status may move to cancelled.
      delivered and cancelled are terminal.
    - PredictedDemand rows are written by the forecasting collaborator and
      never modified by the engine.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import Base, UUIDString


class PurchaseOrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


_FORWARD_ORDER = (
    PurchaseOrderStatus.PENDING,
    PurchaseOrderStatus.APPROVED,
    PurchaseOrderStatus.SHIPPED,
    PurchaseOrderStatus.DELIVERED,
)

TERMINAL_ORDER_STATUSES = frozenset(
    {PurchaseOrderStatus.DELIVERED, PurchaseOrderStatus.CANCELLED}
)


def is_valid_order_transition(current: PurchaseOrderStatus, target: PurchaseOrderStatus) -> bool:
    if current in TERMINAL_ORDER_STATUSES:
        return False
    if target == PurchaseOrderStatus.CANCELLED:
        return True
    return _FORWARD_ORDER.index(target) > _FORWARD_ORDER.index(current)


class PurchaseOrder(Base):
    """An order placed with a supplier for one medicine."""

    __tablename__ = "purchase_orders"

    __table_args__ = (
        CheckConstraint("quantity_ordered > 0", name="ck_order_quantity_positive"),
        Index("idx_purchase_orders_medicine", "medicine_id"),
        Index("idx_purchase_orders_supplier", "supplier_id"),
    )

    order_number: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    supplier_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True,
    )
    medicine_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medicines.id", ondelete="CASCADE"), nullable=False,
    )
    quantity_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    expected_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PurchaseOrderStatus.PENDING.value,
    )
    auto_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    supplier = relationship("Supplier")
    medicine = relationship("Medicine")

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.order_number} {self.status}>"


class PredictedDemand(Base):
    """Forecast demand for a medicine on a date."""

    __tablename__ = "predicted_demand"

    __table_args__ = (
        CheckConstraint("predicted_quantity > 0", name="ck_prediction_quantity_positive"),
        Index("idx_predicted_demand_medicine_date", "medicine_id", "predicted_date"),
    )

    medicine_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medicines.id", ondelete="CASCADE"), nullable=False,
    )
    predicted_date: Mapped[date] = mapped_column(Date, nullable=False)
    predicted_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence_score: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    model_used: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
