"""
DTOs -- immutable values crossing the service boundary.

Callers build inputs (BatchSpec, BuyerInfo, MovementReference) and receive
results (LedgerEntry, SaleResult, AlertResult).  None of these hold ORM
instances, so results stay valid after the session closes.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class BatchSpec:
    """Everything needed to receive a new batch."""

    medicine_id: UUID
    batch_number: str
    expiry_date: date
    quantity: int
    supplier_id: UUID | None = None
    manufacture_date: date | None = None
    cost_price: Decimal | None = None
    selling_price: Decimal | None = None
    mrp: Decimal | None = None
    barcode: str | None = None
    storage_location: str | None = None
    ocr_verified: bool = False
    purchase_order_id: UUID | None = None


@dataclass(frozen=True)
class BuyerInfo:
    name: str | None = None
    phone: str | None = None
    info: str | None = None


@dataclass(frozen=True)
class MovementReference:
    """The record that caused a movement (sale, purchase order or recall)."""

    reference_type: str
    reference_id: UUID


@dataclass(frozen=True)
class LedgerEntry:
    """Outcome of one quantity change on a batch."""

    batch_id: UUID
    movement_id: UUID
    quantity_before: int
    quantity_after: int
    version: int

    @property
    def delta(self) -> int:
        return self.quantity_after - self.quantity_before


@dataclass(frozen=True)
class AlertResult:
    """Outcome of raise_alert: the new alert id, or suppressed by dedup."""

    dedup_key: str
    alert_id: UUID | None = None
    suppressed: bool = False

    @property
    def raised(self) -> bool:
        return self.alert_id is not None


@dataclass(frozen=True)
class SaleResult:
    sale_id: UUID
    batch_id: UUID
    quantity_sold: int
    total_amount: Decimal
    remaining_quantity: int
    alerts: tuple[AlertResult, ...] = field(default_factory=tuple)
    purchase_order_id: UUID | None = None
    procurement_error: str | None = None

    @property
    def alert_ids(self) -> tuple[UUID, ...]:
        return tuple(a.alert_id for a in self.alerts if a.alert_id is not None)
