"""
Module: pharmacy_kernel.selectors.stock_selector
Responsibility: Per-batch stock status, near-expiry listings and movement
    history.
Architecture position: Kernel > Selectors.

Status precedence (first match wins):
    RECALLED -> EXPIRED (expiry <= today) -> CRITICAL_EXPIRY (<= 7 days)
    -> NEAR_EXPIRY (<= 30 days) -> LOW_STOCK (quantity <= minimum) -> OK
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import select

from pharmacy_kernel.config import EngineConfig
from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.policies import StockStatus, classify_stock_status
from pharmacy_kernel.exceptions import BatchNotFoundError
from pharmacy_kernel.models.batch import Batch
from pharmacy_kernel.models.medicine import Medicine
from pharmacy_kernel.models.movement import InventoryMovement
from pharmacy_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class BatchStatusRow:
    batch_id: UUID
    medicine_id: UUID
    medicine_name: str
    batch_number: str
    quantity: int
    expiry_date: date
    days_until_expiry: int
    status: StockStatus


@dataclass(frozen=True)
class MovementRow:
    movement_id: UUID
    movement_type: str
    quantity: int
    reference_type: str | None
    reference_id: UUID | None
    reason: str | None
    moved_by: UUID
    movement_date: datetime


class StockSelector(BaseSelector):
    """Stock status projections."""

    def __init__(self, session, clock: Clock | None = None, config: EngineConfig | None = None):
        super().__init__(session, clock)
        self.config = config or EngineConfig.with_defaults()

    def _status_query(self):
        return (
            select(Batch, Medicine)
            .join(Medicine, Batch.medicine_id == Medicine.id)
        )

    def _to_row(self, batch: Batch, medicine: Medicine, today: date) -> BatchStatusRow:
        return BatchStatusRow(
            batch_id=batch.id,
            medicine_id=medicine.id,
            medicine_name=medicine.name,
            batch_number=batch.batch_number,
            quantity=batch.quantity,
            expiry_date=batch.expiry_date,
            days_until_expiry=batch.days_until_expiry(today),
            status=classify_stock_status(
                is_recalled=batch.is_recalled,
                expiry_date=batch.expiry_date,
                quantity=batch.quantity,
                minimum_stock_level=medicine.minimum_stock_level,
                today=today,
                critical_expiry_days=self.config.critical_expiry_days,
                near_expiry_days=self.config.near_expiry_days,
            ),
        )

    def batch_statuses(self) -> list[BatchStatusRow]:
        """Status of every in-stock batch of an active medicine, soonest expiry first."""
        today = self.clock.today()
        rows = self.session.execute(
            self._status_query()
            .where(Batch.quantity > 0, Medicine.is_active.is_(True))
            .order_by(Batch.expiry_date, Medicine.name, Batch.batch_number)
        ).all()
        return [self._to_row(batch, medicine, today) for batch, medicine in rows]

    def batch_status(self, batch_id: UUID) -> BatchStatusRow:
        """Status of one batch regardless of quantity or medicine state."""
        row = self.session.execute(
            self._status_query().where(Batch.id == batch_id)
        ).one_or_none()
        if row is None:
            raise BatchNotFoundError(str(batch_id))
        batch, medicine = row
        return self._to_row(batch, medicine, self.clock.today())

    def near_expiry_batches(self, days: int = 30) -> list[BatchStatusRow]:
        """In-stock, non-recalled batches expiring between today and today + days."""
        today = self.clock.today()
        rows = self.session.execute(
            self._status_query()
            .where(
                Batch.quantity > 0,
                Batch.is_recalled.is_(False),
                Batch.expiry_date >= today,
                Batch.expiry_date <= today + timedelta(days=days),
            )
            .order_by(Batch.expiry_date, Batch.batch_number)
        ).all()
        return [self._to_row(batch, medicine, today) for batch, medicine in rows]

    def movements(self, batch_id: UUID) -> list[MovementRow]:
        rows = self.session.execute(
            select(InventoryMovement)
            .where(InventoryMovement.batch_id == batch_id)
            .order_by(InventoryMovement.movement_date, InventoryMovement.id)
        ).scalars().all()
        return [
            MovementRow(
                movement_id=m.id,
                movement_type=m.movement_type,
                quantity=m.quantity,
                reference_type=m.reference_type,
                reference_id=m.reference_id,
                reason=m.reason,
                moved_by=m.moved_by,
                movement_date=m.movement_date,
            )
            for m in rows
        ]
