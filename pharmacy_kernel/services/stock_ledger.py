"""
StockLedger -- the only writer of batch quantity.

Responsibility:
    Receives new batches, applies signed quantity changes with an
    append-only movement per change, and flags expired batches.

Architecture position:
    Kernel > Services.  Used by the Sale Transaction Processor and the
    Recall Workflow; exposed directly through InventoryEngine for receipts,
    manual adjustments and the expiry sweep.

Invariants enforced:
    - Batch quantity never goes negative.  adjust() locks the row
      (SELECT ... FOR UPDATE) and then applies a compare-and-swap update
      guarded by ``version = :expected AND quantity + :delta >= 0``.
    - Every quantity change is paired with an InventoryMovement and an
      AuditLog entry in the same transaction.
    - Batch number is unique per medicine.

Failure modes:
    - InsufficientStockError when the change would drive quantity below 0.
    - ConcurrencyConflictError when the row changed between lock and update;
      InventoryEngine retries the whole operation.
    - BatchNotFoundError, MedicineNotFoundError, SupplierNotFoundError,
      PurchaseOrderNotFoundError, InactiveMedicineError, DuplicateBatchError,
      InvalidQuantityError on bad input.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from pharmacy_kernel.domain.actor import ActorContext
from pharmacy_kernel.domain.dtos import BatchSpec, LedgerEntry, MovementReference
from pharmacy_kernel.domain.policies import expiry_severity, receipt_expiry_message
from pharmacy_kernel.exceptions import (
    BatchNotFoundError,
    ConcurrencyConflictError,
    DuplicateBatchError,
    InactiveMedicineError,
    InsufficientStockError,
    InvalidQuantityError,
    MedicineNotFoundError,
    PurchaseOrderNotFoundError,
    SupplierNotFoundError,
)
from pharmacy_kernel.logging_config import LogContext, get_logger
from pharmacy_kernel.models.alert import AlertType
from pharmacy_kernel.models.audit_log import AuditAction
from pharmacy_kernel.models.batch import Batch
from pharmacy_kernel.models.medicine import Medicine
from pharmacy_kernel.models.movement import InventoryMovement, MovementType, ReferenceType
from pharmacy_kernel.models.purchase_order import PurchaseOrder
from pharmacy_kernel.models.supplier import Supplier
from pharmacy_kernel.services.alert_engine import AlertEngine
from pharmacy_kernel.services.audit_recorder import AuditRecorder
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.utils.serialization import model_snapshot

logger = get_logger("services.stock_ledger")

ADJUSTABLE_MOVEMENT_TYPES = frozenset(
    {
        MovementType.SALE.value,
        MovementType.RETURN.value,
        MovementType.ADJUSTMENT.value,
        MovementType.DISPOSAL.value,
    }
)


class StockLedger(BaseService):
    """
    Applies quantity changes to batches.

    Guarantees:
        - Quantity changes only through receive() (initial quantity) and
          adjust() (every later change).
        - After adjust() returns, the Batch in the session reflects the
          committed-to-be row, including its new version.
    """

    def __init__(
        self,
        session,
        clock=None,
        config=None,
        audit: AuditRecorder | None = None,
        alerts: AlertEngine | None = None,
    ):
        super().__init__(session, clock, config)
        self._audit = audit or AuditRecorder(session, self.clock, self.config)
        self._alerts = alerts or AlertEngine(session, self.clock, self.config, audit=self._audit)

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    def lock_batch(self, batch_id: UUID) -> Batch:
        """
        Load a batch with a row lock held until the transaction ends.

        Raises:
            BatchNotFoundError: If the batch does not exist.
        """
        batch = self.session.execute(
            select(Batch)
            .where(Batch.id == batch_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(str(batch_id))
        return batch

    # ------------------------------------------------------------------
    # Receipt
    # ------------------------------------------------------------------

    def receive(self, spec: BatchSpec, actor: ActorContext) -> UUID:
        """
        Create a batch from a receipt.

        Postconditions:
            - One Batch, one ``purchase`` movement of +quantity and one
              ``create`` audit entry exist.
            - An expiry alert exists when the batch expires within the
              configured receipt bands (<= 90 days by default).

        Returns:
            The new batch id.
        """
        if spec.quantity < 0:
            raise InvalidQuantityError("quantity", spec.quantity, "must be >= 0")
        if spec.manufacture_date is not None and spec.manufacture_date > spec.expiry_date:
            raise InvalidQuantityError(
                "manufacture_date", spec.manufacture_date, "must not be after expiry_date"
            )
        for price_field in ("cost_price", "selling_price", "mrp"):
            value = getattr(spec, price_field)
            if value is not None and value < 0:
                raise InvalidQuantityError(price_field, value, "must be >= 0")

        medicine = self.session.get(Medicine, spec.medicine_id)
        if medicine is None:
            raise MedicineNotFoundError(str(spec.medicine_id))
        if not medicine.is_active:
            raise InactiveMedicineError(str(spec.medicine_id))
        if spec.supplier_id is not None and self.session.get(Supplier, spec.supplier_id) is None:
            raise SupplierNotFoundError(str(spec.supplier_id))
        if (
            spec.purchase_order_id is not None
            and self.session.get(PurchaseOrder, spec.purchase_order_id) is None
        ):
            raise PurchaseOrderNotFoundError(str(spec.purchase_order_id))

        duplicate = self.session.execute(
            select(Batch.id).where(
                Batch.medicine_id == spec.medicine_id,
                Batch.batch_number == spec.batch_number,
            )
        ).scalar_one_or_none()
        if duplicate is not None:
            raise DuplicateBatchError(str(spec.medicine_id), spec.batch_number)

        savepoint = self.session.begin_nested()
        try:
            batch = Batch(
                medicine_id=spec.medicine_id,
                supplier_id=spec.supplier_id,
                batch_number=spec.batch_number,
                expiry_date=spec.expiry_date,
                manufacture_date=spec.manufacture_date,
                quantity=spec.quantity,
                cost_price=spec.cost_price,
                selling_price=spec.selling_price,
                mrp=spec.mrp,
                barcode=spec.barcode,
                storage_location=spec.storage_location,
                ocr_verified=spec.ocr_verified,
                is_recalled=False,
                is_expired=False,
                created_by_id=actor.actor_id,
            )
            self.session.add(batch)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateBatchError(str(spec.medicine_id), spec.batch_number)

        with LogContext.bind(batch_id=str(batch.id)):
            reference = None
            if spec.purchase_order_id is not None:
                reference = MovementReference(ReferenceType.PURCHASE_ORDER.value, spec.purchase_order_id)
            self._append_movement(
                batch.id,
                MovementType.PURCHASE.value,
                spec.quantity,
                "New batch received",
                actor,
                reference,
            )
            self._audit.record(
                "batches",
                batch.id,
                AuditAction.CREATE,
                before=None,
                after=model_snapshot(batch),
                actor=actor,
                entity_version=batch.version,
            )

            days = batch.days_until_expiry(self.clock.today())
            bands = self.config.receipt_expiry_bands
            severity = expiry_severity(days, bands)
            if severity is not None:
                self._alerts.raise_alert(
                    batch.id,
                    AlertType.EXPIRY,
                    receipt_expiry_message(medicine.name, batch.batch_number, days, bands),
                    severity,
                )

            logger.info(
                "batch_received",
                extra={
                    "medicine_id": str(medicine.id),
                    "batch_number": batch.batch_number,
                    "quantity": batch.quantity,
                    "days_until_expiry": days,
                },
            )
        return batch.id

    # ------------------------------------------------------------------
    # Quantity changes
    # ------------------------------------------------------------------

    def adjust(
        self,
        batch_id: UUID,
        delta: int,
        reason: str,
        actor: ActorContext,
        movement_type: MovementType | str = MovementType.ADJUSTMENT,
        reference: MovementReference | None = None,
    ) -> LedgerEntry:
        """
        Apply a signed quantity change to a batch.

        The batch row is locked first, then updated with a compare-and-swap
        guarded by the version read under the lock.  The guard also refuses
        any result below zero, so the database never holds a negative
        quantity even if a caller skipped its own availability check.

        Raises:
            InvalidQuantityError: delta is 0.
            ValueError: movement_type is not sale, return, adjustment or disposal.
            BatchNotFoundError: No such batch.
            InsufficientStockError: quantity + delta < 0.
            ConcurrencyConflictError: The row changed under us.
        """
        if delta == 0:
            raise InvalidQuantityError("delta", delta, "must not be zero")
        type_value = MovementType(movement_type).value
        if type_value not in ADJUSTABLE_MOVEMENT_TYPES:
            raise ValueError(f"movement type '{type_value}' cannot be used to adjust stock")

        batch = self.lock_batch(batch_id)
        before = model_snapshot(batch)
        quantity_before = batch.quantity
        expected_version = batch.version

        result = self.session.execute(
            update(Batch)
            .where(
                Batch.id == batch_id,
                Batch.version == expected_version,
                Batch.quantity + delta >= 0,
            )
            .values(
                quantity=Batch.quantity + delta,
                version=Batch.version + 1,
                updated_by_id=actor.actor_id,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            current = self.session.execute(
                select(Batch.quantity, Batch.version).where(Batch.id == batch_id)
            ).one_or_none()
            if current is None:
                raise BatchNotFoundError(str(batch_id))
            if current.quantity + delta < 0:
                logger.warning(
                    "stock_adjust_rejected",
                    extra={
                        "batch_id": str(batch_id),
                        "available": current.quantity,
                        "delta": delta,
                    },
                )
                raise InsufficientStockError(str(batch_id), current.quantity, -delta)
            logger.warning(
                "stock_adjust_conflict",
                extra={
                    "batch_id": str(batch_id),
                    "expected_version": expected_version,
                    "actual_version": current.version,
                },
            )
            raise ConcurrencyConflictError("Batch", str(batch_id))

        self.session.refresh(batch)

        movement = self._append_movement(batch_id, type_value, delta, reason, actor, reference)
        self._audit.record(
            "batches",
            batch_id,
            AuditAction.UPDATE,
            before=before,
            after=model_snapshot(batch),
            actor=actor,
            entity_version=batch.version,
        )

        logger.info(
            "stock_adjusted",
            extra={
                "batch_id": str(batch_id),
                "movement_type": type_value,
                "delta": delta,
                "quantity_before": quantity_before,
                "quantity_after": batch.quantity,
                "version": batch.version,
            },
        )
        return LedgerEntry(
            batch_id=batch_id,
            movement_id=movement.id,
            quantity_before=quantity_before,
            quantity_after=batch.quantity,
            version=batch.version,
        )

    def expire_sweep(self, as_of_date: date, actor: ActorContext) -> int:
        """
        Flag every batch whose expiry date is before ``as_of_date``.

        Idempotent: batches already flagged are skipped, so a second pass
        with the same date returns 0 and writes nothing.

        Returns:
            Number of batches newly flagged.
        """
        batches = self.session.execute(
            select(Batch)
            .where(Batch.expiry_date < as_of_date, Batch.is_expired.is_(False))
            .order_by(Batch.expiry_date, Batch.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        for batch in batches:
            before = model_snapshot(batch)
            batch.is_expired = True
            batch.updated_by_id = actor.actor_id
            self.session.flush()
            self._audit.record(
                "batches",
                batch.id,
                AuditAction.UPDATE,
                before=before,
                after=model_snapshot(batch),
                actor=actor,
                entity_version=batch.version,
            )

        logger.info(
            "expire_sweep_completed",
            extra={"as_of_date": as_of_date.isoformat(), "flagged": len(batches)},
        )
        return len(batches)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _append_movement(
        self,
        batch_id: UUID,
        movement_type: str,
        quantity: int,
        reason: str,
        actor: ActorContext,
        reference: MovementReference | None,
    ) -> InventoryMovement:
        movement = InventoryMovement(
            batch_id=batch_id,
            movement_type=movement_type,
            quantity=quantity,
            reference_type=reference.reference_type if reference else None,
            reference_id=reference.reference_id if reference else None,
            reason=reason,
            moved_by=actor.actor_id,
            movement_date=self.clock.now(),
        )
        self.session.add(movement)
        self.session.flush()
        return movement
