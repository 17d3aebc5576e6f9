"""
SaleProcessor -- dispense stock from a batch.

Responsibility:
    Validates a sale, records it, decrements stock through the ledger, and
    derives reorder alerts, stock-level alerts and automatic purchase
    orders, all as one atomic unit.

Architecture position:
    Kernel > Services.  The main mutating entry point on stock.

Preconditions (checked in this order, first failure wins, nothing written):
    0. quantity > 0, price >= 0, payment method known, batch exists.
    a. Batch not recalled, not flagged expired, expiry date not passed.
    b. Prescription-only medicine: an active prescription is supplied.
       A prescription supplied for any medicine must exist.
    c. quantity <= batch quantity (read under the row lock).

Invariants enforced:
    - total_amount == quantity * price exactly.
    - The reorder decision uses the batch quantity after the sale.
    - A failed automatic order never undoes the sale: procurement runs in a
      savepoint and its failure is reported on the SaleResult.
"""

from decimal import Decimal
from uuid import UUID

from pharmacy_kernel.domain.actor import ActorContext
from pharmacy_kernel.domain.dtos import BuyerInfo, MovementReference, SaleResult
from pharmacy_kernel.domain.policies import needs_auto_order, reorder_message, reorder_severity
from pharmacy_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    NoEligibleSupplierError,
    PrescriptionNotFoundError,
    PrescriptionRequiredError,
    RecalledOrExpiredError,
)
from pharmacy_kernel.logging_config import LogContext, get_logger
from pharmacy_kernel.models.alert import AlertType
from pharmacy_kernel.models.audit_log import AuditAction
from pharmacy_kernel.models.movement import MovementType, ReferenceType
from pharmacy_kernel.models.prescription import Prescription, PrescriptionStatus
from pharmacy_kernel.models.sale import PaymentMethod, Sale
from pharmacy_kernel.services.alert_engine import AlertEngine
from pharmacy_kernel.services.audit_recorder import AuditRecorder
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.services.procurement_engine import ProcurementEngine
from pharmacy_kernel.services.stock_ledger import StockLedger
from pharmacy_kernel.utils.serialization import model_snapshot

logger = get_logger("services.sale_processor")


class SaleProcessor(BaseService):
    """
    Records sales.

    Usage:
        processor = SaleProcessor(session, clock, config)
        result = processor.record_sale(
            batch_id, quantity=25, price=Decimal("4.50"),
            prescription_id=None, buyer=BuyerInfo(name="A. Patel"),
            payment_method="cash", actor=actor,
        )
        result.remaining_quantity   # 75
    """

    def __init__(
        self,
        session,
        clock=None,
        config=None,
        ledger: StockLedger | None = None,
        alerts: AlertEngine | None = None,
        procurement: ProcurementEngine | None = None,
        audit: AuditRecorder | None = None,
    ):
        super().__init__(session, clock, config)
        self._audit = audit or AuditRecorder(session, self.clock, self.config)
        self._alerts = alerts or AlertEngine(session, self.clock, self.config, audit=self._audit)
        self._ledger = ledger or StockLedger(
            session, self.clock, self.config, audit=self._audit, alerts=self._alerts,
        )
        self._procurement = procurement or ProcurementEngine(
            session, self.clock, self.config, audit=self._audit,
        )

    def record_sale(
        self,
        batch_id: UUID,
        quantity: int,
        price: Decimal,
        prescription_id: UUID | None,
        buyer: BuyerInfo | None,
        payment_method: PaymentMethod | str,
        actor: ActorContext,
    ) -> SaleResult:
        if quantity <= 0:
            raise InvalidQuantityError("quantity", quantity, "must be positive")
        price = Decimal(price)
        if price < 0:
            raise InvalidQuantityError("price", price, "must be >= 0")
        payment_value = PaymentMethod(payment_method).value
        buyer = buyer or BuyerInfo()

        batch = self._ledger.lock_batch(batch_id)
        medicine = batch.medicine
        today = self.clock.today()

        # (a) sellable
        if batch.is_recalled:
            raise RecalledOrExpiredError(str(batch_id), "batch is recalled")
        if batch.is_past_expiry(today):
            raise RecalledOrExpiredError(str(batch_id), f"batch expired on {batch.expiry_date}")

        # (b) prescription gate
        prescription = None
        if prescription_id is not None:
            prescription = self.session.get(Prescription, prescription_id)
        if medicine.requires_prescription:
            if prescription_id is None:
                raise PrescriptionRequiredError(medicine.name)
            if prescription is None:
                raise PrescriptionRequiredError(
                    medicine.name, str(prescription_id), "prescription not found",
                )
            if prescription.status != PrescriptionStatus.ACTIVE.value:
                raise PrescriptionRequiredError(
                    medicine.name, str(prescription_id), f"prescription is {prescription.status}",
                )
        elif prescription_id is not None and prescription is None:
            raise PrescriptionNotFoundError(str(prescription_id))

        # (c) availability
        if quantity > batch.quantity:
            raise InsufficientStockError(str(batch_id), batch.quantity, quantity)

        with LogContext.bind(batch_id=str(batch_id)):
            sale = Sale(
                batch_id=batch_id,
                prescription_id=prescription_id,
                quantity_sold=quantity,
                sale_price=price,
                total_amount=price * quantity,
                payment_method=payment_value,
                customer_name=buyer.name,
                customer_phone=buyer.phone,
                customer_info=buyer.info,
                sold_by=actor.actor_id,
                sale_date=self.clock.now(),
            )
            self.session.add(sale)
            self.session.flush()

            entry = self._ledger.adjust(
                batch_id,
                -quantity,
                "Sale",
                actor,
                movement_type=MovementType.SALE,
                reference=MovementReference(ReferenceType.SALE.value, sale.id),
            )
            self._audit.record("sales", sale.id, AuditAction.CREATE, None, model_snapshot(sale), actor)

            remaining = entry.quantity_after
            alerts = []
            severity = reorder_severity(
                remaining, medicine.reorder_point, self.config.reorder_critical_divisor,
            )
            if severity is not None:
                alerts.append(
                    self._alerts.raise_alert(
                        batch_id,
                        AlertType.REORDER,
                        reorder_message(medicine.name, remaining),
                        severity,
                    )
                )

            purchase_order_id = None
            procurement_error = None
            if needs_auto_order(remaining, medicine.reorder_point, self.config.reorder_critical_divisor):
                purchase_order_id, procurement_error = self._place_auto_order(medicine.id, actor)

            alerts.extend(self._alerts.evaluate_stock_levels(batch, medicine))

            logger.info(
                "sale_recorded",
                extra={
                    "sale_id": str(sale.id),
                    "quantity": quantity,
                    "total_amount": sale.total_amount,
                    "remaining": remaining,
                    "purchase_order_id": str(purchase_order_id) if purchase_order_id else None,
                },
            )

        return SaleResult(
            sale_id=sale.id,
            batch_id=batch_id,
            quantity_sold=quantity,
            total_amount=sale.total_amount,
            remaining_quantity=remaining,
            alerts=tuple(alerts),
            purchase_order_id=purchase_order_id,
            procurement_error=procurement_error,
        )

    def _place_auto_order(self, medicine_id: UUID, actor: ActorContext) -> tuple[UUID | None, str | None]:
        savepoint = self.session.begin_nested()
        try:
            order_id = self._procurement.auto_order(medicine_id, actor)
            savepoint.commit()
        except NoEligibleSupplierError as exc:
            savepoint.rollback()
            logger.warning(
                "auto_order_failed",
                extra={"medicine_id": str(medicine_id), "error_code": exc.code},
            )
            return None, str(exc)
        return order_id, None
