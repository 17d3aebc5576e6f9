"""
ProcurementEngine -- purchase orders and supplier scoring.

Responsibility:
    Creates automatic and manual purchase orders, moves orders through
    their lifecycle, and maintains supplier ratings and on-time delivery
    rates.

Architecture position:
    Kernel > Services.  auto_order() is invoked by the Sale Transaction
    Processor when stock falls to half the reorder point; the rest is
    exposed through InventoryEngine.

Invariants enforced:
    - Automatic orders go to the active supplier with the highest rating
      (nulls last), ties broken by the highest on-time delivery rate
      (nulls last), then by name.
    - Automatic order numbers are deterministic per medicine and day, so a
      retried or concurrent auto-order returns the existing order instead
      of creating a duplicate.
    - Orders move forward only; delivered and cancelled are terminal.
    - Supplier.rating is the mean of all its overall ratings (2 dp).

Failure modes:
    - NoEligibleSupplierError when no active supplier exists.
    - InvalidOrderTransitionError, InvalidRatingError, InvalidQuantityError.
    - MedicineNotFoundError, SupplierNotFoundError,
      PurchaseOrderNotFoundError.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from pharmacy_kernel.domain.actor import ActorContext
from pharmacy_kernel.domain.policies import (
    build_order_number,
    mean_rating,
    on_time_delivery_rate,
    overall_rating,
)
from pharmacy_kernel.exceptions import (
    InvalidOrderTransitionError,
    InvalidQuantityError,
    InvalidRatingError,
    MedicineNotFoundError,
    NoEligibleSupplierError,
    PurchaseOrderNotFoundError,
    SupplierNotFoundError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.audit_log import AuditAction
from pharmacy_kernel.models.medicine import Medicine
from pharmacy_kernel.models.purchase_order import (
    PredictedDemand,
    PurchaseOrder,
    PurchaseOrderStatus,
    is_valid_order_transition,
)
from pharmacy_kernel.models.supplier import Supplier, SupplierRating
from pharmacy_kernel.services.audit_recorder import AuditRecorder
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.utils.serialization import model_snapshot

logger = get_logger("services.procurement_engine")


class ProcurementEngine(BaseService):
    """Purchase order lifecycle and supplier scoring."""

    def __init__(self, session, clock=None, config=None, audit: AuditRecorder | None = None):
        super().__init__(session, clock, config)
        self._audit = audit or AuditRecorder(session, self.clock, self.config)

    # ------------------------------------------------------------------
    # Supplier choice and order sizing
    # ------------------------------------------------------------------

    def select_supplier(self) -> Supplier | None:
        return self.session.execute(
            select(Supplier)
            .where(Supplier.is_active.is_(True))
            .order_by(
                Supplier.rating.desc().nulls_last(),
                Supplier.on_time_delivery_rate.desc().nulls_last(),
                Supplier.supplier_name,
                Supplier.id,
            )
            .limit(1)
        ).scalar_one_or_none()

    def predicted_quantity(self, medicine_id: UUID) -> int:
        """
        Order size for an automatic order.

        The most recently produced prediction dated today or later wins;
        among predictions produced at the same moment the nearest date wins.
        Without a usable prediction the configured default applies.
        """
        quantity = self.session.execute(
            select(PredictedDemand.predicted_quantity)
            .where(
                PredictedDemand.medicine_id == medicine_id,
                PredictedDemand.predicted_date >= self.clock.today(),
            )
            .order_by(PredictedDemand.created_at.desc(), PredictedDemand.predicted_date)
            .limit(1)
        ).scalar_one_or_none()
        if quantity is None or quantity <= 0:
            return self.config.default_order_quantity
        return quantity

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def auto_order(self, medicine_id: UUID, actor: ActorContext) -> UUID:
        """
        Create (or return the existing) automatic order for a medicine today.

        Raises:
            MedicineNotFoundError: No such medicine.
            NoEligibleSupplierError: No active supplier.
        """
        if self.session.get(Medicine, medicine_id) is None:
            raise MedicineNotFoundError(str(medicine_id))

        supplier = self.select_supplier()
        if supplier is None:
            raise NoEligibleSupplierError(str(medicine_id))

        today = self.clock.today()
        order_number = build_order_number(self.config.order_number_prefix, today, medicine_id)

        existing = self._order_id_by_number(order_number)
        if existing is not None:
            logger.info(
                "auto_order_exists",
                extra={"order_number": order_number, "order_id": str(existing)},
            )
            return existing

        quantity = self.predicted_quantity(medicine_id)
        savepoint = self.session.begin_nested()
        try:
            order = PurchaseOrder(
                order_number=order_number,
                supplier_id=supplier.id,
                medicine_id=medicine_id,
                quantity_ordered=quantity,
                order_date=today,
                expected_delivery_date=today + timedelta(days=self.config.expected_delivery_days),
                status=PurchaseOrderStatus.PENDING.value,
                auto_generated=True,
                created_by=actor.actor_id,
                created_at=self.clock.now(),
            )
            self.session.add(order)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            existing = self._order_id_by_number(order_number)
            if existing is None:
                raise
            logger.info(
                "auto_order_exists",
                extra={"order_number": order_number, "order_id": str(existing), "race": True},
            )
            return existing

        self._audit.record(
            "purchase_orders", order.id, AuditAction.CREATE, None, model_snapshot(order), actor,
        )
        logger.info(
            "purchase_order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order_number,
                "supplier_id": str(supplier.id),
                "quantity": quantity,
                "auto_generated": True,
            },
        )
        return order.id

    def create_order(
        self,
        medicine_id: UUID,
        supplier_id: UUID,
        quantity: int,
        actor: ActorContext,
        expected_price: Decimal | None = None,
        expected_delivery_date: date | None = None,
    ) -> UUID:
        """Place a manual purchase order."""
        if quantity <= 0:
            raise InvalidQuantityError("quantity", quantity, "must be positive")
        if expected_price is not None and expected_price < 0:
            raise InvalidQuantityError("expected_price", expected_price, "must be >= 0")
        if self.session.get(Medicine, medicine_id) is None:
            raise MedicineNotFoundError(str(medicine_id))
        if self.session.get(Supplier, supplier_id) is None:
            raise SupplierNotFoundError(str(supplier_id))

        today = self.clock.today()
        order = PurchaseOrder(
            order_number=f"{self.config.order_number_prefix}-{today:%Y%m%d}-M-{uuid4().hex[:12].upper()}",
            supplier_id=supplier_id,
            medicine_id=medicine_id,
            quantity_ordered=quantity,
            expected_price=expected_price,
            order_date=today,
            expected_delivery_date=(
                expected_delivery_date
                or today + timedelta(days=self.config.expected_delivery_days)
            ),
            status=PurchaseOrderStatus.PENDING.value,
            auto_generated=False,
            created_by=actor.actor_id,
            created_at=self.clock.now(),
        )
        self.session.add(order)
        self.session.flush()

        self._audit.record(
            "purchase_orders", order.id, AuditAction.CREATE, None, model_snapshot(order), actor,
        )
        logger.info(
            "purchase_order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "supplier_id": str(supplier_id),
                "quantity": quantity,
                "auto_generated": False,
            },
        )
        return order.id

    def transition_order(
        self,
        order_id: UUID,
        status: PurchaseOrderStatus | str,
        actor: ActorContext,
        actual_delivery_date: date | None = None,
    ) -> None:
        """
        Move an order to ``status``.

        On delivered, stamps the actual delivery date (default today) and
        recomputes the supplier's on-time delivery rate.
        """
        target = PurchaseOrderStatus(status)
        order = self.session.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise PurchaseOrderNotFoundError(str(order_id))

        current = PurchaseOrderStatus(order.status)
        if not is_valid_order_transition(current, target):
            raise InvalidOrderTransitionError(str(order_id), current.value, target.value)

        before = model_snapshot(order)
        order.status = target.value
        if target == PurchaseOrderStatus.DELIVERED:
            order.actual_delivery_date = actual_delivery_date or self.clock.today()
        self.session.flush()

        self._audit.record(
            "purchase_orders", order.id, AuditAction.UPDATE, before, model_snapshot(order), actor,
        )
        logger.info(
            "purchase_order_transitioned",
            extra={
                "order_id": str(order_id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )

        if target == PurchaseOrderStatus.DELIVERED and order.supplier_id is not None:
            self._refresh_on_time_rate(order.supplier_id, actor)

    # ------------------------------------------------------------------
    # Supplier scoring
    # ------------------------------------------------------------------

    def rate_supplier(
        self,
        supplier_id: UUID,
        order_id: UUID | None,
        quality: int,
        delivery: int,
        communication: int,
        comments: str | None,
        actor: ActorContext,
    ) -> UUID:
        """
        Record a rating and refresh the supplier's aggregate score.

        Postconditions:
            - supplier.rating == mean of all overall ratings (2 dp).
            - supplier.total_orders incremented by one.
        """
        for field_name, value in (
            ("quality", quality),
            ("delivery", delivery),
            ("communication", communication),
        ):
            if not isinstance(value, int) or isinstance(value, bool) or not 1 <= value <= 5:
                raise InvalidRatingError(field_name, value)

        supplier = self._lock_supplier(supplier_id)
        if order_id is not None and self.session.get(PurchaseOrder, order_id) is None:
            raise PurchaseOrderNotFoundError(str(order_id))

        rating = SupplierRating(
            supplier_id=supplier_id,
            order_id=order_id,
            quality_rating=quality,
            delivery_rating=delivery,
            communication_rating=communication,
            overall_rating=overall_rating(quality, delivery, communication),
            comments=comments,
            rated_by=actor.actor_id,
            rated_at=self.clock.now(),
        )
        self.session.add(rating)
        self.session.flush()

        all_ratings = self.session.execute(
            select(SupplierRating.overall_rating).where(SupplierRating.supplier_id == supplier_id)
        ).scalars().all()

        before = model_snapshot(supplier)
        supplier.rating = mean_rating([Decimal(r) for r in all_ratings])
        supplier.total_orders = supplier.total_orders + 1
        supplier.updated_by_id = actor.actor_id
        self.session.flush()

        self._audit.record(
            "suppliers", supplier.id, AuditAction.UPDATE, before, model_snapshot(supplier), actor,
        )
        logger.info(
            "supplier_rated",
            extra={
                "supplier_id": str(supplier_id),
                "overall_rating": rating.overall_rating,
                "supplier_rating": supplier.rating,
                "total_orders": supplier.total_orders,
            },
        )
        return rating.id

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _order_id_by_number(self, order_number: str) -> UUID | None:
        return self.session.execute(
            select(PurchaseOrder.id).where(PurchaseOrder.order_number == order_number)
        ).scalar_one_or_none()

    def _lock_supplier(self, supplier_id: UUID) -> Supplier:
        supplier = self.session.execute(
            select(Supplier)
            .where(Supplier.id == supplier_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if supplier is None:
            raise SupplierNotFoundError(str(supplier_id))
        return supplier

    def _refresh_on_time_rate(self, supplier_id: UUID, actor: ActorContext) -> None:
        delivered_filter = (
            PurchaseOrder.supplier_id == supplier_id,
            PurchaseOrder.status == PurchaseOrderStatus.DELIVERED.value,
        )
        delivered = self.session.execute(
            select(func.count(PurchaseOrder.id)).where(*delivered_filter)
        ).scalar_one()
        on_time = self.session.execute(
            select(func.count(PurchaseOrder.id)).where(
                *delivered_filter,
                PurchaseOrder.actual_delivery_date <= PurchaseOrder.expected_delivery_date,
            )
        ).scalar_one()

        supplier = self._lock_supplier(supplier_id)
        before = model_snapshot(supplier)
        supplier.on_time_delivery_rate = on_time_delivery_rate(on_time, delivered)
        supplier.updated_by_id = actor.actor_id
        self.session.flush()

        self._audit.record(
            "suppliers", supplier.id, AuditAction.UPDATE, before, model_snapshot(supplier), actor,
        )
        logger.debug(
            "supplier_on_time_rate_updated",
            extra={
                "supplier_id": str(supplier_id),
                "delivered": delivered,
                "on_time": on_time,
                "rate": supplier.on_time_delivery_rate,
            },
        )
