"""
Module: pharmacy_kernel.selectors.analytics_selector
Responsibility: Manager rollups per medicine and supplier, and daily sales
    summaries.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every figure is aggregated independently (stock, sales, orders,
      ratings), so joining one side never multiplies the other.
    - Rollups cover active medicines and active suppliers only.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select

from pharmacy_kernel.config import EngineConfig
from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.policies import ReorderStatus, classify_reorder_status
from pharmacy_kernel.models.batch import Batch
from pharmacy_kernel.models.medicine import Medicine
from pharmacy_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderStatus
from pharmacy_kernel.models.sale import Sale
from pharmacy_kernel.models.supplier import Supplier, SupplierRating
from pharmacy_kernel.selectors.base import BaseSelector

ZERO = Decimal("0")

_OPEN_ORDER_STATUSES = (
    PurchaseOrderStatus.PENDING.value,
    PurchaseOrderStatus.APPROVED.value,
    PurchaseOrderStatus.SHIPPED.value,
)


@dataclass(frozen=True)
class MedicineRollup:
    medicine_id: UUID
    medicine_name: str
    category: str | None
    total_stock: int
    inventory_value: Decimal
    active_batches: int
    near_expiry_batches: int
    recalled_batches: int
    sold_quantity: int
    revenue: Decimal
    avg_daily_sales: Decimal
    minimum_stock_level: int
    reorder_point: int
    reorder_status: ReorderStatus


@dataclass(frozen=True)
class SupplierPerformance:
    supplier_id: UUID
    supplier_name: str
    rating: Decimal | None
    total_orders: int
    on_time_delivery_rate: Decimal | None
    open_orders: int
    completed_orders: int
    cancelled_orders: int
    avg_quality: Decimal | None
    avg_delivery: Decimal | None
    avg_communication: Decimal | None


@dataclass(frozen=True)
class SalesSummaryRow:
    sale_date: date
    medicine_id: UUID
    medicine_name: str
    category: str | None
    total_quantity: int
    total_revenue: Decimal
    avg_price: Decimal
    transaction_count: int


def _as_date(value: datetime | date | str) -> date:
    # SQLite returns date() as text
    if isinstance(value, str):
        return date.fromisoformat(value)
    return value.date() if isinstance(value, datetime) else value


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def _avg(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.01"))


class AnalyticsSelector(BaseSelector):
    """Aggregated views for managers."""

    def __init__(self, session, clock: Clock | None = None, config: EngineConfig | None = None):
        super().__init__(session, clock)
        self.config = config or EngineConfig.with_defaults()

    def medicine_rollups(self) -> list[MedicineRollup]:
        """
        Per active medicine: in-stock totals, trailing-window sales and a
        reorder status (REORDER_NOW <= minimum, REORDER_SOON <= reorder
        point, else OK).
        """
        today = self.clock.today()
        window = self.config.rollup_window_days
        near_limit = today + timedelta(days=self.config.near_expiry_days)
        since = self.clock.now() - timedelta(days=window)

        medicines = self.session.execute(
            select(Medicine).where(Medicine.is_active.is_(True)).order_by(Medicine.name)
        ).scalars().all()

        stock = {
            row.medicine_id: row
            for row in self.session.execute(
                select(
                    Batch.medicine_id,
                    func.sum(Batch.quantity).label("total_stock"),
                    func.sum(Batch.quantity * func.coalesce(Batch.cost_price, 0)).label("inventory_value"),
                    func.count(Batch.id).label("active_batches"),
                    func.sum(case((Batch.expiry_date <= near_limit, 1), else_=0)).label("near_expiry"),
                )
                .where(Batch.quantity > 0)
                .group_by(Batch.medicine_id)
            ).all()
        }

        # Recalled batches are disposed to zero, so they are counted over all batches
        recalled = dict(
            self.session.execute(
                select(Batch.medicine_id, func.count(Batch.id))
                .where(Batch.is_recalled.is_(True))
                .group_by(Batch.medicine_id)
            ).all()
        )

        sales = {
            row.medicine_id: row
            for row in self.session.execute(
                select(
                    Batch.medicine_id,
                    func.sum(Sale.quantity_sold).label("sold"),
                    func.sum(Sale.total_amount).label("revenue"),
                )
                .join(Batch, Sale.batch_id == Batch.id)
                .where(Sale.sale_date >= since)
                .group_by(Batch.medicine_id)
            ).all()
        }

        rollups = []
        for medicine in medicines:
            s = stock.get(medicine.id)
            total_stock = int(s.total_stock) if s else 0
            sold_row = sales.get(medicine.id)
            sold = int(sold_row.sold) if sold_row else 0
            revenue = Decimal(str(sold_row.revenue)) if sold_row and sold_row.revenue is not None else ZERO
            rollups.append(
                MedicineRollup(
                    medicine_id=medicine.id,
                    medicine_name=medicine.name,
                    category=medicine.category,
                    total_stock=total_stock,
                    inventory_value=(
                        Decimal(str(s.inventory_value)) if s and s.inventory_value is not None else ZERO
                    ),
                    active_batches=int(s.active_batches) if s else 0,
                    near_expiry_batches=int(s.near_expiry or 0) if s else 0,
                    recalled_batches=int(recalled.get(medicine.id, 0)),
                    sold_quantity=sold,
                    revenue=revenue,
                    avg_daily_sales=(Decimal(sold) / Decimal(window)).quantize(Decimal("0.01")),
                    minimum_stock_level=medicine.minimum_stock_level,
                    reorder_point=medicine.reorder_point,
                    reorder_status=classify_reorder_status(
                        total_stock, medicine.minimum_stock_level, medicine.reorder_point,
                    ),
                )
            )
        return rollups

    def supplier_performance(self) -> list[SupplierPerformance]:
        """Active suppliers, best rated first (unrated last)."""
        suppliers = self.session.execute(
            select(Supplier)
            .where(Supplier.is_active.is_(True))
            .order_by(Supplier.rating.desc().nulls_last(), Supplier.supplier_name)
        ).scalars().all()

        orders = {
            row.supplier_id: row
            for row in self.session.execute(
                select(
                    PurchaseOrder.supplier_id,
                    func.sum(case((PurchaseOrder.status.in_(_OPEN_ORDER_STATUSES), 1), else_=0)).label("open"),
                    func.sum(
                        case((PurchaseOrder.status == PurchaseOrderStatus.DELIVERED.value, 1), else_=0)
                    ).label("completed"),
                    func.sum(
                        case((PurchaseOrder.status == PurchaseOrderStatus.CANCELLED.value, 1), else_=0)
                    ).label("cancelled"),
                )
                .where(PurchaseOrder.supplier_id.is_not(None))
                .group_by(PurchaseOrder.supplier_id)
            ).all()
        }

        ratings = {
            row.supplier_id: row
            for row in self.session.execute(
                select(
                    SupplierRating.supplier_id,
                    func.avg(SupplierRating.quality_rating).label("quality"),
                    func.avg(SupplierRating.delivery_rating).label("delivery"),
                    func.avg(SupplierRating.communication_rating).label("communication"),
                ).group_by(SupplierRating.supplier_id)
            ).all()
        }

        result = []
        for supplier in suppliers:
            o = orders.get(supplier.id)
            r = ratings.get(supplier.id)
            result.append(
                SupplierPerformance(
                    supplier_id=supplier.id,
                    supplier_name=supplier.supplier_name,
                    rating=supplier.rating,
                    total_orders=supplier.total_orders,
                    on_time_delivery_rate=supplier.on_time_delivery_rate,
                    open_orders=int(o.open or 0) if o else 0,
                    completed_orders=int(o.completed or 0) if o else 0,
                    cancelled_orders=int(o.cancelled or 0) if o else 0,
                    avg_quality=_avg(r.quality) if r else None,
                    avg_delivery=_avg(r.delivery) if r else None,
                    avg_communication=_avg(r.communication) if r else None,
                )
            )
        return result

    def sales_summary(self, start: date | None = None, end: date | None = None) -> list[SalesSummaryRow]:
        """Sales grouped by day and medicine, newest day first. Bounds are inclusive."""
        sale_day = func.date(Sale.sale_date).label("sale_day")
        stmt = (
            select(
                sale_day,
                Medicine.id.label("medicine_id"),
                Medicine.name,
                Medicine.category,
                func.sum(Sale.quantity_sold).label("total_quantity"),
                func.sum(Sale.total_amount).label("total_revenue"),
                func.avg(Sale.sale_price).label("avg_price"),
                func.count(Sale.id).label("transaction_count"),
            )
            .join(Batch, Sale.batch_id == Batch.id)
            .join(Medicine, Batch.medicine_id == Medicine.id)
            .group_by(sale_day, Medicine.id, Medicine.name, Medicine.category)
            .order_by(sale_day.desc(), Medicine.name)
        )
        if start is not None:
            stmt = stmt.where(Sale.sale_date >= _day_start(start))
        if end is not None:
            stmt = stmt.where(Sale.sale_date < _day_start(end + timedelta(days=1)))

        return [
            SalesSummaryRow(
                sale_date=_as_date(row.sale_day),
                medicine_id=row.medicine_id,
                medicine_name=row.name,
                category=row.category,
                total_quantity=int(row.total_quantity),
                total_revenue=Decimal(str(row.total_revenue)),
                avg_price=Decimal(str(row.avg_price)).quantize(Decimal("0.01")),
                transaction_count=int(row.transaction_count),
            )
            for row in self.session.execute(stmt).all()
        ]
