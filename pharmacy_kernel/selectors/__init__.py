"""Read-only projections over the entity store."""

from pharmacy_kernel.selectors.alert_selector import AlertRow, AlertSelector
from pharmacy_kernel.selectors.analytics_selector import (
    AnalyticsSelector,
    MedicineRollup,
    SalesSummaryRow,
    SupplierPerformance,
)
from pharmacy_kernel.selectors.audit_selector import AuditEntry, AuditSelector
from pharmacy_kernel.selectors.catalog_selector import CatalogSelector, InteractionRow
from pharmacy_kernel.selectors.stock_selector import BatchStatusRow, MovementRow, StockSelector

__all__ = [
    "AlertRow",
    "AlertSelector",
    "AnalyticsSelector",
    "AuditEntry",
    "AuditSelector",
    "BatchStatusRow",
    "CatalogSelector",
    "InteractionRow",
    "MedicineRollup",
    "MovementRow",
    "SalesSummaryRow",
    "StockSelector",
    "SupplierPerformance",
]
