"""
Kernel services.

Every service flushes within the caller's transaction; InventoryEngine owns
commit, rollback and retry.
"""

from pharmacy_kernel.services.alert_engine import AlertEngine
from pharmacy_kernel.services.audit_recorder import AuditRecorder
from pharmacy_kernel.services.catalog_service import CatalogService
from pharmacy_kernel.services.inventory_engine import InventoryEngine, ServiceSet
from pharmacy_kernel.services.procurement_engine import ProcurementEngine
from pharmacy_kernel.services.recall_workflow import RecallWorkflow
from pharmacy_kernel.services.sale_processor import SaleProcessor
from pharmacy_kernel.services.stock_ledger import StockLedger

__all__ = [
    "AlertEngine",
    "AuditRecorder",
    "CatalogService",
    "InventoryEngine",
    "ProcurementEngine",
    "RecallWorkflow",
    "SaleProcessor",
    "ServiceSet",
    "StockLedger",
]
