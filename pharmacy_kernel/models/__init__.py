"""ORM models for the pharmacy inventory kernel."""

from pharmacy_kernel.models.alert import Alert, AlertSeverity, AlertType, build_dedup_key
from pharmacy_kernel.models.audit_log import AuditAction, AuditLog
from pharmacy_kernel.models.batch import Batch
from pharmacy_kernel.models.medicine import InteractionType, Medicine, MedicineInteraction
from pharmacy_kernel.models.movement import InventoryMovement, MovementType, ReferenceType
from pharmacy_kernel.models.prescription import Prescription, PrescriptionStatus
from pharmacy_kernel.models.purchase_order import (
    PredictedDemand,
    PurchaseOrder,
    PurchaseOrderStatus,
    TERMINAL_ORDER_STATUSES,
    is_valid_order_transition,
)
from pharmacy_kernel.models.recall import Recall, RecallStatus
from pharmacy_kernel.models.sale import PaymentMethod, Sale
from pharmacy_kernel.models.supplier import Supplier, SupplierRating

__all__ = [
    "Alert",
    "AlertSeverity",
    "AlertType",
    "AuditAction",
    "AuditLog",
    "Batch",
    "InteractionType",
    "InventoryMovement",
    "Medicine",
    "MedicineInteraction",
    "MovementType",
    "PaymentMethod",
    "PredictedDemand",
    "Prescription",
    "PrescriptionStatus",
    "PurchaseOrder",
    "PurchaseOrderStatus",
    "Recall",
    "RecallStatus",
    "ReferenceType",
    "Sale",
    "Supplier",
    "SupplierRating",
    "TERMINAL_ORDER_STATUSES",
    "build_dedup_key",
    "is_valid_order_transition",
]
