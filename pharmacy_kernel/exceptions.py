"""
Typed Exception Hierarchy for the Pharmacy Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock and dispensing errors must be handled precisely. A point-of-sale client
needs to tell "out of stock" apart from "prescription missing" without parsing
message strings, and the transaction boundary needs to know which failures are
transient (retry) and which are final (report).

Every exception here:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        engine.record_sale(batch_id, quantity=5, ...)
    except InsufficientStockError as e:
        show_error(f"Only {e.available} units left in batch")
    except PrescriptionRequiredError as e:
        ask_for_prescription(e.medicine_name)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PharmacyKernelError (base)
    |
    +-- NotFoundError
    |   +-- MedicineNotFoundError
    |   +-- SupplierNotFoundError
    |   +-- BatchNotFoundError
    |   +-- PrescriptionNotFoundError
    |   +-- AlertNotFoundError
    |   +-- RecallNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- RecalledOrExpiredError
    |   +-- InvalidQuantityError
    |   +-- DuplicateBatchError
    |
    +-- DispensingError
    |   +-- PrescriptionRequiredError
    |
    +-- AlertError
    |   +-- AlreadyAcknowledgedError
    |
    +-- RecallError
    |   +-- InvalidRecallTransitionError
    |   +-- ReturnedQuantityExceededError
    |
    +-- ProcurementError
    |   +-- NoEligibleSupplierError
    |   +-- InvalidOrderTransitionError
    |   +-- InvalidRatingError
    |
    +-- CatalogError
    |   +-- InactiveMedicineError
    |   +-- MedicineReferencedError
    |   +-- BatchReferencedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|-------------------------------------------
Not found    | NOT_FOUND                 | Base code; subclasses use <ENTITY>_NOT_FOUND
-------------|---------------------------|-------------------------------------------
Stock        | INSUFFICIENT_STOCK        | Requested quantity exceeds batch quantity
             | RECALLED_OR_EXPIRED       | Sale against recalled or expired batch
             | INVALID_QUANTITY          | Zero/negative quantity, negative price, bad dates
             | DUPLICATE_BATCH           | Batch number reused for the same medicine
-------------|---------------------------|-------------------------------------------
Dispensing   | PRESCRIPTION_REQUIRED     | Rx medicine sold without active prescription
-------------|---------------------------|-------------------------------------------
Alert        | ALREADY_ACKNOWLEDGED      | Alert acknowledged twice
-------------|---------------------------|-------------------------------------------
Recall       | INVALID_RECALL_TRANSITION | Recall status change not allowed
             | RETURNED_QUANTITY_EXCEEDED| Returns exceed the affected quantity
-------------|---------------------------|-------------------------------------------
Procurement  | NO_ELIGIBLE_SUPPLIER      | No active supplier for an automatic order
             | INVALID_ORDER_TRANSITION  | Purchase order status moved backwards
             | INVALID_RATING            | Supplier score outside 1-5
-------------|---------------------------|-------------------------------------------
Catalog      | INACTIVE_MEDICINE         | Receiving stock for a deactivated medicine
             | MEDICINE_REFERENCED       | Deleting a medicine that batches reference
             | BATCH_REFERENCED          | Deleting a batch that sales reference
-------------|---------------------------|-------------------------------------------
Concurrency  | CONCURRENCY_CONFLICT      | Lost race on a batch row; retry the operation
-------------|---------------------------|-------------------------------------------
Immutability | IMMUTABILITY_VIOLATION    | Modifying an append-only record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConcurrencyConflictError is the only transient kind. InventoryEngine retries
   it automatically (bounded) before surfacing it; callers may retry the whole
   operation again.

2. Everything else is final for the given input. A failed precondition leaves
   all state unmodified, so the caller can correct the input and resubmit.

===============================================================================
"""


class PharmacyKernelError(Exception):
    """
    Base exception for all pharmacy kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PHARMACY_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(PharmacyKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class MedicineNotFoundError(NotFoundError):
    code: str = "MEDICINE_NOT_FOUND"
    entity_type: str = "Medicine"


class SupplierNotFoundError(NotFoundError):
    code: str = "SUPPLIER_NOT_FOUND"
    entity_type: str = "Supplier"


class BatchNotFoundError(NotFoundError):
    code: str = "BATCH_NOT_FOUND"
    entity_type: str = "Batch"


class PrescriptionNotFoundError(NotFoundError):
    code: str = "PRESCRIPTION_NOT_FOUND"
    entity_type: str = "Prescription"


class AlertNotFoundError(NotFoundError):
    code: str = "ALERT_NOT_FOUND"
    entity_type: str = "Alert"


class RecallNotFoundError(NotFoundError):
    code: str = "RECALL_NOT_FOUND"
    entity_type: str = "Recall"


class PurchaseOrderNotFoundError(NotFoundError):
    code: str = "PURCHASE_ORDER_NOT_FOUND"
    entity_type: str = "PurchaseOrder"


# Stock exceptions


class StockError(PharmacyKernelError):
    """Base exception for stock ledger errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested quantity exceeds what the batch holds."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, batch_id: str, available: int, requested: int):
        self.batch_id = batch_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock in batch {batch_id}. "
            f"Available: {available}, Requested: {requested}"
        )


class RecalledOrExpiredError(StockError):
    """Batch cannot be sold because it is recalled or expired."""

    code: str = "RECALLED_OR_EXPIRED"

    def __init__(self, batch_id: str, reason: str):
        self.batch_id = batch_id
        self.reason = reason
        super().__init__(f"Batch {batch_id} cannot be sold: {reason}")


class InvalidQuantityError(StockError):
    """A quantity, price or date is outside its allowed range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class DuplicateBatchError(StockError):
    """Batch number already exists for this medicine."""

    code: str = "DUPLICATE_BATCH"

    def __init__(self, medicine_id: str, batch_number: str):
        self.medicine_id = medicine_id
        self.batch_number = batch_number
        super().__init__(
            f"Batch {batch_number} already exists for medicine {medicine_id}"
        )


# Dispensing exceptions


class DispensingError(PharmacyKernelError):
    """Base exception for dispensing-rule violations."""

    code: str = "DISPENSING_ERROR"


class PrescriptionRequiredError(DispensingError):
    """Prescription-only medicine sold without an active prescription."""

    code: str = "PRESCRIPTION_REQUIRED"

    def __init__(
        self,
        medicine_name: str,
        prescription_id: str | None = None,
        reason: str = "no prescription supplied",
    ):
        self.medicine_name = medicine_name
        self.prescription_id = prescription_id
        self.reason = reason
        super().__init__(
            f"Prescription required for medicine: {medicine_name} ({reason})"
        )


# Alert exceptions


class AlertError(PharmacyKernelError):
    """Base exception for alert errors."""

    code: str = "ALERT_ERROR"


class AlreadyAcknowledgedError(AlertError):
    """Alert acknowledgement is a one-shot transition."""

    code: str = "ALREADY_ACKNOWLEDGED"

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id} is already acknowledged")


# Recall exceptions


class RecallError(PharmacyKernelError):
    """Base exception for recall workflow errors."""

    code: str = "RECALL_ERROR"


class InvalidRecallTransitionError(RecallError):
    code: str = "INVALID_RECALL_TRANSITION"

    def __init__(self, recall_id: str, from_status: str, to_status: str):
        self.recall_id = recall_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Recall {recall_id} cannot move from {from_status} to {to_status}"
        )


class ReturnedQuantityExceededError(RecallError):
    code: str = "RETURNED_QUANTITY_EXCEEDED"

    def __init__(self, recall_id: str, affected: int, returned: int):
        self.recall_id = recall_id
        self.affected = affected
        self.returned = returned
        super().__init__(
            f"Recall {recall_id}: returned quantity {returned} exceeds "
            f"affected quantity {affected}"
        )


# Procurement exceptions


class ProcurementError(PharmacyKernelError):
    """Base exception for procurement errors."""

    code: str = "PROCUREMENT_ERROR"


class NoEligibleSupplierError(ProcurementError):
    """No active supplier can take an automatic order."""

    code: str = "NO_ELIGIBLE_SUPPLIER"

    def __init__(self, medicine_id: str):
        self.medicine_id = medicine_id
        super().__init__(f"No active supplier available for medicine {medicine_id}")


class InvalidOrderTransitionError(ProcurementError):
    code: str = "INVALID_ORDER_TRANSITION"

    def __init__(self, order_id: str, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Purchase order {order_id} cannot move from {from_status} to {to_status}"
        )


class InvalidRatingError(ProcurementError):
    code: str = "INVALID_RATING"

    def __init__(self, field: str, value: int):
        self.field = field
        self.value = value
        super().__init__(f"{field} must be between 1 and 5, got {value}")


# Catalog exceptions


class CatalogError(PharmacyKernelError):
    """Base exception for catalog and referential-integrity errors."""

    code: str = "CATALOG_ERROR"


class InactiveMedicineError(CatalogError):
    code: str = "INACTIVE_MEDICINE"

    def __init__(self, medicine_id: str):
        self.medicine_id = medicine_id
        super().__init__(f"Medicine {medicine_id} is deactivated")


class MedicineReferencedError(CatalogError):
    """Medicine cannot be deleted while batches reference it (RESTRICT)."""

    code: str = "MEDICINE_REFERENCED"

    def __init__(self, medicine_id: str, batch_count: int):
        self.medicine_id = medicine_id
        self.batch_count = batch_count
        super().__init__(
            f"Medicine {medicine_id} is referenced by {batch_count} batch(es); "
            f"deactivate it instead"
        )


class BatchReferencedError(CatalogError):
    """Batch cannot be deleted while sales reference it (RESTRICT)."""

    code: str = "BATCH_REFERENCED"

    def __init__(self, batch_id: str, sale_count: int):
        self.batch_id = batch_id
        self.sale_count = sale_count
        super().__init__(
            f"Batch {batch_id} is referenced by {sale_count} sale(s)"
        )


# Concurrency exceptions


class ConcurrencyError(PharmacyKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    Concurrent modification detected.

    Transient: the whole operation should be retried.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        suffix = f" after {attempts} attempt(s)" if attempts else ""
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}{suffix}"
        )


# Immutability exceptions


class ImmutabilityError(PharmacyKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
