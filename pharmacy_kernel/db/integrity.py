"""
ORM-Level Integrity Enforcement for the Entity Store.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock ledger is only trustworthy if its trail cannot be rewritten. Sales,
inventory movements and audit log entries are append-only, and the catalog
follows explicit referential rules instead of implicit database cascades.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_flush]  --> referential rules (RESTRICT / cascade-only deletes)
         |
         v
    [before_update] --> append-only checks ----------> ImmutabilityViolationError
         |
         v
    [before_delete] --> audit log is never deleted --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | Rule
-------------------|---------------------------------------------------------
Sale               | Never updated, never deleted
InventoryMovement  | Never updated; deleted only together with its Batch
AuditLog           | Never updated, never deleted
Alert              | Only the acknowledgement fields may change
Medicine           | Delete rejected while any Batch references it (RESTRICT)
Batch              | Delete rejected while any Sale references it (RESTRICT);
                   | otherwise cascades to Alerts, Recalls, Movements

===============================================================================
USAGE
===============================================================================

Called by create_tables() and at application startup:

    from pharmacy_kernel.db.integrity import register_integrity_listeners
    register_integrity_listeners()

Tests that need to bypass the rules may call unregister_integrity_listeners().
"""

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from pharmacy_kernel.exceptions import (
    BatchReferencedError,
    ImmutabilityViolationError,
    MedicineReferencedError,
)
from pharmacy_kernel.logging_config import get_logger

logger = get_logger("db.integrity")

_ALERT_MUTABLE_FIELDS = frozenset(
    {"is_acknowledged", "acknowledged_by", "acknowledged_at", "action_taken"}
)


def _blocked(entity_type: str, entity_id, operation: str, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_deletions_before_flush(session, flush_context, instances):
    """
    Enforce referential rules on objects marked for deletion.

    Runs in SessionEvents.before_flush, before the flush plan is finalized.
    """
    from pharmacy_kernel.models.batch import Batch
    from pharmacy_kernel.models.medicine import Medicine
    from pharmacy_kernel.models.movement import InventoryMovement
    from pharmacy_kernel.models.sale import Sale

    deleted = list(session.deleted)
    deleted_batch_ids = {obj.id for obj in deleted if isinstance(obj, Batch)}

    for obj in deleted:
        if isinstance(obj, Sale):
            raise _blocked("Sale", obj.id, "DELETE", "Sales are append-only")

        if isinstance(obj, InventoryMovement) and obj.batch_id not in deleted_batch_ids:
            raise _blocked(
                "InventoryMovement", obj.id, "DELETE",
                "Movements can only be removed together with their batch",
            )

        if isinstance(obj, Medicine):
            with session.no_autoflush:
                batch_count = session.execute(
                    select(func.count(Batch.id)).where(Batch.medicine_id == obj.id)
                ).scalar_one()
            if batch_count:
                logger.warning(
                    "medicine_delete_restricted",
                    extra={"medicine_id": str(obj.id), "batch_count": batch_count},
                )
                raise MedicineReferencedError(str(obj.id), batch_count)

        if isinstance(obj, Batch):
            with session.no_autoflush:
                sale_count = session.execute(
                    select(func.count(Sale.id)).where(Sale.batch_id == obj.id)
                ).scalar_one()
            if sale_count:
                logger.warning(
                    "batch_delete_restricted",
                    extra={"batch_id": str(obj.id), "sale_count": sale_count},
                )
                raise BatchReferencedError(str(obj.id), sale_count)


def _check_append_only_update(mapper, connection, target):
    """Block every UPDATE on append-only records."""
    raise _blocked(
        type(target).__name__, target.id, "UPDATE",
        f"{type(target).__name__} records are append-only",
    )


def _check_audit_log_delete(mapper, connection, target):
    raise _blocked("AuditLog", target.id, "DELETE", "Audit log entries cannot be deleted")


def _check_alert_update(mapper, connection, target):
    """
    Alerts are derived records: only the acknowledgement fields may change,
    and an acknowledged alert cannot be un-acknowledged.
    """
    from sqlalchemy import inspect

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _ALERT_MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            raise _blocked(
                "Alert", target.id, "UPDATE",
                f"Cannot modify field '{attr.key}' on an alert",
            )

    ack_history = get_history(target, "is_acknowledged")
    if ack_history.deleted and ack_history.deleted[0] is True:
        raise _blocked("Alert", target.id, "UPDATE", "Acknowledgement cannot be revoked")


_registered = False


def register_integrity_listeners() -> None:
    """Register all ORM integrity listeners (idempotent)."""
    global _registered
    if _registered:
        return

    from pharmacy_kernel.models.alert import Alert
    from pharmacy_kernel.models.audit_log import AuditLog
    from pharmacy_kernel.models.movement import InventoryMovement
    from pharmacy_kernel.models.sale import Sale

    event.listen(Session, "before_flush", _check_deletions_before_flush)
    for model in (Sale, InventoryMovement, AuditLog):
        event.listen(model, "before_update", _check_append_only_update)
    event.listen(AuditLog, "before_delete", _check_audit_log_delete)
    event.listen(Alert, "before_update", _check_alert_update)

    _registered = True
    logger.debug("integrity_listeners_registered")


def unregister_integrity_listeners() -> None:
    """Remove all ORM integrity listeners. FOR TESTING ONLY."""
    global _registered
    if not _registered:
        return

    from pharmacy_kernel.models.alert import Alert
    from pharmacy_kernel.models.audit_log import AuditLog
    from pharmacy_kernel.models.movement import InventoryMovement
    from pharmacy_kernel.models.sale import Sale

    event.remove(Session, "before_flush", _check_deletions_before_flush)
    for model in (Sale, InventoryMovement, AuditLog):
        event.remove(model, "before_update", _check_append_only_update)
    event.remove(AuditLog, "before_delete", _check_audit_log_delete)
    event.remove(Alert, "before_update", _check_alert_update)

    _registered = False
    logger.debug("integrity_listeners_unregistered")
