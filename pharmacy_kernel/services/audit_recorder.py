"""
AuditRecorder -- append-only change history.

Responsibility:
    Writes one AuditLog row per significant state change, with before and
    after snapshots of the record.

Architecture position:
    Kernel > Services.  Called by every mutating service inside the caller's
    transaction.

Invariants enforced:
    - Entries are written while the caller still holds the audited record's
      row lock, so per-record ordering follows commit order.
    - Each entry records the entity version when the entity has one.

Failure modes:
    - A failed write is logged at ERROR as ``audit_record_failed`` and
      discarded with its savepoint.  The primary operation continues; audit
      failure is never a reason to roll back a sale or a recall.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from pharmacy_kernel.domain.actor import ActorContext
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.audit_log import AuditAction, AuditLog
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.utils.serialization import to_jsonable

logger = get_logger("services.audit_recorder")


class AuditRecorder(BaseService):
    """Appends AuditLog entries in a savepoint of the caller's transaction."""

    def record(
        self,
        table_name: str,
        record_id: UUID,
        action: AuditAction | str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        actor: ActorContext,
        entity_version: int | None = None,
    ) -> UUID | None:
        """
        Append an audit entry.

        Returns:
            The AuditLog id, or None if the entry could not be written.
        """
        action_value = AuditAction(action).value
        savepoint = self.session.begin_nested()
        try:
            entry = AuditLog(
                table_name=table_name,
                record_id=record_id,
                action=action_value,
                old_values=to_jsonable(before) if before is not None else None,
                new_values=to_jsonable(after) if after is not None else None,
                entity_version=entity_version,
                changed_by=actor.actor_id,
                changed_at=self.clock.now(),
            )
            self.session.add(entry)
            self.session.flush()
            savepoint.commit()
        except (SQLAlchemyError, TypeError):
            if savepoint.is_active:
                savepoint.rollback()
            logger.error(
                "audit_record_failed",
                extra={
                    "table_name": table_name,
                    "record_id": str(record_id),
                    "action": action_value,
                },
                exc_info=True,
            )
            return None

        logger.debug(
            "audit_recorded",
            extra={
                "table_name": table_name,
                "record_id": str(record_id),
                "action": action_value,
                "entity_version": entity_version,
            },
        )
        return entry.id
