"""
RecallWorkflow -- take a batch off the shelf.

Responsibility:
    Records a recall against a batch, raises the recall alert, flags the
    batch and disposes of its remaining stock, all as one atomic unit.
    Tracks recall resolution and units returned by customers.

Architecture position:
    Kernel > Services.  A mutating entry point on stock, alongside the Sale
    Transaction Processor.  Quantity changes go through the Stock Ledger.

Invariants enforced:
    - affected_quantity is the batch quantity read under the row lock.
    - The recall alert is keyed on the recall id, so it is raised even when
      an older recall alert for the same batch is still unacknowledged.
    - After the recall the batch is flagged recalled and holds 0 units; the
      prior quantity appears as one disposal movement referencing the
      recall.  A batch already at 0 gets no disposal movement.
    - Recall status moves active -> resolved | cancelled only.
    - returned_quantity never exceeds affected_quantity.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from pharmacy_kernel.config import VALID_SEVERITIES
from pharmacy_kernel.domain.actor import ActorContext
from pharmacy_kernel.domain.dtos import MovementReference
from pharmacy_kernel.domain.policies import recall_message
from pharmacy_kernel.exceptions import (
    InvalidQuantityError,
    InvalidRecallTransitionError,
    RecallNotFoundError,
    ReturnedQuantityExceededError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.alert import AlertType
from pharmacy_kernel.models.audit_log import AuditAction
from pharmacy_kernel.models.movement import MovementType, ReferenceType
from pharmacy_kernel.models.recall import Recall, RecallStatus
from pharmacy_kernel.services.alert_engine import AlertEngine
from pharmacy_kernel.services.audit_recorder import AuditRecorder
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.services.stock_ledger import StockLedger
from pharmacy_kernel.utils.serialization import model_snapshot

logger = get_logger("services.recall_workflow")


class RecallWorkflow(BaseService):
    """Recall lifecycle for batches."""

    def __init__(
        self,
        session,
        clock=None,
        config=None,
        ledger: StockLedger | None = None,
        alerts: AlertEngine | None = None,
        audit: AuditRecorder | None = None,
    ):
        super().__init__(session, clock, config)
        self._audit = audit or AuditRecorder(session, self.clock, self.config)
        self._alerts = alerts or AlertEngine(session, self.clock, self.config, audit=self._audit)
        self._ledger = ledger or StockLedger(
            session, self.clock, self.config, audit=self._audit, alerts=self._alerts,
        )

    def add_recall(
        self,
        batch_id: UUID,
        reason: str,
        recall_date: date,
        announced_by: str | None,
        severity: str,
        instructions: str | None,
        actor: ActorContext,
    ) -> UUID:
        """
        Recall a batch.

        Postconditions:
            - Recall(active) with affected_quantity = prior batch quantity.
            - Critical recall alert referencing the recall.
            - batch.is_recalled is True and batch.quantity is 0.

        Returns:
            The recall id.
        """
        if severity not in VALID_SEVERITIES:
            raise ValueError(f"severity must be one of {VALID_SEVERITIES}, got '{severity}'")

        batch = self._ledger.lock_batch(batch_id)
        medicine = batch.medicine
        affected = batch.quantity

        recall = Recall(
            batch_id=batch.id,
            recall_reason=reason,
            recall_date=recall_date,
            announced_by=announced_by,
            status=RecallStatus.ACTIVE.value,
            severity=severity,
            affected_quantity=affected,
            returned_quantity=0,
            instructions=instructions,
            created_by=actor.actor_id,
            created_at=self.clock.now(),
        )
        self.session.add(recall)
        self.session.flush()
        self._audit.record("recalls", recall.id, AuditAction.CREATE, None, model_snapshot(recall), actor)

        self._alerts.raise_alert(
            batch.id,
            AlertType.RECALL,
            recall_message(medicine.name, batch.batch_number, reason),
            "critical",
            recall_id=recall.id,
        )

        if not batch.is_recalled:
            before = model_snapshot(batch)
            batch.is_recalled = True
            batch.updated_by_id = actor.actor_id
            self.session.flush()
            self._audit.record(
                "batches",
                batch.id,
                AuditAction.UPDATE,
                before,
                model_snapshot(batch),
                actor,
                entity_version=batch.version,
            )

        if affected > 0:
            self._ledger.adjust(
                batch.id,
                -affected,
                f"Recalled: {reason}",
                actor,
                movement_type=MovementType.DISPOSAL,
                reference=MovementReference(ReferenceType.RECALL.value, recall.id),
            )

        logger.info(
            "recall_added",
            extra={
                "recall_id": str(recall.id),
                "batch_id": str(batch.id),
                "affected_quantity": affected,
                "severity": severity,
            },
        )
        return recall.id

    def update_recall_status(
        self,
        recall_id: UUID,
        status: RecallStatus | str,
        actor: ActorContext,
    ) -> None:
        target = RecallStatus(status)
        recall = self._lock_recall(recall_id)
        current = RecallStatus(recall.status)
        if current != RecallStatus.ACTIVE or target == RecallStatus.ACTIVE:
            raise InvalidRecallTransitionError(str(recall_id), current.value, target.value)

        before = model_snapshot(recall)
        recall.status = target.value
        self.session.flush()
        self._audit.record("recalls", recall.id, AuditAction.UPDATE, before, model_snapshot(recall), actor)
        logger.info(
            "recall_status_updated",
            extra={"recall_id": str(recall_id), "from_status": current.value, "to_status": target.value},
        )

    def record_returned_quantity(self, recall_id: UUID, quantity: int, actor: ActorContext) -> int:
        """
        Add units returned by customers to the recall.

        Returns:
            The new cumulative returned quantity.
        """
        if quantity <= 0:
            raise InvalidQuantityError("quantity", quantity, "must be positive")
        recall = self._lock_recall(recall_id)
        new_total = recall.returned_quantity + quantity
        if new_total > recall.affected_quantity:
            raise ReturnedQuantityExceededError(str(recall_id), recall.affected_quantity, new_total)

        before = model_snapshot(recall)
        recall.returned_quantity = new_total
        self.session.flush()
        self._audit.record("recalls", recall.id, AuditAction.UPDATE, before, model_snapshot(recall), actor)
        logger.info(
            "recall_returns_recorded",
            extra={"recall_id": str(recall_id), "quantity": quantity, "returned_quantity": new_total},
        )
        return new_total

    def _lock_recall(self, recall_id: UUID) -> Recall:
        recall = self.session.execute(
            select(Recall)
            .where(Recall.id == recall_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if recall is None:
            raise RecallNotFoundError(str(recall_id))
        return recall
