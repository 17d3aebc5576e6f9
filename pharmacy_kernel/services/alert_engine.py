"""
AlertEngine -- derived alerts with atomic deduplication.

Responsibility:
    Raises expiry, recall, reorder, low-stock and out-of-stock alerts,
    deduplicates them, records acknowledgements, and scans for batches
    approaching expiry.

Architecture position:
    Kernel > Services.  Called by the Stock Ledger (receipt), the Sale
    Transaction Processor and the Recall Workflow as part of their
    transaction.

Invariants enforced:
    - At most one unacknowledged alert per dedup key.  The existence check
      is a fast path; the partial unique index on ``alerts.dedup_key`` is
      the guarantee.  A concurrent insert that loses the race surfaces as
      an IntegrityError inside a savepoint and is reported as suppressed.
    - Recall alerts are keyed on the recall id, never on (batch, type), so a
      new recall is never hidden behind an older unacknowledged one.
    - Acknowledgement is a conditional update; exactly one caller wins.

Failure modes:
    - AlreadyAcknowledgedError / AlertNotFoundError from acknowledge().
    - ValueError for an unknown alert type or severity (programming error).
"""

from datetime import timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from pharmacy_kernel.config import VALID_SEVERITIES, ExpiryBands
from pharmacy_kernel.domain.actor import ActorContext
from pharmacy_kernel.domain.dtos import AlertResult
from pharmacy_kernel.domain.policies import expiry_severity, scan_expiry_message
from pharmacy_kernel.exceptions import AlertNotFoundError, AlreadyAcknowledgedError
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.alert import Alert, AlertType, build_dedup_key
from pharmacy_kernel.models.audit_log import AuditAction
from pharmacy_kernel.models.batch import Batch
from pharmacy_kernel.models.medicine import Medicine
from pharmacy_kernel.services.audit_recorder import AuditRecorder
from pharmacy_kernel.services.base import BaseService

logger = get_logger("services.alert_engine")


class AlertEngine(BaseService):
    """
    Raises and acknowledges alerts.

    Usage:
        alerts = AlertEngine(session, clock, config, audit=recorder)
        result = alerts.raise_alert(batch.id, AlertType.EXPIRY, msg, "high")
        if result.suppressed:
            ...  # an open alert with the same key already exists
    """

    def __init__(self, session, clock=None, config=None, audit: AuditRecorder | None = None):
        super().__init__(session, clock, config)
        self._audit = audit or AuditRecorder(session, self.clock, self.config)

    def raise_alert(
        self,
        batch_id: UUID,
        alert_type: AlertType | str,
        message: str,
        severity: str,
        recall_id: UUID | None = None,
    ) -> AlertResult:
        """
        Insert an alert unless an unacknowledged one with the same key exists.

        Postconditions:
            - Exactly one unacknowledged alert exists for the dedup key.
        """
        type_value = AlertType(alert_type).value
        if severity not in VALID_SEVERITIES:
            raise ValueError(f"severity must be one of {VALID_SEVERITIES}, got '{severity}'")
        if type_value == AlertType.RECALL.value and recall_id is None:
            raise ValueError("recall alerts require a recall_id")

        key = build_dedup_key(batch_id, type_value, recall_id)

        existing = self.session.execute(
            select(Alert.id).where(
                Alert.dedup_key == key,
                Alert.is_acknowledged.is_(False),
            )
        ).scalar_one_or_none()
        if existing is not None:
            logger.info(
                "alert_suppressed",
                extra={"dedup_key": key, "existing_alert_id": str(existing)},
            )
            return AlertResult(dedup_key=key, suppressed=True)

        savepoint = self.session.begin_nested()
        try:
            alert = Alert(
                batch_id=batch_id,
                recall_id=recall_id,
                alert_type=type_value,
                alert_message=message,
                severity=severity,
                dedup_key=key,
                generated_at=self.clock.now(),
                is_acknowledged=False,
            )
            self.session.add(alert)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Lost the race to a concurrent writer holding the same key
            savepoint.rollback()
            logger.info("alert_suppressed", extra={"dedup_key": key, "race": True})
            return AlertResult(dedup_key=key, suppressed=True)

        logger.info(
            "alert_raised",
            extra={
                "alert_id": str(alert.id),
                "alert_type": type_value,
                "severity": severity,
                "dedup_key": key,
            },
        )
        return AlertResult(dedup_key=key, alert_id=alert.id)

    def acknowledge(
        self,
        alert_id: UUID,
        actor: ActorContext,
        action_taken: str | None = None,
    ) -> None:
        """
        Mark an alert acknowledged.

        Raises:
            AlertNotFoundError: No alert with this id.
            AlreadyAcknowledgedError: Someone acknowledged it first.
        """
        acknowledged_at = self.clock.now()
        result = self.session.execute(
            update(Alert)
            .where(Alert.id == alert_id, Alert.is_acknowledged.is_(False))
            .values(
                is_acknowledged=True,
                acknowledged_by=actor.actor_id,
                acknowledged_at=acknowledged_at,
                action_taken=action_taken,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            exists = self.session.execute(
                select(Alert.id).where(Alert.id == alert_id)
            ).scalar_one_or_none()
            if exists is None:
                raise AlertNotFoundError(str(alert_id))
            raise AlreadyAcknowledgedError(str(alert_id))

        self._audit.record(
            "alerts",
            alert_id,
            AuditAction.UPDATE,
            before={"is_acknowledged": False},
            after={
                "is_acknowledged": True,
                "acknowledged_by": actor.actor_id,
                "acknowledged_at": acknowledged_at,
                "action_taken": action_taken,
            },
            actor=actor,
        )
        logger.info(
            "alert_acknowledged",
            extra={"alert_id": str(alert_id), "acknowledged_by": str(actor.actor_id)},
        )

    def scan_expiring(
        self,
        threshold_days: int,
        actor: ActorContext,
        bands: ExpiryBands | None = None,
    ) -> list[UUID]:
        """
        Raise expiry alerts for in-stock, non-recalled batches expiring
        within ``threshold_days`` of today.

        Severity by days remaining follows ``bands`` (default: the configured
        scan bands, <= 7 high, <= 30 medium) and falls back to the configured
        default (low) beyond the last band.

        Returns:
            Ids of newly raised alerts; suppressed duplicates are not listed.
        """
        if threshold_days < 0:
            raise ValueError("threshold_days cannot be negative")
        today = self.clock.today()
        bands = bands if bands is not None else self.config.scan_expiry_bands

        rows = self.session.execute(
            select(Batch.id, Batch.batch_number, Batch.expiry_date, Medicine.name)
            .join(Medicine, Batch.medicine_id == Medicine.id)
            .where(
                Batch.quantity > 0,
                Batch.is_recalled.is_(False),
                Batch.expiry_date >= today,
                Batch.expiry_date <= today + timedelta(days=threshold_days),
            )
            .order_by(Batch.expiry_date, Batch.batch_number)
        ).all()

        raised: list[UUID] = []
        suppressed = 0
        for batch_id, batch_number, expiry_date, medicine_name in rows:
            days = (expiry_date - today).days
            severity = expiry_severity(days, bands, default=self.config.scan_default_severity)
            result = self.raise_alert(
                batch_id,
                AlertType.EXPIRY,
                scan_expiry_message(medicine_name, batch_number, days),
                severity,
            )
            if result.alert_id is not None:
                raised.append(result.alert_id)
            else:
                suppressed += 1

        logger.info(
            "expiry_scan_completed",
            extra={
                "threshold_days": threshold_days,
                "candidates": len(rows),
                "raised": len(raised),
                "suppressed": suppressed,
                "actor_id": str(actor.actor_id),
            },
        )
        return raised

    def evaluate_stock_levels(self, batch: Batch, medicine: Medicine) -> list[AlertResult]:
        """Out-of-stock (high) at zero; low-stock (medium) at or below the minimum level."""
        results: list[AlertResult] = []
        if batch.quantity == 0:
            results.append(
                self.raise_alert(
                    batch.id,
                    AlertType.OUT_OF_STOCK,
                    f"{medicine.name} (Batch: {batch.batch_number}) is out of stock",
                    "high",
                )
            )
        elif batch.quantity <= medicine.minimum_stock_level:
            results.append(
                self.raise_alert(
                    batch.id,
                    AlertType.LOW_STOCK,
                    f"Low stock for {medicine.name} (Batch: {batch.batch_number}). "
                    f"Current: {batch.quantity}, minimum: {medicine.minimum_stock_level}",
                    "medium",
                )
            )
        return results
