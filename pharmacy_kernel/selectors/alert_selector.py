"""
Module: pharmacy_kernel.selectors.alert_selector
Responsibility: Open alert listings for the alert dashboard.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import case, select

from pharmacy_kernel.models.alert import Alert, AlertSeverity
from pharmacy_kernel.models.batch import Batch
from pharmacy_kernel.models.medicine import Medicine
from pharmacy_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AlertRow:
    alert_id: UUID
    batch_id: UUID
    recall_id: UUID | None
    alert_type: str
    severity: str
    message: str
    medicine_name: str
    batch_number: str
    generated_at: datetime
    is_acknowledged: bool


_SEVERITY_ORDER = case(
    {severity.value: severity.rank for severity in AlertSeverity},
    value=Alert.severity,
    else_=len(AlertSeverity),
)


class AlertSelector(BaseSelector):
    """Alert listings."""

    def _query(self):
        return (
            select(Alert, Batch.batch_number, Medicine.name)
            .join(Batch, Alert.batch_id == Batch.id)
            .join(Medicine, Batch.medicine_id == Medicine.id)
        )

    @staticmethod
    def _to_row(alert: Alert, batch_number: str, medicine_name: str) -> AlertRow:
        return AlertRow(
            alert_id=alert.id,
            batch_id=alert.batch_id,
            recall_id=alert.recall_id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            message=alert.alert_message,
            medicine_name=medicine_name,
            batch_number=batch_number,
            generated_at=alert.generated_at,
            is_acknowledged=alert.is_acknowledged,
        )

    def unacknowledged(self, alert_type: str | None = None) -> list[AlertRow]:
        """Open alerts, critical first, newest first within a severity."""
        stmt = self._query().where(Alert.is_acknowledged.is_(False))
        if alert_type is not None:
            stmt = stmt.where(Alert.alert_type == alert_type)
        rows = self.session.execute(
            stmt.order_by(_SEVERITY_ORDER, Alert.generated_at.desc(), Alert.id)
        ).all()
        return [self._to_row(*row) for row in rows]

    def for_batch(self, batch_id: UUID) -> list[AlertRow]:
        """Every alert on a batch, acknowledged or not, newest first."""
        rows = self.session.execute(
            self._query()
            .where(Alert.batch_id == batch_id)
            .order_by(Alert.generated_at.desc(), Alert.id)
        ).all()
        return [self._to_row(*row) for row in rows]
