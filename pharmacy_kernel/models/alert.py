"""
Module: pharmacy_kernel.models.alert
Responsibility: ORM persistence for derived operational alerts.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one unacknowledged alert per dedup_key.  A partial unique
      index on dedup_key WHERE is_acknowledged = false makes this atomic
      under concurrent writers.
    - dedup_key is "<batch_id>:<alert_type>" for every type except recall,
      whose key is "recall:<recall_id>".
    - Only the acknowledgement fields change after insert, and an
      acknowledgement is never revoked (db/integrity.py).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import Base, UUIDString


class AlertType(str, Enum):
    EXPIRY = "expiry"
    RECALL = "recall"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    REORDER = "reorder"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort rank, most urgent first."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.HIGH: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 3,
}


def build_dedup_key(batch_id: UUID, alert_type: str, recall_id: UUID | None = None) -> str:
    if alert_type == AlertType.RECALL.value:
        return f"recall:{recall_id}"
    return f"{batch_id}:{alert_type}"


class Alert(Base):
    """An alert raised against a batch."""

    __tablename__ = "alerts"

    __table_args__ = (
        Index(
            "uq_alerts_open_dedup_key",
            "dedup_key",
            unique=True,
            postgresql_where=text("is_acknowledged = false"),
            sqlite_where=text("is_acknowledged = 0"),
        ),
        Index("idx_alerts_batch", "batch_id"),
        Index("idx_alerts_unacknowledged", "is_acknowledged", "severity"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("batches.id", ondelete="CASCADE"), nullable=False,
    )
    recall_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("recalls.id", ondelete="CASCADE"), nullable=True,
    )
    alert_type: Mapped[str] = mapped_column(String(20), nullable=False)
    alert_message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    dedup_key: Mapped[str] = mapped_column(String(120), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(nullable=False)

    is_acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    acknowledged_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(nullable=True)
    action_taken: Mapped[str | None] = mapped_column(Text, nullable=True)

    batch = relationship("Batch", back_populates="alerts")
    recall = relationship("Recall", back_populates="alerts")

    def __repr__(self) -> str:
        return f"<Alert {self.alert_type}/{self.severity} {self.dedup_key}>"
