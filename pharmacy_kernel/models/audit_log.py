"""
Module: pharmacy_kernel.models.audit_log
Responsibility: ORM persistence for the row-level change history.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit log entries are append-only; no UPDATE or DELETE.
    - record_id carries no foreign key so history survives deletion of the
      audited record.
    - entity_version is the audited record's version counter after the
      change, when the record has one (Batch).  Entries for one record are
      written while its row lock is held, so versions ascend with changed_at.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class AuditLog(Base):
    """One before/after snapshot of a change to an entity."""

    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_record", "table_name", "record_id"),
        Index("idx_audit_changed_at", "changed_at"),
    )

    table_name: Mapped[str] = mapped_column(String(50), nullable=False)
    record_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    entity_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    changed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.table_name}:{self.record_id}>"
