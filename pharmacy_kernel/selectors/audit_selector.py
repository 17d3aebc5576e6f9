"""
Module: pharmacy_kernel.selectors.audit_selector
Responsibility: Change history of a single record.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from pharmacy_kernel.models.audit_log import AuditLog
from pharmacy_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AuditEntry:
    audit_id: UUID
    table_name: str
    record_id: UUID
    action: str
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    entity_version: int | None
    changed_by: UUID
    changed_at: datetime


class AuditSelector(BaseSelector):
    def history(self, table_name: str, record_id: UUID) -> list[AuditEntry]:
        """
        Audit entries for a record, oldest first.

        Entries carrying an entity version are ordered by it; the version is
        assigned under the record's row lock, so it follows commit order even
        when two entries share a timestamp.
        """
        rows = self.session.execute(
            select(AuditLog).where(
                AuditLog.table_name == table_name,
                AuditLog.record_id == record_id,
            )
        ).scalars().all()
        entries = [
            AuditEntry(
                audit_id=row.id,
                table_name=row.table_name,
                record_id=row.record_id,
                action=row.action,
                old_values=row.old_values,
                new_values=row.new_values,
                entity_version=row.entity_version,
                changed_by=row.changed_by,
                changed_at=row.changed_at,
            )
            for row in rows
        ]
        return sorted(
            entries,
            key=lambda e: (e.changed_at, e.entity_version if e.entity_version is not None else 0),
        )
