"""
Module: pharmacy_kernel.models.prescription
Responsibility: ORM persistence for prescriptions that gate the sale of
    prescription-only medicines.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import date
from enum import Enum

from sqlalchemy import Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import TrackedBase


class PrescriptionStatus(str, Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"


class Prescription(TrackedBase):
    """A prescription; only an active one authorises a sale."""

    __tablename__ = "prescriptions"

    __table_args__ = (
        Index("idx_prescriptions_status", "status"),
    )

    prescription_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    patient_name: Mapped[str] = mapped_column(String(100), nullable=False)
    patient_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    patient_age: Mapped[int | None] = mapped_column(nullable=True)
    doctor_name: Mapped[str] = mapped_column(String(100), nullable=False)
    doctor_license: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hospital_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PrescriptionStatus.ACTIVE.value,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == PrescriptionStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Prescription {self.prescription_number} {self.status}>"
