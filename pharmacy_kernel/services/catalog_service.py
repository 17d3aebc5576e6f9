"""
CatalogService -- medicines, suppliers, prescriptions and batch removal.

Responsibility:
    Maintains the reference records that stock operations depend on.

Architecture position:
    Kernel > Services.  Exposed through InventoryEngine.

Invariants enforced:
    - Medicines and suppliers are soft-deactivated.  Deleting a medicine is
      rejected while any batch references it; deleting a batch is rejected
      while any sale references it (db/integrity.py).  Deleting a batch
      removes its alerts, recalls and movements.
    - Interaction pairs are unordered and stored once.
    - Every change is audited.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from pharmacy_kernel.domain.actor import ActorContext
from pharmacy_kernel.exceptions import (
    InvalidQuantityError,
    MedicineNotFoundError,
    PrescriptionNotFoundError,
    SupplierNotFoundError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.audit_log import AuditAction
from pharmacy_kernel.models.medicine import InteractionType, Medicine, MedicineInteraction
from pharmacy_kernel.models.prescription import Prescription, PrescriptionStatus
from pharmacy_kernel.models.supplier import Supplier
from pharmacy_kernel.services.audit_recorder import AuditRecorder
from pharmacy_kernel.services.base import BaseService
from pharmacy_kernel.services.stock_ledger import StockLedger
from pharmacy_kernel.utils.serialization import model_snapshot

logger = get_logger("services.catalog_service")


class CatalogService(BaseService):
    """Reference-data maintenance."""

    def __init__(self, session, clock=None, config=None, audit: AuditRecorder | None = None):
        super().__init__(session, clock, config)
        self._audit = audit or AuditRecorder(session, self.clock, self.config)

    # ------------------------------------------------------------------
    # Medicines
    # ------------------------------------------------------------------

    def register_medicine(
        self,
        name: str,
        actor: ActorContext,
        *,
        requires_prescription: bool = False,
        minimum_stock_level: int = 10,
        reorder_point: int = 20,
        generic_name: str | None = None,
        composition: str | None = None,
        manufacturer: str | None = None,
        dosage_form: str | None = None,
        strength: str | None = None,
        description: str | None = None,
        barcode: str | None = None,
        category: str | None = None,
        storage_conditions: str | None = None,
        side_effects: str | None = None,
    ) -> UUID:
        if not name or not name.strip():
            raise ValueError("medicine name is required")
        if minimum_stock_level < 0:
            raise InvalidQuantityError("minimum_stock_level", minimum_stock_level, "must be >= 0")
        if reorder_point < 0:
            raise InvalidQuantityError("reorder_point", reorder_point, "must be >= 0")

        medicine = Medicine(
            name=name,
            generic_name=generic_name,
            composition=composition,
            manufacturer=manufacturer,
            dosage_form=dosage_form,
            strength=strength,
            description=description,
            barcode=barcode,
            category=category,
            storage_conditions=storage_conditions,
            side_effects=side_effects,
            requires_prescription=requires_prescription,
            minimum_stock_level=minimum_stock_level,
            reorder_point=reorder_point,
            is_active=True,
            created_by_id=actor.actor_id,
        )
        self.session.add(medicine)
        self.session.flush()
        self._audit.record("medicines", medicine.id, AuditAction.CREATE, None, model_snapshot(medicine), actor)
        logger.info(
            "medicine_registered",
            extra={
                "medicine_id": str(medicine.id),
                "medicine_name": name,
                "requires_prescription": requires_prescription,
            },
        )
        return medicine.id

    def deactivate_medicine(self, medicine_id: UUID, actor: ActorContext) -> None:
        medicine = self._get_medicine(medicine_id)
        if not medicine.is_active:
            return
        before = model_snapshot(medicine)
        medicine.is_active = False
        medicine.updated_by_id = actor.actor_id
        self.session.flush()
        self._audit.record("medicines", medicine.id, AuditAction.UPDATE, before, model_snapshot(medicine), actor)
        logger.info("medicine_deactivated", extra={"medicine_id": str(medicine_id)})

    def delete_medicine(self, medicine_id: UUID, actor: ActorContext) -> None:
        """
        Hard-delete a medicine.

        Raises:
            MedicineReferencedError: Batches still reference the medicine.
        """
        medicine = self._get_medicine(medicine_id)
        before = model_snapshot(medicine)
        self.session.delete(medicine)
        self.session.flush()
        self._audit.record("medicines", medicine_id, AuditAction.DELETE, before, None, actor)
        logger.info("medicine_deleted", extra={"medicine_id": str(medicine_id)})

    def add_interaction(
        self,
        medicine_a: UUID,
        medicine_b: UUID,
        interaction_type: InteractionType | str,
        description: str,
        actor: ActorContext,
    ) -> UUID:
        """
        Record an interaction between two medicines.

        The pair is unordered; recording it again returns the existing id.
        """
        type_value = InteractionType(interaction_type).value
        if medicine_a == medicine_b:
            raise ValueError("an interaction needs two different medicines")
        self._get_medicine(medicine_a)
        self._get_medicine(medicine_b)

        first, second = sorted((medicine_a, medicine_b), key=str)
        existing = self.session.execute(
            select(MedicineInteraction.id).where(
                MedicineInteraction.medicine_id_1 == first,
                MedicineInteraction.medicine_id_2 == second,
            )
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        interaction = MedicineInteraction(
            medicine_id_1=first,
            medicine_id_2=second,
            interaction_type=type_value,
            description=description,
            created_at=self.clock.now(),
        )
        self.session.add(interaction)
        self.session.flush()
        self._audit.record(
            "medicine_interactions",
            interaction.id,
            AuditAction.CREATE,
            None,
            model_snapshot(interaction),
            actor,
        )
        logger.info(
            "interaction_added",
            extra={"interaction_id": str(interaction.id), "interaction_type": type_value},
        )
        return interaction.id

    # ------------------------------------------------------------------
    # Suppliers
    # ------------------------------------------------------------------

    def register_supplier(
        self,
        supplier_name: str,
        actor: ActorContext,
        *,
        contact_person: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        address: str | None = None,
        city: str | None = None,
        country: str | None = None,
    ) -> UUID:
        if not supplier_name or not supplier_name.strip():
            raise ValueError("supplier name is required")
        supplier = Supplier(
            supplier_name=supplier_name,
            contact_person=contact_person,
            email=email,
            phone=phone,
            address=address,
            city=city,
            country=country,
            total_orders=0,
            is_active=True,
            created_by_id=actor.actor_id,
        )
        self.session.add(supplier)
        self.session.flush()
        self._audit.record("suppliers", supplier.id, AuditAction.CREATE, None, model_snapshot(supplier), actor)
        logger.info("supplier_registered", extra={"supplier_id": str(supplier.id)})
        return supplier.id

    def deactivate_supplier(self, supplier_id: UUID, actor: ActorContext) -> None:
        supplier = self.session.get(Supplier, supplier_id)
        if supplier is None:
            raise SupplierNotFoundError(str(supplier_id))
        if not supplier.is_active:
            return
        before = model_snapshot(supplier)
        supplier.is_active = False
        supplier.updated_by_id = actor.actor_id
        self.session.flush()
        self._audit.record("suppliers", supplier.id, AuditAction.UPDATE, before, model_snapshot(supplier), actor)
        logger.info("supplier_deactivated", extra={"supplier_id": str(supplier_id)})

    # ------------------------------------------------------------------
    # Prescriptions
    # ------------------------------------------------------------------

    def register_prescription(
        self,
        prescription_number: str,
        patient_name: str,
        doctor_name: str,
        issue_date: date,
        actor: ActorContext,
        *,
        expiry_date: date | None = None,
        patient_phone: str | None = None,
        patient_age: int | None = None,
        doctor_license: str | None = None,
        hospital_name: str | None = None,
        notes: str | None = None,
    ) -> UUID:
        if expiry_date is not None and expiry_date < issue_date:
            raise InvalidQuantityError("expiry_date", expiry_date, "must not be before issue_date")
        prescription = Prescription(
            prescription_number=prescription_number,
            patient_name=patient_name,
            patient_phone=patient_phone,
            patient_age=patient_age,
            doctor_name=doctor_name,
            doctor_license=doctor_license,
            hospital_name=hospital_name,
            issue_date=issue_date,
            expiry_date=expiry_date,
            status=PrescriptionStatus.ACTIVE.value,
            notes=notes,
            created_by_id=actor.actor_id,
        )
        self.session.add(prescription)
        self.session.flush()
        self._audit.record(
            "prescriptions", prescription.id, AuditAction.CREATE, None, model_snapshot(prescription), actor,
        )
        logger.info("prescription_registered", extra={"prescription_id": str(prescription.id)})
        return prescription.id

    def update_prescription_status(
        self,
        prescription_id: UUID,
        status: PrescriptionStatus | str,
        actor: ActorContext,
    ) -> None:
        target = PrescriptionStatus(status).value
        prescription = self.session.get(Prescription, prescription_id)
        if prescription is None:
            raise PrescriptionNotFoundError(str(prescription_id))
        if prescription.status == target:
            return
        before = model_snapshot(prescription)
        prescription.status = target
        prescription.updated_by_id = actor.actor_id
        self.session.flush()
        self._audit.record(
            "prescriptions", prescription.id, AuditAction.UPDATE, before, model_snapshot(prescription), actor,
        )
        logger.info(
            "prescription_status_updated",
            extra={"prescription_id": str(prescription_id), "status": target},
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def delete_batch(self, batch_id: UUID, actor: ActorContext) -> None:
        """
        Hard-delete a batch with its alerts, recalls and movements.

        Raises:
            BatchNotFoundError: No such batch.
            BatchReferencedError: Sales reference the batch.
        """
        batch = StockLedger(self.session, self.clock, self.config, audit=self._audit).lock_batch(batch_id)
        before = model_snapshot(batch)
        version = batch.version
        self.session.delete(batch)
        self.session.flush()
        self._audit.record("batches", batch_id, AuditAction.DELETE, before, None, actor, entity_version=version)
        logger.info("batch_deleted", extra={"batch_id": str(batch_id)})

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get_medicine(self, medicine_id: UUID) -> Medicine:
        medicine = self.session.get(Medicine, medicine_id)
        if medicine is None:
            raise MedicineNotFoundError(str(medicine_id))
        return medicine
