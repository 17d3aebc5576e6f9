"""
Audit recording and append-only enforcement.

The audit log, sales and movements form the trail that explains every
quantity; none of them can be rewritten through the ORM.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from pharmacy_kernel.exceptions import ImmutabilityViolationError
from pharmacy_kernel.models.alert import Alert
from pharmacy_kernel.models.audit_log import AuditLog
from pharmacy_kernel.models.movement import InventoryMovement
from pharmacy_kernel.models.sale import Sale
from pharmacy_kernel.selectors.audit_selector import AuditSelector


class TestAuditRecorder:
    def test_record_returns_entry_id(self, services, actor, clock):
        record_id = uuid4()

        entry_id = services.audit.record(
            "medicines", record_id, "update",
            before={"price": Decimal("12.50")},
            after={"price": Decimal("13.00")},
            actor=actor,
            entity_version=4,
        )

        entry = services.session.get(AuditLog, entry_id)
        assert entry.old_values == {"price": "12.5"}
        assert entry.new_values == {"price": "13"}
        assert entry.entity_version == 4
        assert entry.changed_by == actor.actor_id

    def test_unserializable_snapshot_is_logged_and_skipped(self, services, actor, captured_logs):
        entry_id = services.audit.record(
            "medicines", uuid4(), "update", before=None, after={"blob": object()}, actor=actor,
        )

        assert entry_id is None
        failures = [r for r in captured_logs() if r["message"] == "audit_record_failed"]
        assert len(failures) == 1
        assert failures[0]["level"] == "ERROR"
        assert failures[0]["exc_type"] == "TypeError"

    def test_failed_audit_does_not_poison_the_transaction(self, services, actor):
        services.audit.record("medicines", uuid4(), "update", None, {"blob": object()}, actor)

        medicine_id = services.catalog.register_medicine("Still works", actor)

        assert medicine_id is not None

    def test_unknown_action_rejected(self, services, actor):
        with pytest.raises(ValueError):
            services.audit.record("medicines", uuid4(), "archive", None, None, actor)


class TestAuditHistory:
    def test_batch_history_follows_versions(self, make_medicine, make_batch, engine, actor, clock, session_factory):
        batch_id = make_batch(make_medicine(), quantity=40)
        engine.adjust_stock(batch_id, -5, "count", actor)
        engine.record_sale(batch_id, 5, Decimal("2.00"), None, None, "cash", actor)

        session = session_factory()
        try:
            history = AuditSelector(session, clock).history("batches", batch_id)
        finally:
            session.close()

        assert [e.action for e in history] == ["create", "update", "update"]
        assert [e.entity_version for e in history] == [1, 2, 3]
        assert [e.new_values["quantity"] for e in history] == [40, 35, 30]
        assert history[1].old_values["quantity"] == 40


class TestAppendOnly:
    def test_sale_cannot_be_updated(self, make_medicine, make_batch, engine, actor, open_session):
        batch_id = make_batch(make_medicine())
        sale_id = engine.record_sale(batch_id, 1, Decimal("1.00"), None, None, "cash", actor).sale_id

        with open_session() as session:
            session.get(Sale, sale_id).sale_price = Decimal("0.01")
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_sale_cannot_be_deleted(self, make_medicine, make_batch, engine, actor, open_session):
        batch_id = make_batch(make_medicine())
        sale_id = engine.record_sale(batch_id, 1, Decimal("1.00"), None, None, "cash", actor).sale_id

        with open_session() as session:
            session.delete(session.get(Sale, sale_id))
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_movement_cannot_be_updated(self, make_medicine, make_batch, open_session):
        batch_id = make_batch(make_medicine())

        with open_session() as session:
            movement = session.execute(
                select(InventoryMovement).where(InventoryMovement.batch_id == batch_id)
            ).scalar_one()
            movement.quantity = 1000
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_movement_cannot_be_deleted_on_its_own(self, make_medicine, make_batch, open_session):
        batch_id = make_batch(make_medicine())

        with open_session() as session:
            movement = session.execute(
                select(InventoryMovement).where(InventoryMovement.batch_id == batch_id)
            ).scalar_one()
            session.delete(movement)
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_audit_log_cannot_be_deleted(self, make_medicine, open_session):
        medicine_id = make_medicine()

        with open_session() as session:
            entry = session.execute(
                select(AuditLog).where(AuditLog.record_id == medicine_id)
            ).scalar_one()
            session.delete(entry)
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_audit_log_cannot_be_updated(self, make_medicine, open_session):
        medicine_id = make_medicine()

        with open_session() as session:
            entry = session.execute(
                select(AuditLog).where(AuditLog.record_id == medicine_id)
            ).scalar_one()
            entry.table_name = "elsewhere"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_acknowledgement_cannot_be_revoked(self, make_medicine, make_batch, engine, actor, open_session):
        batch_id = make_batch(make_medicine())
        alert_id = engine.raise_alert(batch_id, "reorder", "r", "medium").alert_id
        engine.acknowledge_alert(alert_id, actor)

        with open_session() as session:
            session.get(Alert, alert_id).is_acknowledged = False
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
