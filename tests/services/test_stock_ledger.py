"""
Stock ledger: receipts, signed adjustments and the expiry sweep.

Every quantity change must leave exactly one movement and one audit entry
behind, and the batch quantity must never go below zero.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from pharmacy_kernel.domain.dtos import BatchSpec
from pharmacy_kernel.exceptions import (
    BatchNotFoundError,
    DuplicateBatchError,
    InactiveMedicineError,
    InsufficientStockError,
    InvalidQuantityError,
    MedicineNotFoundError,
    SupplierNotFoundError,
)
from pharmacy_kernel.models.alert import Alert
from pharmacy_kernel.models.audit_log import AuditLog
from pharmacy_kernel.models.batch import Batch
from pharmacy_kernel.models.movement import InventoryMovement


def _movements(session, batch_id):
    return session.execute(
        select(InventoryMovement).where(InventoryMovement.batch_id == batch_id)
    ).scalars().all()


def _alerts(session, batch_id):
    return session.execute(select(Alert).where(Alert.batch_id == batch_id)).scalars().all()


class TestReceive:
    def test_receive_creates_batch_movement_and_audit(self, make_medicine, make_batch, open_session):
        medicine_id = make_medicine()
        batch_id = make_batch(medicine_id, quantity=120, batch_number="LOT-001")

        with open_session() as session:
            batch = session.get(Batch, batch_id)
            assert batch.quantity == 120
            assert batch.batch_number == "LOT-001"
            assert batch.version == 1
            assert not batch.is_recalled
            assert not batch.is_expired

            movements = _movements(session, batch_id)
            assert len(movements) == 1
            assert movements[0].movement_type == "purchase"
            assert movements[0].quantity == 120
            assert movements[0].reason == "New batch received"

            audits = session.execute(
                select(AuditLog).where(AuditLog.table_name == "batches", AuditLog.record_id == batch_id)
            ).scalars().all()
            assert len(audits) == 1
            assert audits[0].action == "create"
            assert audits[0].old_values is None
            assert audits[0].new_values["quantity"] == 120
            assert audits[0].entity_version == 1

    def test_far_expiry_raises_no_alert(self, make_medicine, make_batch, open_session):
        batch_id = make_batch(make_medicine(), quantity=10)

        with open_session() as session:
            assert _alerts(session, batch_id) == []

    @pytest.mark.parametrize(
        "days, severity, message_tail",
        [
            (5, "critical", "expires in 5 days"),
            (7, "critical", "expires in 7 days"),
            (20, "high", "expires within 30 days"),
            (60, "medium", "expires within 90 days"),
        ],
    )
    def test_receipt_expiry_bands(
        self, make_medicine, make_batch, open_session, clock, days, severity, message_tail,
    ):
        medicine_id = make_medicine("Insulin Glargine")
        batch_id = make_batch(
            medicine_id,
            batch_number="EXP-1",
            expiry_date=clock.today() + timedelta(days=days),
        )

        with open_session() as session:
            alerts = _alerts(session, batch_id)
            assert len(alerts) == 1
            assert alerts[0].alert_type == "expiry"
            assert alerts[0].severity == severity
            assert alerts[0].alert_message == f"Insulin Glargine (Batch: EXP-1) {message_tail}"

    def test_receiving_already_expired_stock_is_critical(self, make_medicine, make_batch, open_session, clock):
        batch_id = make_batch(make_medicine(), expiry_date=clock.today() - timedelta(days=3))

        with open_session() as session:
            alerts = _alerts(session, batch_id)
            assert [a.severity for a in alerts] == ["critical"]

    def test_zero_quantity_receipt_is_allowed(self, make_medicine, make_batch, open_session):
        batch_id = make_batch(make_medicine(), quantity=0)

        with open_session() as session:
            assert session.get(Batch, batch_id).quantity == 0
            assert _movements(session, batch_id)[0].quantity == 0

    def test_duplicate_batch_number_rejected(self, make_medicine, make_batch, open_session):
        medicine_id = make_medicine()
        make_batch(medicine_id, batch_number="DUP-1")

        with pytest.raises(DuplicateBatchError) as exc_info:
            make_batch(medicine_id, batch_number="DUP-1")
        assert exc_info.value.batch_number == "DUP-1"

        with open_session() as session:
            count = session.execute(
                select(func.count(Batch.id)).where(Batch.batch_number == "DUP-1")
            ).scalar_one()
            assert count == 1

    def test_same_batch_number_for_other_medicine_is_allowed(self, make_medicine, make_batch):
        make_batch(make_medicine("A"), batch_number="SHARED")
        make_batch(make_medicine("B"), batch_number="SHARED")

    def test_negative_quantity_rejected(self, make_medicine, make_batch):
        with pytest.raises(InvalidQuantityError):
            make_batch(make_medicine(), quantity=-1)

    def test_manufacture_after_expiry_rejected(self, make_medicine, make_batch, clock):
        with pytest.raises(InvalidQuantityError) as exc_info:
            make_batch(
                make_medicine(),
                expiry_date=clock.today() + timedelta(days=30),
                manufacture_date=clock.today() + timedelta(days=31),
            )
        assert exc_info.value.field == "manufacture_date"

    def test_negative_price_rejected(self, make_medicine, make_batch):
        with pytest.raises(InvalidQuantityError) as exc_info:
            make_batch(make_medicine(), cost_price=Decimal("-0.01"))
        assert exc_info.value.field == "cost_price"

    def test_unknown_medicine_rejected(self, engine, actor, clock):
        spec = BatchSpec(
            medicine_id=uuid4(),
            batch_number="X",
            expiry_date=clock.today() + timedelta(days=100),
            quantity=1,
        )
        with pytest.raises(MedicineNotFoundError):
            engine.receive_batch(spec, actor)

    def test_unknown_supplier_rejected(self, make_medicine, make_batch):
        with pytest.raises(SupplierNotFoundError):
            make_batch(make_medicine(), supplier_id=uuid4())

    def test_inactive_medicine_rejected(self, make_medicine, make_batch, engine, actor):
        medicine_id = make_medicine()
        engine.deactivate_medicine(medicine_id, actor)

        with pytest.raises(InactiveMedicineError):
            make_batch(medicine_id)


class TestAdjust:
    def test_negative_adjustment(self, make_medicine, make_batch, engine, actor, open_session):
        batch_id = make_batch(make_medicine(), quantity=50)

        entry = engine.adjust_stock(batch_id, -8, "Broken vials", actor)

        assert entry.quantity_before == 50
        assert entry.quantity_after == 42
        assert entry.delta == -8
        assert entry.version == 2
        with open_session() as session:
            batch = session.get(Batch, batch_id)
            assert batch.quantity == 42
            assert batch.version == 2
            movement = session.get(InventoryMovement, entry.movement_id)
            assert movement.movement_type == "adjustment"
            assert movement.quantity == -8
            assert movement.reason == "Broken vials"

    def test_positive_return(self, make_medicine, make_batch, engine, actor):
        batch_id = make_batch(make_medicine(), quantity=10)

        entry = engine.adjust_stock(batch_id, 3, "Customer return", actor, movement_type="return")

        assert entry.quantity_after == 13

    def test_overdraw_rejected_and_nothing_written(self, make_medicine, make_batch, engine, actor, open_session):
        batch_id = make_batch(make_medicine(), quantity=5)

        with pytest.raises(InsufficientStockError) as exc_info:
            engine.adjust_stock(batch_id, -6, "Count correction", actor)

        assert exc_info.value.available == 5
        assert exc_info.value.requested == 6
        with open_session() as session:
            assert session.get(Batch, batch_id).quantity == 5
            assert len(_movements(session, batch_id)) == 1

    def test_zero_delta_rejected(self, make_medicine, make_batch, engine, actor):
        batch_id = make_batch(make_medicine())

        with pytest.raises(InvalidQuantityError):
            engine.adjust_stock(batch_id, 0, "noop", actor)

    @pytest.mark.parametrize("movement_type", ["purchase", "sale", "disposal"])
    def test_only_manual_movement_types_accepted(
        self, make_medicine, make_batch, engine, actor, open_session, movement_type,
    ):
        batch_id = make_batch(make_medicine(), quantity=20)

        with pytest.raises(ValueError):
            engine.adjust_stock(batch_id, -5, "Shelf count", actor, movement_type=movement_type)

        with open_session() as session:
            assert session.get(Batch, batch_id).quantity == 20
            assert [m.movement_type for m in _movements(session, batch_id)] == ["purchase"]

    def test_unknown_batch(self, engine, actor):
        with pytest.raises(BatchNotFoundError):
            engine.adjust_stock(uuid4(), -1, "x", actor)

    def test_adjust_to_zero_raises_out_of_stock_alert(
        self, make_medicine, make_batch, engine, actor, open_session,
    ):
        batch_id = make_batch(make_medicine(), quantity=4)

        engine.adjust_stock(batch_id, -4, "Damaged", actor)

        with open_session() as session:
            types = sorted(a.alert_type for a in _alerts(session, batch_id))
            assert types == ["out_of_stock"]

    def test_adjust_below_minimum_raises_low_stock_alert(
        self, make_medicine, make_batch, engine, actor, open_session,
    ):
        batch_id = make_batch(make_medicine(minimum_stock_level=10), quantity=15)

        engine.adjust_stock(batch_id, -6, "Damaged", actor)

        with open_session() as session:
            alerts = _alerts(session, batch_id)
            assert [(a.alert_type, a.severity) for a in alerts] == [("low_stock", "medium")]

    def test_each_adjustment_audited_with_version(self, make_medicine, make_batch, engine, actor, open_session):
        batch_id = make_batch(make_medicine(), quantity=30)
        engine.adjust_stock(batch_id, -1, "a", actor)
        engine.adjust_stock(batch_id, -1, "b", actor)

        with open_session() as session:
            versions = sorted(
                session.execute(
                    select(AuditLog.entity_version).where(
                        AuditLog.table_name == "batches", AuditLog.record_id == batch_id,
                    )
                ).scalars().all()
            )
            assert versions == [1, 2, 3]


class TestExpireSweep:
    def test_flags_only_batches_past_expiry(self, make_medicine, make_batch, engine, actor, clock, open_session):
        medicine_id = make_medicine()
        expired = make_batch(medicine_id, expiry_date=clock.today() - timedelta(days=1))
        today = make_batch(medicine_id, expiry_date=clock.today())
        future = make_batch(medicine_id, expiry_date=clock.today() + timedelta(days=10))

        flagged = engine.expire_sweep(actor)

        assert flagged == 1
        with open_session() as session:
            assert session.get(Batch, expired).is_expired
            assert not session.get(Batch, today).is_expired
            assert not session.get(Batch, future).is_expired

    def test_sweep_is_idempotent(self, make_medicine, make_batch, engine, actor, clock, open_session):
        batch_id = make_batch(make_medicine(), expiry_date=clock.today() - timedelta(days=2))

        assert engine.expire_sweep(actor) == 1
        assert engine.expire_sweep(actor) == 0

        with open_session() as session:
            updates = session.execute(
                select(func.count(AuditLog.id)).where(
                    AuditLog.record_id == batch_id, AuditLog.action == "update",
                )
            ).scalar_one()
            assert updates == 1

    def test_sweep_with_explicit_date(self, make_medicine, make_batch, engine, actor, clock):
        make_batch(make_medicine(), expiry_date=clock.today() + timedelta(days=5))

        assert engine.expire_sweep(actor, as_of_date=clock.today() + timedelta(days=6)) == 1

    def test_sweep_does_not_touch_quantity(self, make_medicine, make_batch, engine, actor, clock, open_session):
        batch_id = make_batch(make_medicine(), quantity=9, expiry_date=clock.today() - timedelta(days=1))

        engine.expire_sweep(actor)

        with open_session() as session:
            assert session.get(Batch, batch_id).quantity == 9
            assert len(_movements(session, batch_id)) == 1
