"""
Alert raising, deduplication, acknowledgement and the expiry scan.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from pharmacy_kernel.exceptions import AlertNotFoundError, AlreadyAcknowledgedError, ImmutabilityViolationError
from pharmacy_kernel.models.alert import Alert, AlertSeverity, build_dedup_key
from pharmacy_kernel.models.audit_log import AuditLog


def _open_alerts(session, batch_id, alert_type):
    return session.execute(
        select(func.count(Alert.id)).where(
            Alert.batch_id == batch_id,
            Alert.alert_type == alert_type,
            Alert.is_acknowledged.is_(False),
        )
    ).scalar_one()


class TestDedupKey:
    def test_batch_scoped_key(self):
        batch_id = uuid4()
        assert build_dedup_key(batch_id, "expiry") == f"{batch_id}:expiry"

    def test_recall_key_uses_recall_id(self):
        recall_id = uuid4()
        assert build_dedup_key(uuid4(), "recall", recall_id) == f"recall:{recall_id}"

    def test_severity_rank_orders_most_urgent_first(self):
        ranked = sorted(AlertSeverity, key=lambda s: s.rank)
        assert [s.value for s in ranked] == ["critical", "high", "medium", "low"]


class TestRaiseAlert:
    def test_second_raise_is_suppressed(self, make_medicine, make_batch, engine, open_session):
        batch_id = make_batch(make_medicine())

        first = engine.raise_alert(batch_id, "low_stock", "Low", "medium")
        second = engine.raise_alert(batch_id, "low_stock", "Low again", "high")

        assert first.raised
        assert second.suppressed
        assert second.alert_id is None
        assert first.dedup_key == second.dedup_key
        with open_session() as session:
            assert _open_alerts(session, batch_id, "low_stock") == 1

    def test_acknowledged_alert_does_not_suppress(self, make_medicine, make_batch, engine, actor, open_session):
        batch_id = make_batch(make_medicine())
        first = engine.raise_alert(batch_id, "low_stock", "Low", "medium")
        engine.acknowledge_alert(first.alert_id, actor, "Reordered")

        second = engine.raise_alert(batch_id, "low_stock", "Low", "medium")

        assert second.raised
        with open_session() as session:
            total = session.execute(
                select(func.count(Alert.id)).where(Alert.batch_id == batch_id)
            ).scalar_one()
            assert total == 2
            assert _open_alerts(session, batch_id, "low_stock") == 1

    def test_different_types_are_independent(self, make_medicine, make_batch, engine):
        batch_id = make_batch(make_medicine())

        assert engine.raise_alert(batch_id, "low_stock", "Low", "medium").raised
        assert engine.raise_alert(batch_id, "reorder", "Reorder", "medium").raised

    def test_unknown_severity_rejected(self, make_medicine, make_batch, engine):
        batch_id = make_batch(make_medicine())

        with pytest.raises(ValueError):
            engine.raise_alert(batch_id, "low_stock", "Low", "urgent")

    def test_unknown_type_rejected(self, make_medicine, make_batch, engine):
        batch_id = make_batch(make_medicine())

        with pytest.raises(ValueError):
            engine.raise_alert(batch_id, "weather", "Rain", "low")

    def test_recall_alert_needs_recall_id(self, make_medicine, make_batch, engine):
        batch_id = make_batch(make_medicine())

        with pytest.raises(ValueError):
            engine.raise_alert(batch_id, "recall", "Recall", "critical")

    def test_suppression_is_logged(self, make_medicine, make_batch, engine, captured_logs):
        batch_id = make_batch(make_medicine())
        engine.raise_alert(batch_id, "reorder", "r", "medium")
        engine.raise_alert(batch_id, "reorder", "r", "medium")

        messages = [r["message"] for r in captured_logs()]
        assert messages.count("alert_raised") == 1
        assert messages.count("alert_suppressed") == 1


class TestAcknowledge:
    def test_acknowledge_records_actor_and_action(self, make_medicine, make_batch, engine, actor, clock, open_session):
        batch_id = make_batch(make_medicine())
        alert_id = engine.raise_alert(batch_id, "reorder", "r", "medium").alert_id

        engine.acknowledge_alert(alert_id, actor, "PO raised")

        with open_session() as session:
            alert = session.get(Alert, alert_id)
            assert alert.is_acknowledged
            assert alert.acknowledged_by == actor.actor_id
            assert alert.acknowledged_at is not None
            assert alert.action_taken == "PO raised"
            audit = session.execute(
                select(AuditLog).where(AuditLog.table_name == "alerts", AuditLog.record_id == alert_id)
            ).scalar_one()
            assert audit.old_values == {"is_acknowledged": False}
            assert audit.new_values["is_acknowledged"] is True
            assert audit.new_values["acknowledged_by"] == str(actor.actor_id)

    def test_second_acknowledge_fails(self, make_medicine, make_batch, engine, actor, manager):
        batch_id = make_batch(make_medicine())
        alert_id = engine.raise_alert(batch_id, "reorder", "r", "medium").alert_id
        engine.acknowledge_alert(alert_id, actor)

        with pytest.raises(AlreadyAcknowledgedError):
            engine.acknowledge_alert(alert_id, manager)

    def test_unknown_alert(self, engine, actor):
        with pytest.raises(AlertNotFoundError):
            engine.acknowledge_alert(uuid4(), actor)

    def test_alert_message_cannot_be_rewritten(self, make_medicine, make_batch, engine, open_session):
        batch_id = make_batch(make_medicine())
        alert_id = engine.raise_alert(batch_id, "reorder", "original", "medium").alert_id

        with open_session() as session:
            alert = session.get(Alert, alert_id)
            alert.alert_message = "rewritten"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()


class TestScanExpiring:
    def test_scan_bands(self, make_medicine, make_batch, engine, actor, clock, open_session):
        medicine_id = make_medicine("Cetirizine")
        # Received with far expiry so receipt raises no alert, then the clock moves on
        soon = make_batch(medicine_id, batch_number="S", expiry_date=clock.today() + timedelta(days=200))
        mid = make_batch(medicine_id, batch_number="M", expiry_date=clock.today() + timedelta(days=220))
        late = make_batch(medicine_id, batch_number="L", expiry_date=clock.today() + timedelta(days=250))
        far = make_batch(medicine_id, batch_number="F", expiry_date=clock.today() + timedelta(days=400))
        clock.advance_days(195)

        raised = engine.scan_expiring(60, actor)

        assert len(raised) == 3
        with open_session() as session:
            severity = {
                a.batch_id: a.severity
                for a in session.execute(select(Alert).where(Alert.alert_type == "expiry")).scalars()
            }
            assert severity == {soon: "high", mid: "medium", late: "low"}
            assert far not in severity
            message = session.execute(select(Alert.alert_message).where(Alert.batch_id == soon)).scalar_one()
            assert message == "Cetirizine (Batch: S) expires in 5 days"

    def test_scan_skips_empty_recalled_and_expired(self, make_medicine, make_batch, engine, actor, clock):
        medicine_id = make_medicine()
        make_batch(medicine_id, quantity=0, expiry_date=clock.today() + timedelta(days=200))
        recalled = make_batch(medicine_id, expiry_date=clock.today() + timedelta(days=200))
        engine.add_recall(recalled, "Contamination", clock.today(), None, "high", None, actor)
        make_batch(medicine_id, expiry_date=clock.today() + timedelta(days=150))
        clock.advance_days(180)

        assert engine.scan_expiring(30, actor) == []

    def test_rescan_suppresses_duplicates(self, make_medicine, make_batch, engine, actor, clock):
        make_batch(make_medicine(), expiry_date=clock.today() + timedelta(days=120))
        clock.advance_days(100)

        assert len(engine.scan_expiring(30, actor)) == 1
        assert engine.scan_expiring(30, actor) == []

    def test_custom_bands(self, make_medicine, make_batch, engine, actor, clock, open_session):
        batch_id = make_batch(make_medicine(), expiry_date=clock.today() + timedelta(days=120))
        clock.advance_days(100)

        engine.scan_expiring(30, actor, bands=((25, "critical"),))

        with open_session() as session:
            assert session.execute(
                select(Alert.severity).where(Alert.batch_id == batch_id)
            ).scalar_one() == "critical"

    def test_negative_threshold_rejected(self, engine, actor):
        with pytest.raises(ValueError):
            engine.scan_expiring(-1, actor)
