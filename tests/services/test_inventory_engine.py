"""
InventoryEngine transaction boundary: commit, rollback and bounded retry.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from pharmacy_kernel.config import EngineConfig
from pharmacy_kernel.exceptions import ConcurrencyConflictError, InsufficientStockError
from pharmacy_kernel.models.medicine import Medicine
from pharmacy_kernel.services.inventory_engine import InventoryEngine, is_transient_db_error


class _Orig(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def _db_error(message, pgcode=None):
    return OperationalError("SELECT 1", {}, _Orig(message, pgcode))


class TestTransientClassification:
    def test_serialization_failure(self):
        assert is_transient_db_error(_db_error("could not serialize", "40001"))

    def test_deadlock(self):
        assert is_transient_db_error(_db_error("deadlock detected", "40P01"))

    def test_sqlite_busy(self):
        assert is_transient_db_error(_db_error("database is locked"))

    def test_other_database_errors(self):
        assert not is_transient_db_error(_db_error("syntax error", "42601"))

    def test_non_database_errors(self):
        assert not is_transient_db_error(ValueError("x"))


class TestRun:
    def test_commit_makes_work_visible(self, engine, actor, open_session):
        medicine_id = engine.run(
            "register_medicine", actor, lambda s: s.catalog.register_medicine("Zinc", actor),
        )

        with open_session() as session:
            assert session.get(Medicine, medicine_id).name == "Zinc"

    def test_domain_error_rolls_back_everything(self, engine, actor, open_session):
        captured = {}

        def work(s):
            captured["id"] = s.catalog.register_medicine("Ghost", actor)
            raise InsufficientStockError("b", 0, 1)

        with pytest.raises(InsufficientStockError):
            engine.run("test", actor, work)

        with open_session() as session:
            assert session.get(Medicine, captured["id"]) is None

    def test_domain_error_is_not_retried(self, engine, actor):
        calls = []

        def work(s):
            calls.append(1)
            raise InsufficientStockError("b", 0, 1)

        with pytest.raises(InsufficientStockError):
            engine.run("test", actor, work)
        assert len(calls) == 1

    @pytest.mark.parametrize(
        "error",
        [
            ConcurrencyConflictError("Batch", "b1"),
            StaleDataError("stale"),
            _db_error("database is locked"),
        ],
    )
    def test_transient_error_is_retried(self, engine, actor, captured_logs, error):
        calls = []

        def work(s):
            calls.append(1)
            if len(calls) == 1:
                raise error
            return "done"

        assert engine.run("test", actor, work) == "done"
        assert len(calls) == 2
        retries = [r for r in captured_logs() if r["message"] == "transaction_retry"]
        assert len(retries) == 1
        assert retries[0]["attempt"] == 1

    def test_retries_are_bounded(self, session_factory, clock, actor, captured_logs):
        engine = InventoryEngine(
            session_factory, clock=clock,
            config=EngineConfig(max_transaction_retries=4, retry_backoff_seconds=0.0),
        )
        calls = []

        def work(s):
            calls.append(1)
            raise ConcurrencyConflictError("Batch", "b1")

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            engine.run("test", actor, work)

        assert len(calls) == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.entity_id == "b1"
        assert any(r["message"] == "transaction_retries_exhausted" for r in captured_logs())

    def test_non_transient_database_error_surfaces(self, engine, actor):
        calls = []

        def work(s):
            calls.append(1)
            raise _db_error("no such table", "42P01")

        with pytest.raises(OperationalError):
            engine.run("test", actor, work)
        assert len(calls) == 1

    def test_session_closed_after_each_attempt(self, clock, config, actor):
        session = MagicMock()
        engine = InventoryEngine(lambda: session, clock=clock, config=config)

        engine.run("test", actor, lambda s: None)

        session.commit.assert_called_once()
        session.close.assert_called_once()

    def test_commit_logged_with_context(self, engine, actor, captured_logs):
        engine.run("register_medicine", actor, lambda s: s.catalog.register_medicine("Iron", actor))

        committed = [r for r in captured_logs() if r["message"] == "transaction_committed"]
        assert committed[-1]["operation"] == "register_medicine"
        assert committed[-1]["actor_id"] == str(actor.actor_id)
        assert committed[-1]["attempt"] == 1
