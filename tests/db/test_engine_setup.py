"""
Module-level engine registry, session scope and SQLite connection setup.
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError

from pharmacy_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from pharmacy_kernel.models.medicine import Medicine, MedicineInteraction


@pytest.fixture
def registered_engine(tmp_path):
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'registry.db'}")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


class TestEngineRegistry:
    def test_uninitialized_access_raises(self):
        reset_engine()

        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()
        with pytest.raises(RuntimeError):
            get_session_factory()

    def test_init_registers_engine(self, registered_engine):
        assert get_engine() is registered_engine
        assert get_session_factory().kw["bind"] is registered_engine


class TestSessionScope:
    def test_commits_on_success(self, registered_engine):
        actor_id = uuid4()
        with session_scope() as session:
            session.add(Medicine(name="Paracetamol", created_by_id=actor_id))

        with session_scope() as session:
            names = session.execute(select(Medicine.name)).scalars().all()
        assert names == ["Paracetamol"]

    def test_rolls_back_on_error(self, registered_engine, captured_logs):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                session.add(Medicine(name="Ghost", created_by_id=uuid4()))
                session.flush()
                raise RuntimeError("abort")

        with session_scope() as session:
            assert session.execute(select(Medicine)).first() is None
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


class TestSqliteConnection:
    def test_foreign_keys_enforced(self, registered_engine):
        with pytest.raises(IntegrityError):
            with session_scope() as session:
                first, second = sorted([uuid4(), uuid4()], key=str)
                session.add(
                    MedicineInteraction(
                        medicine_id_1=first,
                        medicine_id_2=second,
                        interaction_type="minor",
                        description="No such medicines",
                        created_at=datetime.now(UTC),
                    )
                )

    def test_pragma_is_on(self, registered_engine):
        with registered_engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar_one() == 1
