"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract.  Every service
    receives a SQLAlchemy ``Session`` and persists with ``session.flush()``,
    never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction
      and never commit or roll back.  InventoryEngine (or a test harness)
      owns commit/rollback, so one entry point is one atomic unit.
    - Services read "now" and "today" from the injected Clock only.
"""

from abc import ABC

from sqlalchemy.orm import Session

from pharmacy_kernel.config import EngineConfig
from pharmacy_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read projections; those live in
          ``pharmacy_kernel/selectors/``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.config = config or EngineConfig.with_defaults()
