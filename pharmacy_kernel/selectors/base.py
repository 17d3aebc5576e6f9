"""
Module: pharmacy_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from models/ and the
    pure domain policies.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - DTO return convention: selectors return dataclasses, not ORM
      instances.
    - Projections (stock status, reorder status, rollups) are recomputed on
      every read; nothing derived is stored.
"""

from abc import ABC

from sqlalchemy.orm import Session

from pharmacy_kernel.domain.clock import Clock, SystemClock


class BaseSelector(ABC):
    """Base class for selectors; the caller owns the session."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
