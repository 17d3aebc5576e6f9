"""
Pure domain layer.

Clock, actor context, inventory policies and DTOs.  Nothing here touches the
ORM or the database.
"""

from pharmacy_kernel.domain.actor import ActorContext, ActorRole
from pharmacy_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from pharmacy_kernel.domain.dtos import (
    AlertResult,
    BatchSpec,
    BuyerInfo,
    LedgerEntry,
    MovementReference,
    SaleResult,
)
from pharmacy_kernel.domain.policies import ReorderStatus, StockStatus

__all__ = [
    "ActorContext",
    "ActorRole",
    "AlertResult",
    "BatchSpec",
    "BuyerInfo",
    "Clock",
    "DeterministicClock",
    "LedgerEntry",
    "MovementReference",
    "ReorderStatus",
    "SaleResult",
    "StockStatus",
    "SystemClock",
]
