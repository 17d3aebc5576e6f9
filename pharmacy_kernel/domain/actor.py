"""
Actor context supplied on every mutating call.

Authentication and role management live outside the kernel; the kernel only
records who performed each change.  The actor is always passed explicitly,
never read from ambient state.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class ActorRole(str, Enum):
    PHARMACIST = "pharmacist"
    MANAGER = "manager"
    ADMIN = "admin"


@dataclass(frozen=True)
class ActorContext:
    actor_id: UUID
    role: ActorRole = ActorRole.PHARMACIST

    def __post_init__(self):
        if not isinstance(self.actor_id, UUID):
            raise ValueError(f"actor_id must be a UUID, got {type(self.actor_id).__name__}")
