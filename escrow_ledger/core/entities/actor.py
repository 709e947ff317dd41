"""Actor identity as supplied by the auth/session layer"""

from dataclasses import dataclass
from enum import Enum

SYSTEM_ACTOR_ID = "system:auto-release"


class ActorRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"  # Auto-release scheduler


@dataclass(frozen=True)
class Actor:
    """
    Who is performing an action.

    The role is trusted as given; the relationship to a task (poster,
    executor) is always re-checked by the escrow engine.
    """

    actor_id: str
    role: ActorRole = ActorRole.USER

    @classmethod
    def user(cls, actor_id: str) -> "Actor":
        return cls(actor_id=actor_id, role=ActorRole.USER)

    @classmethod
    def admin(cls, actor_id: str) -> "Actor":
        return cls(actor_id=actor_id, role=ActorRole.ADMIN)

    @classmethod
    def system(cls) -> "Actor":
        return cls(actor_id=SYSTEM_ACTOR_ID, role=ActorRole.SYSTEM)

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == ActorRole.SYSTEM
