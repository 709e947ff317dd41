"""Account Domain Entity

Per-user balances held by the ledger.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from ..exceptions import InsufficientFunds, InvariantViolation


@dataclass(frozen=True)
class BalanceDelta:
    """
    Relative change to one account.

    Deltas are the only way balances move; stores apply them as
    ``balance = balance + delta`` and never assign absolute values.
    """

    user_id: str
    available: int = 0
    escrow: int = 0
    tasks_completed: int = 0

    def is_empty(self) -> bool:
        return self.available == 0 and self.escrow == 0 and self.tasks_completed == 0


@dataclass
class Account:
    """
    Account Domain Entity

    One per user. Both balances are integer currency units and never
    negative. ``rating`` is derived elsewhere and only carried here.
    """

    user_id: str
    available_balance: int = 0
    escrow_balance: int = 0
    tasks_completed: int = 0
    rating: float | None = None
    version: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self):
        """Validate invariants"""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if self.available_balance < 0 or self.escrow_balance < 0:
            raise ValueError("balances cannot be negative")

    def can_cover(self, amount: int) -> bool:
        """Check if available balance covers an amount"""
        return self.available_balance >= amount

    def apply_delta(self, delta: BalanceDelta) -> "Account":
        """
        Return a new Account with the delta applied.

        Raises:
            InsufficientFunds: If available balance would go negative
            InvariantViolation: If escrow balance would go negative
        """
        if delta.user_id != self.user_id:
            raise ValueError(f"Delta for {delta.user_id} applied to {self.user_id}")

        available = self.available_balance + delta.available
        escrow = self.escrow_balance + delta.escrow
        if available < 0:
            raise InsufficientFunds(
                f"Account {self.user_id} has {self.available_balance} available, "
                f"needs {-delta.available}",
                user_id=self.user_id,
                available=self.available_balance,
                required=-delta.available,
            )
        if escrow < 0:
            raise InvariantViolation(
                f"Escrow balance of {self.user_id} would become negative",
                user_id=self.user_id,
                escrow=self.escrow_balance,
                delta=delta.escrow,
            )

        return replace(
            self,
            available_balance=available,
            escrow_balance=escrow,
            tasks_completed=self.tasks_completed + delta.tasks_completed,
            version=self.version + 1,
        )

    # ========== Serialization ==========

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "available_balance": self.available_balance,
            "escrow_balance": self.escrow_balance,
            "tasks_completed": self.tasks_completed,
            "rating": self.rating,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Account":
        data = data.copy()
        if isinstance(data.get("created_at"), str):
            data["created_at"] = datetime.fromisoformat(data["created_at"])
        return cls(**data)
