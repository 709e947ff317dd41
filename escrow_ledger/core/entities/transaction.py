"""Transaction Domain Entity

Append-only ledger entries. Balances are reconstructible from them.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    ESCROW_LOCK = "ESCROW_LOCK"
    PAYMENT_RELEASE = "PAYMENT_RELEASE"
    REFUND = "REFUND"
    DISPUTE_RESOLUTION = "DISPUTE_RESOLUTION"


# Entries whose fee is platform revenue
COMMISSION_TYPES = frozenset(
    {TransactionType.PAYMENT_RELEASE, TransactionType.DISPUTE_RESOLUTION}
)


class TransactionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILED = "FAILED"


@dataclass
class Transaction:
    """
    Ledger entry.

    ``user_id`` is the account whose balance the entry describes,
    ``target_user_id`` the counterparty on transfers. ``idempotency_key``
    is unique across the whole log.
    """

    transaction_id: str
    user_id: str
    type: TransactionType
    amount: int
    idempotency_key: str
    target_user_id: str | None = None
    task_id: str | None = None
    fee: int | None = None
    status: TransactionStatus = TransactionStatus.SUCCESS
    description: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def new_id() -> str:
        return f"tx-{uuid4()}"

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "user_id": self.user_id,
            "type": self.type.value,
            "amount": self.amount,
            "idempotency_key": self.idempotency_key,
            "target_user_id": self.target_user_id,
            "task_id": self.task_id,
            "fee": self.fee,
            "status": self.status.value,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        data = data.copy()
        if isinstance(data.get("type"), str):
            data["type"] = TransactionType(data["type"])
        if isinstance(data.get("status"), str):
            data["status"] = TransactionStatus(data["status"])
        if isinstance(data.get("created_at"), str):
            data["created_at"] = datetime.fromisoformat(data["created_at"])
        return cls(**data)
