"""Escrow Store Interface

The single write path: a task update, its balance deltas and its
ledger entries are committed together or not at all.
"""

from abc import abstractmethod
from dataclasses import dataclass, field

from ..entities import BalanceDelta, Task, Transaction
from .ledger_repository import ILedgerRepository
from .task_repository import ITaskRepository


@dataclass
class LedgerCommit:
    """
    One atomic unit of work.

    ``expected_version`` is the task version the change was computed
    against; ``None`` means the task is being inserted.
    """

    task: Task | None = None
    expected_version: int | None = None
    deltas: list[BalanceDelta] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)

    @property
    def idempotency_keys(self) -> list[str]:
        return [tx.idempotency_key for tx in self.transactions]


class IEscrowStore(ILedgerRepository, ITaskRepository):
    """
    Transactional store for tasks, accounts and the ledger.

    ``commit`` must:
    - raise DuplicateIdempotencyKey if any transaction key is already stored
    - raise ConcurrencyConflict if the stored task version differs from
      ``expected_version`` (or the task already exists on insert)
    - raise InsufficientFunds / InvariantViolation if a delta would make a
      balance negative
    - raise StorageError on transport failures
    - leave nothing applied when it raises
    """

    @abstractmethod
    async def commit(self, change: LedgerCommit) -> Task | None:
        """Apply a change atomically; returns the stored task with its new version"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections"""
        pass
