"""Repository Interfaces

Abstract interfaces for data access (Port pattern in Hexagonal Architecture).
Infrastructure layer implements these interfaces.
"""

from .escrow_store import IEscrowStore, LedgerCommit
from .ledger_repository import ILedgerRepository
from .lock_manager import ILockManager
from .notification_dispatcher import INotificationDispatcher
from .proof_store import IProofStore
from .task_repository import ITaskRepository

__all__ = [
    "IEscrowStore",
    "ILedgerRepository",
    "ILockManager",
    "INotificationDispatcher",
    "IProofStore",
    "ITaskRepository",
    "LedgerCommit",
]
