"""
Escrow Ledger - money movement for a task marketplace

Moves funds between a poster's available balance, the poster's escrow
and an executor's available balance, in lockstep with the task lifecycle.

Architecture:
┌─────────────────────────────────────────────────────────┐
│  Services                                               │
│  - TaskLifecycleService: lock, load, compute, commit    │
│  - OfferService: submit / reject offers                 │
│  - WalletService: accounts, deposits, withdrawals       │
└─────────────────────────────────────────────────────────┘
                        │ uses
                        ▼
┌─────────────────────────────────────────────────────────┐
│  Core (pure, no I/O)                                    │
│  - EscrowEngine: state machine + balance deltas         │
│  - PayoutCalculator: commission and net payout          │
└─────────────────────────────────────────────────────────┘
                        │ commits through
                        ▼
┌─────────────────────────────────────────────────────────┐
│  Infrastructure                                         │
│  - IEscrowStore: in-memory or SQLAlchemy (Postgres)     │
│  - ILockManager: asyncio or Redis locks                 │
│  - INotificationDispatcher: log or signed webhook       │
└─────────────────────────────────────────────────────────┘
"""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .core.engine import DisputeDecision, EscrowEngine, Payout, PayoutCalculator, TaskAction
from .core.entities import Account, Actor, ActorRole, Offer, ServiceTier, Task, TaskStatus
from .services import (
    BudgetInputs,
    OfferService,
    TaskLifecycleService,
    TransitionPayload,
    WalletService,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "Settings",
    "get_settings",
    # Core
    "EscrowEngine",
    "PayoutCalculator",
    "Payout",
    "TaskAction",
    "DisputeDecision",
    # Entities
    "Account",
    "Actor",
    "ActorRole",
    "Offer",
    "ServiceTier",
    "Task",
    "TaskStatus",
    # Services
    "BudgetInputs",
    "TransitionPayload",
    "TaskLifecycleService",
    "OfferService",
    "WalletService",
]
