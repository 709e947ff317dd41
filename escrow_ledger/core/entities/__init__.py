"""Domain Entities

Pure business objects without framework dependencies.
These represent the core business concepts of the escrow ledger.
"""

from .account import Account, BalanceDelta
from .actor import SYSTEM_ACTOR_ID, Actor, ActorRole
from .notification import Notification, NotificationEvent, NotificationLevel
from .task import (
    TERMINAL_STATUSES,
    Attachment,
    Offer,
    OfferStatus,
    ProofKind,
    Proofs,
    ServiceTier,
    Task,
    TaskStatus,
)
from .transaction import COMMISSION_TYPES, Transaction, TransactionStatus, TransactionType

__all__ = [
    "COMMISSION_TYPES",
    "SYSTEM_ACTOR_ID",
    "TERMINAL_STATUSES",
    "Account",
    "Actor",
    "ActorRole",
    "Attachment",
    "BalanceDelta",
    "Notification",
    "NotificationEvent",
    "NotificationLevel",
    "Offer",
    "OfferStatus",
    "ProofKind",
    "Proofs",
    "ServiceTier",
    "Task",
    "TaskStatus",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
]
