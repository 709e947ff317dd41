"""Business Logic Layer

Service classes orchestrate business operations using domain entities and repositories.
"""

from .lifecycle_service import BudgetInputs, TaskLifecycleService, TransitionPayload
from .offer_service import OfferService
from .retry import RetryPolicy
from .wallet_service import WalletService

__all__ = [
    "BudgetInputs",
    "OfferService",
    "RetryPolicy",
    "TaskLifecycleService",
    "TransitionPayload",
    "WalletService",
]
