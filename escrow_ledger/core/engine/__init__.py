"""Escrow Engine and Payout Calculator

Pure, I/O-free business rules for moving money with the task lifecycle.
"""

from .escrow_engine import (
    ALLOWED_FROM,
    BALANCE_ACTIONS,
    DEFAULT_AUTO_APPROVE_AFTER,
    DisputeDecision,
    EscrowEngine,
    TaskAction,
    Transition,
    TransitionContext,
    default_idempotency_key,
)
from .payout import DEFAULT_COMMISSION_RATE, Payout, PayoutCalculator, round_half_up, to_units

__all__ = [
    "ALLOWED_FROM",
    "BALANCE_ACTIONS",
    "DEFAULT_AUTO_APPROVE_AFTER",
    "DEFAULT_COMMISSION_RATE",
    "DisputeDecision",
    "EscrowEngine",
    "Payout",
    "PayoutCalculator",
    "TaskAction",
    "Transition",
    "TransitionContext",
    "default_idempotency_key",
    "round_half_up",
    "to_units",
]
