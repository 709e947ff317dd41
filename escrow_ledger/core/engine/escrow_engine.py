"""Escrow Engine

Pure state-transition logic for the task lifecycle. Given a task, an
action, the acting identity and the loaded accounts, it decides the next
status, the balance deltas and the ledger entries to append.

The engine performs no I/O and never raises for business failures:
every rejected action comes back as a ``Transition`` carrying a typed
error, and the input task is never mutated.
"""

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum

from ..entities import (
    Account,
    Actor,
    BalanceDelta,
    OfferStatus,
    ServiceTier,
    Task,
    TaskStatus,
    Transaction,
    TransactionType,
)
from ..exceptions import (
    AccountNotFound,
    InsufficientFunds,
    InvalidAmount,
    InvalidRequest,
    InvalidState,
    InvariantViolation,
    LedgerError,
    OfferNotFound,
    ProofRequired,
    TerminalStateViolation,
    Unauthorized,
)
from .payout import PayoutCalculator, round_half_up, to_decimal

DEFAULT_AUTO_APPROVE_AFTER = timedelta(hours=72)


class TaskAction(str, Enum):
    """Lifecycle actions accepted by the engine"""

    FUND = "fund"
    ACCEPT_OFFER = "accept_offer"
    START_WORK = "start_work"
    SUBMIT_COMPLETION = "submit_completion"
    RELEASE_PAYMENT = "release_payment"
    CANCEL = "cancel"
    RAISE_DISPUTE = "raise_dispute"
    RESOLVE_DISPUTE = "resolve_dispute"


class DisputeDecision(str, Enum):
    REFUND_POSTER = "REFUND_POSTER"
    PAY_EXECUTOR = "PAY_EXECUTOR"


ALLOWED_FROM: dict[TaskAction, frozenset[TaskStatus]] = {
    TaskAction.FUND: frozenset({TaskStatus.OPEN}),
    TaskAction.ACCEPT_OFFER: frozenset({TaskStatus.OPEN}),
    TaskAction.START_WORK: frozenset({TaskStatus.ASSIGNED}),
    TaskAction.SUBMIT_COMPLETION: frozenset({TaskStatus.IN_PROGRESS}),
    TaskAction.RELEASE_PAYMENT: frozenset({TaskStatus.COMPLETED}),
    TaskAction.CANCEL: frozenset({TaskStatus.OPEN, TaskStatus.ASSIGNED}),
    TaskAction.RAISE_DISPUTE: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}),
    TaskAction.RESOLVE_DISPUTE: frozenset({TaskStatus.DISPUTED}),
}

# Actions that move money and therefore carry an idempotency key
BALANCE_ACTIONS = frozenset(
    {
        TaskAction.FUND,
        TaskAction.RELEASE_PAYMENT,
        TaskAction.CANCEL,
        TaskAction.RESOLVE_DISPUTE,
    }
)


def default_idempotency_key(task_id: str, action: TaskAction) -> str:
    return f"{task_id}:{action.value}"


@dataclass
class TransitionContext:
    """Inputs the engine needs besides the task itself"""

    now: datetime = field(default_factory=lambda: datetime.now(UTC))
    offer_id: str | None = None
    decision: DisputeDecision | None = None
    # None means "look at the task's own final proofs"
    has_final_proof: bool | None = None
    accounts: dict[str, Account] = field(default_factory=dict)
    idempotency_key: str | None = None


@dataclass
class Transition:
    """Outcome of ``EscrowEngine.compute_transition``"""

    action: TaskAction
    previous_status: TaskStatus
    next_status: TaskStatus | None = None
    task: Task | None = None
    deltas: list[BalanceDelta] = field(default_factory=list)
    entries: list[Transaction] = field(default_factory=list)
    error: LedgerError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def moves_money(self) -> bool:
        return any(not d.is_empty() for d in self.deltas)

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class EscrowEngine:
    """
    Escrow Engine

    Check order for every action:
    1. terminal status -> TerminalStateViolation
    2. status precondition -> InvalidState
    3. actor relationship -> Unauthorized
    4. action specifics (offer, funds, proof)
    """

    def __init__(
        self,
        payout_calculator: PayoutCalculator | None = None,
        auto_approve_after: timedelta = DEFAULT_AUTO_APPROVE_AFTER,
    ):
        self.payout_calculator = payout_calculator or PayoutCalculator()
        self.auto_approve_after = auto_approve_after
        self._handlers = {
            TaskAction.FUND: self._fund,
            TaskAction.ACCEPT_OFFER: self._accept_offer,
            TaskAction.START_WORK: self._start_work,
            TaskAction.SUBMIT_COMPLETION: self._submit_completion,
            TaskAction.RELEASE_PAYMENT: self._release_payment,
            TaskAction.CANCEL: self._cancel,
            TaskAction.RAISE_DISPUTE: self._raise_dispute,
            TaskAction.RESOLVE_DISPUTE: self._resolve_dispute,
        }

    # ========== Budget ==========

    @staticmethod
    def compute_budget(base_budget: int | str | Decimal, tier: ServiceTier) -> int:
        """
        Apply the tier multiplier once, rounding half-up to whole units.

        Raises:
            InvalidAmount: If the base or resulting budget is not positive
        """
        base = to_decimal(base_budget)
        if base <= 0:
            raise InvalidAmount(f"Base budget must be positive, got {base}", base_budget=str(base))
        budget = round_half_up(base * tier.multiplier)
        if budget <= 0:
            raise InvalidAmount(
                f"Budget rounds to {budget} for base {base}", base_budget=str(base), budget=budget
            )
        return budget

    # ========== Transitions ==========

    def compute_transition(
        self,
        task: Task,
        action: TaskAction,
        actor: Actor,
        context: TransitionContext | None = None,
    ) -> Transition:
        context = context or TransitionContext()
        error = self._check_state(task, action) or self._check_actor(task, action, actor)
        if error is not None:
            return Transition(action=action, previous_status=task.status, error=error)

        draft = copy.deepcopy(task)
        draft.updated_at = context.now
        result = self._handlers[action](draft, actor, context)
        if result.ok:
            result.task = draft
            result.next_status = draft.status
        return result

    def allowed_actions(self, task: Task) -> list[TaskAction]:
        """Actions whose status precondition the task currently meets"""
        return [a for a in TaskAction if self._check_state(task, a) is None]

    # ========== Guards ==========

    def _check_state(self, task: Task, action: TaskAction) -> LedgerError | None:
        if task.is_terminal():
            return TerminalStateViolation(
                f"Task {task.task_id} is {task.status.value}; no further actions accepted",
                task_id=task.task_id,
                current=task.status.value,
                action=action.value,
            )

        allowed = ALLOWED_FROM[action]
        if task.status not in allowed:
            required = sorted(s.value for s in allowed)
            return InvalidState(
                f"Cannot {action.value} task {task.task_id}: status is "
                f"{task.status.value}, requires {' or '.join(required)}",
                task_id=task.task_id,
                current=task.status.value,
                required=required,
                action=action.value,
            )

        # Funding happens exactly once, before the task is first stored
        if action == TaskAction.FUND and task.version != 0:
            return InvalidState(
                f"Task {task.task_id} is already funded",
                task_id=task.task_id,
                current=task.status.value,
                action=action.value,
            )
        return None

    @staticmethod
    def _check_actor(task: Task, action: TaskAction, actor: Actor) -> LedgerError | None:
        actor_id = actor.actor_id
        if action in (TaskAction.FUND, TaskAction.ACCEPT_OFFER, TaskAction.CANCEL):
            permitted = task.is_poster(actor_id)
            required = "poster"
        elif action in (TaskAction.START_WORK, TaskAction.SUBMIT_COMPLETION):
            permitted = task.is_executor(actor_id)
            required = "executor"
        elif action == TaskAction.RELEASE_PAYMENT:
            permitted = task.is_poster(actor_id) or actor.is_system
            required = "poster or auto-release"
        elif action == TaskAction.RAISE_DISPUTE:
            permitted = task.is_poster(actor_id) or task.is_executor(actor_id)
            required = "poster or executor"
        else:
            permitted = actor.is_admin
            required = "admin"

        if permitted:
            return None
        return Unauthorized(
            f"Only the {required} can {action.value} task {task.task_id}",
            task_id=task.task_id,
            actor_id=actor_id,
            action=action.value,
            required=required,
        )

    # ========== Handlers ==========

    def _fund(self, task: Task, actor: Actor, ctx: TransitionContext) -> Transition:
        poster = ctx.accounts.get(task.poster_id)
        if poster is None:
            return self._fail(task, TaskAction.FUND, self._missing_account(task.poster_id))
        if not poster.can_cover(task.budget):
            return self._fail(
                task,
                TaskAction.FUND,
                InsufficientFunds(
                    f"Available balance {poster.available_balance} does not cover "
                    f"budget {task.budget}",
                    user_id=poster.user_id,
                    available=poster.available_balance,
                    required=task.budget,
                ),
            )

        task.status = TaskStatus.OPEN
        return Transition(
            action=TaskAction.FUND,
            previous_status=TaskStatus.OPEN,
            deltas=[BalanceDelta(task.poster_id, available=-task.budget, escrow=task.budget)],
            entries=[
                self._entry(
                    task,
                    TaskAction.FUND,
                    ctx,
                    user_id=task.poster_id,
                    type=TransactionType.ESCROW_LOCK,
                    amount=task.budget,
                    description=f"Escrow: {task.title}",
                )
            ],
        )

    def _accept_offer(self, task: Task, actor: Actor, ctx: TransitionContext) -> Transition:
        previous = task.status
        if not ctx.offer_id:
            return self._fail(
                task, TaskAction.ACCEPT_OFFER, InvalidRequest("offer_id is required")
            )
        offer = task.find_offer(ctx.offer_id)
        if offer is None:
            return self._fail(
                task,
                TaskAction.ACCEPT_OFFER,
                OfferNotFound(
                    f"Offer {ctx.offer_id} not found on task {task.task_id}",
                    task_id=task.task_id,
                    offer_id=ctx.offer_id,
                ),
            )
        if not offer.is_pending():
            return self._fail(
                task,
                TaskAction.ACCEPT_OFFER,
                InvalidState(
                    f"Offer {offer.offer_id} is {offer.status.value}, requires PENDING",
                    offer_id=offer.offer_id,
                    current=offer.status.value,
                    required=[OfferStatus.PENDING.value],
                ),
            )

        for other in task.offers:
            other.status = (
                OfferStatus.ACCEPTED if other.offer_id == offer.offer_id else OfferStatus.REJECTED
            )
        task.executor_id = offer.user_id
        task.status = TaskStatus.ASSIGNED
        return Transition(action=TaskAction.ACCEPT_OFFER, previous_status=previous)

    def _start_work(self, task: Task, actor: Actor, ctx: TransitionContext) -> Transition:
        previous = task.status
        task.status = TaskStatus.IN_PROGRESS
        return Transition(action=TaskAction.START_WORK, previous_status=previous)

    def _submit_completion(self, task: Task, actor: Actor, ctx: TransitionContext) -> Transition:
        previous = task.status
        has_proof = ctx.has_final_proof
        if has_proof is None:
            has_proof = task.has_final_proof()
        if not has_proof:
            return self._fail(
                task,
                TaskAction.SUBMIT_COMPLETION,
                ProofRequired(
                    f"Task {task.task_id} has no final deliverable attached",
                    task_id=task.task_id,
                ),
            )

        task.status = TaskStatus.COMPLETED
        task.auto_approve_at = ctx.now + self.auto_approve_after
        return Transition(action=TaskAction.SUBMIT_COMPLETION, previous_status=previous)

    def _release_payment(self, task: Task, actor: Actor, ctx: TransitionContext) -> Transition:
        return self._pay_executor(
            task, TaskAction.RELEASE_PAYMENT, TransactionType.PAYMENT_RELEASE, ctx
        )

    def _cancel(self, task: Task, actor: Actor, ctx: TransitionContext) -> Transition:
        return self._refund_poster(task, TaskAction.CANCEL, TransactionType.REFUND, ctx)

    def _raise_dispute(self, task: Task, actor: Actor, ctx: TransitionContext) -> Transition:
        previous = task.status
        task.status = TaskStatus.DISPUTED
        return Transition(action=TaskAction.RAISE_DISPUTE, previous_status=previous)

    def _resolve_dispute(self, task: Task, actor: Actor, ctx: TransitionContext) -> Transition:
        if ctx.decision == DisputeDecision.REFUND_POSTER:
            return self._refund_poster(
                task, TaskAction.RESOLVE_DISPUTE, TransactionType.DISPUTE_RESOLUTION, ctx
            )
        if ctx.decision == DisputeDecision.PAY_EXECUTOR:
            return self._pay_executor(
                task, TaskAction.RESOLVE_DISPUTE, TransactionType.DISPUTE_RESOLUTION, ctx
            )
        return self._fail(
            task,
            TaskAction.RESOLVE_DISPUTE,
            InvalidRequest(
                "decision must be REFUND_POSTER or PAY_EXECUTOR",
                decision=ctx.decision,
            ),
        )

    # ========== Money paths ==========

    def _pay_executor(
        self,
        task: Task,
        action: TaskAction,
        entry_type: TransactionType,
        ctx: TransitionContext,
    ) -> Transition:
        previous = task.status
        error = self._check_escrow(task, ctx)
        if error is None and task.executor_id not in ctx.accounts:
            error = self._missing_account(task.executor_id)
        if error is not None:
            return self._fail(task, action, error)

        payout = self.payout_calculator.compute_payout(task.budget)
        task.status = TaskStatus.PAID
        return Transition(
            action=action,
            previous_status=previous,
            deltas=[
                BalanceDelta(task.poster_id, escrow=-task.budget),
                BalanceDelta(task.executor_id, available=payout.net, tasks_completed=1),
            ],
            entries=[
                self._entry(
                    task,
                    action,
                    ctx,
                    user_id=task.executor_id,
                    target_user_id=task.poster_id,
                    type=entry_type,
                    amount=payout.net,
                    fee=payout.fee,
                    description=f"Payment: {task.title} ({payout.fee} platform fee deducted)",
                )
            ],
        )

    def _refund_poster(
        self,
        task: Task,
        action: TaskAction,
        entry_type: TransactionType,
        ctx: TransitionContext,
    ) -> Transition:
        previous = task.status
        error = self._check_escrow(task, ctx)
        if error is not None:
            return self._fail(task, action, error)

        task.status = TaskStatus.CANCELLED
        task.auto_approve_at = None
        return Transition(
            action=action,
            previous_status=previous,
            deltas=[BalanceDelta(task.poster_id, available=task.budget, escrow=-task.budget)],
            entries=[
                self._entry(
                    task,
                    action,
                    ctx,
                    user_id=task.poster_id,
                    type=entry_type,
                    amount=task.budget,
                    description=f"Refund: {task.title}",
                )
            ],
        )

    def _check_escrow(self, task: Task, ctx: TransitionContext) -> LedgerError | None:
        poster = ctx.accounts.get(task.poster_id)
        if poster is None:
            return self._missing_account(task.poster_id)
        if poster.escrow_balance < task.budget:
            return InvariantViolation(
                f"Poster escrow {poster.escrow_balance} is below task budget {task.budget}",
                task_id=task.task_id,
                user_id=poster.user_id,
                escrow=poster.escrow_balance,
                budget=task.budget,
            )
        return None

    # ========== Helpers ==========

    @staticmethod
    def _entry(task: Task, action: TaskAction, ctx: TransitionContext, **fields) -> Transaction:
        return Transaction(
            transaction_id=Transaction.new_id(),
            idempotency_key=ctx.idempotency_key or default_idempotency_key(task.task_id, action),
            task_id=task.task_id,
            created_at=ctx.now,
            **fields,
        )

    @staticmethod
    def _missing_account(user_id: str | None) -> AccountNotFound:
        return AccountNotFound(f"Account {user_id} not found", user_id=user_id)

    @staticmethod
    def _fail(task: Task, action: TaskAction, error: LedgerError) -> Transition:
        return Transition(action=action, previous_status=task.status, error=error)
