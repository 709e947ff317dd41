"""Task Lifecycle Service

Orchestrates the escrow engine and the store so each lifecycle action
is one logical unit: lock, load, compute, commit, notify.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

import structlog

from ..core.engine import (
    BALANCE_ACTIONS,
    DisputeDecision,
    EscrowEngine,
    TaskAction,
    Transition,
    TransitionContext,
    default_idempotency_key,
)
from ..core.entities import (
    Actor,
    Attachment,
    ProofKind,
    ServiceTier,
    Task,
    TaskStatus,
    TransactionType,
)
from ..core.exceptions import (
    DuplicateIdempotencyKey,
    InvalidRequest,
    InvalidState,
    LedgerError,
    TaskNotFound,
    TerminalStateViolation,
    Unauthorized,
)
from ..core.interfaces import (
    IEscrowStore,
    ILockManager,
    INotificationDispatcher,
    IProofStore,
    LedgerCommit,
)
from ..infrastructure.locking import account_lock_key, task_lock_key
from .notifier import Notifier
from .retry import RetryPolicy

logger = structlog.get_logger()

# Statuses in which the executor may attach deliverables
PROOF_STATUSES = frozenset({TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS})


@dataclass
class BudgetInputs:
    """What the poster enters when posting a task"""

    base_budget: int | str | Decimal
    service_tier: ServiceTier = ServiceTier.STANDARD
    title: str = ""
    description: str = ""
    category: str = "general"


@dataclass
class TransitionPayload:
    """Action-specific inputs for ``transition``"""

    offer_id: str | None = None
    decision: DisputeDecision | None = None


class TaskLifecycleService:
    """
    Task Lifecycle Service

    Every mutating call:
    1. holds the task lock, then the involved account locks (sorted)
    2. loads fresh task and account state
    3. asks the EscrowEngine for the transition
    4. commits task, balance deltas and ledger entries atomically
    5. notifies the parties after the locks are released
    """

    def __init__(
        self,
        store: IEscrowStore,
        locks: ILockManager,
        engine: EscrowEngine | None = None,
        proof_store: IProofStore | None = None,
        dispatcher: INotificationDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize Task Lifecycle Service

        Args:
            store: Transactional task/ledger store
            locks: Lock manager for task and account keys
            engine: Escrow engine (default commission and auto-approve window if omitted)
            proof_store: Final-proof lookup (task's own proofs if omitted)
            dispatcher: Notification dispatcher (optional)
            retry_policy: Retry policy for conflicts and storage failures
            clock: Returns "now"; injectable for tests
        """
        self.store = store
        self.locks = locks
        self.engine = engine or EscrowEngine()
        self.proof_store = proof_store
        self.notifier = Notifier(dispatcher)
        self.retry = retry_policy or RetryPolicy()
        self._clock = clock or (lambda: datetime.now(UTC))

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_funded_task(
        self,
        poster_id: str,
        inputs: BudgetInputs,
        idempotency_key: str | None = None,
    ) -> Task:
        """
        Create a task and lock its budget in escrow in one commit.

        A replayed ``idempotency_key`` returns the task created by the
        first call instead of funding a second one.

        Raises:
            InvalidAmount: If the budget is not a positive amount
            InsufficientFunds: If the poster cannot cover the budget
            AccountNotFound: If the poster has no account
        """
        budget = self.engine.compute_budget(inputs.base_budget, inputs.service_tier)
        task = Task(
            task_id=Task.new_id(),
            poster_id=poster_id,
            budget=budget,
            title=inputs.title,
            description=inputs.description,
            category=inputs.category,
            service_tier=inputs.service_tier,
            created_at=self._clock(),
        )
        key = idempotency_key or default_idempotency_key(task.task_id, TaskAction.FUND)
        actor = Actor.user(poster_id)

        async def attempt() -> Task:
            # The task is new, so only the poster account needs guarding
            async with self.locks.hold(account_lock_key(poster_id)):
                if idempotency_key:
                    replayed = await self._replayed_creation(key, poster_id, budget)
                    if replayed is not None:
                        return replayed
                accounts = await self.store.find_accounts([poster_id])
                transition = self.engine.compute_transition(
                    task,
                    TaskAction.FUND,
                    actor,
                    TransitionContext(now=self._clock(), accounts=accounts, idempotency_key=key),
                )
                if not transition.ok:
                    self._log_rejected(task, transition, actor)
                    raise transition.error
                return await self.store.commit(
                    LedgerCommit(
                        task=transition.task,
                        expected_version=None,
                        deltas=transition.deltas,
                        transactions=transition.entries,
                    )
                )

        try:
            created = await self.retry.run(
                attempt,
                name="create_funded_task",
                recover=lambda: self._replayed_creation(key, poster_id, budget),
            )
        except DuplicateIdempotencyKey:
            # Lost a race with the same request
            created = await self._replayed_creation(key, poster_id, budget)
            if created is None:
                raise

        if created.task_id != task.task_id:
            logger.info("task_create_replayed", task_id=created.task_id, idempotency_key=key)
            return created

        logger.info(
            "task_funded",
            task_id=created.task_id,
            poster_id=poster_id,
            budget=created.budget,
            service_tier=created.service_tier.value,
        )
        return created

    # =========================================================================
    # Transitions
    # =========================================================================

    async def transition(
        self,
        task_id: str,
        action: TaskAction,
        actor: Actor | str,
        payload: TransitionPayload | None = None,
        idempotency_key: str | None = None,
    ) -> Task:
        """
        Apply a lifecycle action to an existing task.

        Raises:
            TaskNotFound: If the task does not exist
            TerminalStateViolation: If the task is PAID or CANCELLED
            InvalidState: If the action is not allowed from the current status
            Unauthorized: If the actor has no right to the action
            ProofRequired: If completion is submitted without a final proof
            ConcurrencyConflict: If the conflict persists after retrying
            StorageError: If storage keeps failing after retrying
        """
        if action == TaskAction.FUND:
            raise InvalidRequest("Tasks are funded through create_funded_task")
        actor = self._as_actor(actor)
        payload = payload or TransitionPayload()
        key = None
        if action in BALANCE_ACTIONS:
            key = idempotency_key or default_idempotency_key(task_id, action)

        async def attempt() -> tuple[Task, Task, Transition]:
            async with self.locks.hold(task_lock_key(task_id)):
                task = await self._load_task(task_id)
                account_ids = [task.poster_id]
                if action in BALANCE_ACTIONS and task.executor_id:
                    account_ids.append(task.executor_id)
                account_keys = (
                    [account_lock_key(uid) for uid in account_ids]
                    if action in BALANCE_ACTIONS
                    else []
                )

                async with self.locks.hold(*account_keys):
                    accounts = (
                        await self.store.find_accounts(account_ids)
                        if action in BALANCE_ACTIONS
                        else {}
                    )
                    has_proof = None
                    if action == TaskAction.SUBMIT_COMPLETION and self.proof_store:
                        has_proof = await self.proof_store.has_final_proof(task_id)

                    transition = self.engine.compute_transition(
                        task,
                        action,
                        actor,
                        TransitionContext(
                            now=self._clock(),
                            offer_id=payload.offer_id,
                            decision=payload.decision,
                            has_final_proof=has_proof,
                            accounts=accounts,
                            idempotency_key=key,
                        ),
                    )
                    if not transition.ok:
                        self._log_rejected(task, transition, actor)
                        raise transition.error

                    stored = await self.store.commit(
                        LedgerCommit(
                            task=transition.task,
                            expected_version=task.version,
                            deltas=transition.deltas,
                            transactions=transition.entries,
                        )
                    )
                    return task, stored, transition

        recover = None
        if key is not None:
            recover = self._recover_transition(key, task_id)
        result = await self.retry.run(attempt, name=action.value, recover=recover)
        if isinstance(result, Task):
            # Recovered from an ambiguous commit; already applied
            return result

        before, after, transition = result
        logger.info(
            "task_transitioned",
            task_id=task_id,
            action=action.value,
            actor_id=actor.actor_id,
            from_status=transition.previous_status.value,
            to_status=after.status.value,
            version=after.version,
        )
        await self.notifier.publish(
            Notifier.for_transition(before, after, transition, payload.decision)
        )
        return after

    async def accept_offer(self, task_id: str, offer_id: str, actor: Actor | str) -> Task:
        return await self.transition(
            task_id, TaskAction.ACCEPT_OFFER, actor, TransitionPayload(offer_id=offer_id)
        )

    async def start_work(self, task_id: str, actor: Actor | str) -> Task:
        return await self.transition(task_id, TaskAction.START_WORK, actor)

    async def submit_completion(self, task_id: str, actor: Actor | str) -> Task:
        return await self.transition(task_id, TaskAction.SUBMIT_COMPLETION, actor)

    async def release_payment(
        self, task_id: str, actor: Actor | str, idempotency_key: str | None = None
    ) -> Task:
        return await self.transition(
            task_id, TaskAction.RELEASE_PAYMENT, actor, idempotency_key=idempotency_key
        )

    async def cancel(
        self, task_id: str, actor: Actor | str, idempotency_key: str | None = None
    ) -> Task:
        return await self.transition(
            task_id, TaskAction.CANCEL, actor, idempotency_key=idempotency_key
        )

    async def raise_dispute(self, task_id: str, actor: Actor | str) -> Task:
        return await self.transition(task_id, TaskAction.RAISE_DISPUTE, actor)

    async def resolve_dispute(
        self,
        task_id: str,
        decision: DisputeDecision,
        actor: Actor,
        idempotency_key: str | None = None,
    ) -> Task:
        return await self.transition(
            task_id,
            TaskAction.RESOLVE_DISPUTE,
            actor,
            TransitionPayload(decision=decision),
            idempotency_key=idempotency_key,
        )

    # =========================================================================
    # Proofs
    # =========================================================================

    async def attach_proof(
        self,
        task_id: str,
        actor: Actor | str,
        kind: ProofKind,
        attachment: Attachment,
    ) -> Task:
        """Attach a draft or final deliverable; executor only, before completion"""
        actor = self._as_actor(actor)

        async def attempt() -> Task:
            async with self.locks.hold(task_lock_key(task_id)):
                task = await self._load_task(task_id)
                if task.is_terminal():
                    raise TerminalStateViolation(
                        f"Task {task_id} is {task.status.value}; no further actions accepted",
                        task_id=task_id,
                        current=task.status.value,
                    )
                if task.status not in PROOF_STATUSES:
                    raise InvalidState(
                        f"Cannot attach proof to task {task_id}: status is "
                        f"{task.status.value}, requires ASSIGNED or IN_PROGRESS",
                        task_id=task_id,
                        current=task.status.value,
                        required=sorted(s.value for s in PROOF_STATUSES),
                    )
                if not task.is_executor(actor.actor_id):
                    raise Unauthorized(
                        f"Only the executor can attach proofs to task {task_id}",
                        task_id=task_id,
                        actor_id=actor.actor_id,
                    )
                task.proofs.add(kind, attachment)
                task.updated_at = self._clock()
                return await self.store.commit(
                    LedgerCommit(task=task, expected_version=task.version)
                )

        stored = await self.retry.run(attempt, name="attach_proof")
        logger.info(
            "proof_attached",
            task_id=task_id,
            kind=kind.value,
            attachment_id=attachment.attachment_id,
        )
        return stored

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_task(self, task_id: str) -> Task:
        return await self._load_task(task_id)

    async def list_tasks(
        self,
        status: TaskStatus | None = None,
        poster_id: str | None = None,
        executor_id: str | None = None,
        limit: int = 50,
    ) -> list[Task]:
        """List tasks by status, poster or executor; filters combine"""
        if status is not None:
            tasks = await self.store.find_by_status(status, limit=limit)
        elif poster_id is not None:
            tasks = await self.store.find_by_poster(poster_id, limit=limit)
        elif executor_id is not None:
            tasks = await self.store.find_by_executor(executor_id, limit=limit)
        else:
            raise InvalidRequest("Provide status, poster_id or executor_id")

        if poster_id is not None:
            tasks = [t for t in tasks if t.poster_id == poster_id]
        if executor_id is not None:
            tasks = [t for t in tasks if t.executor_id == executor_id]
        return tasks

    async def list_disputed_tasks(self, limit: int = 50) -> list[Task]:
        """Admin queue"""
        return await self.store.find_by_status(TaskStatus.DISPUTED, limit=limit)

    # =========================================================================
    # Auto-release
    # =========================================================================

    async def release_due_tasks(self, now: datetime | None = None) -> list[Task]:
        """
        Release every COMPLETED task whose auto-approve deadline has passed.

        Called by an external scheduler. A failure on one task is logged
        and the sweep moves on.
        """
        now = now or self._clock()
        due = await self.store.find_auto_release_due(now)
        released: list[Task] = []
        for task in due:
            try:
                released.append(
                    await self.release_payment(task.task_id, Actor.system())
                )
            except LedgerError as e:
                logger.warning(
                    "auto_release_failed", task_id=task.task_id, error=e.code, message=e.message
                )
        logger.info("auto_release_sweep", due=len(due), released=len(released))
        return released

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_task(self, task_id: str) -> Task:
        task = await self.store.find_by_id(task_id)
        if not task:
            raise TaskNotFound(f"Task {task_id} not found", task_id=task_id)
        return task

    @staticmethod
    def _as_actor(actor: Actor | str) -> Actor:
        return actor if isinstance(actor, Actor) else Actor.user(actor)

    async def _replayed_creation(self, key: str, poster_id: str, budget: int) -> Task | None:
        """Return the task an earlier create committed under ``key``, if it was this request"""
        tx = await self.store.find_transaction_by_key(key)
        if tx is None:
            return None
        if (
            tx.type != TransactionType.ESCROW_LOCK
            or tx.user_id != poster_id
            or tx.amount != budget
            or tx.task_id is None
        ):
            raise DuplicateIdempotencyKey(
                f"Idempotency key {key} was used for a different request",
                idempotency_key=key,
            )
        return await self._load_task(tx.task_id)

    def _recover_transition(self, key: str, task_id: str):
        async def recover() -> Task | None:
            tx = await self.store.find_transaction_by_key(key)
            if tx is None or tx.task_id != task_id:
                return None
            logger.warning("transition_recovered", task_id=task_id, idempotency_key=key)
            return await self.store.find_by_id(task_id)

        return recover

    @staticmethod
    def _log_rejected(task: Task, transition: Transition, actor: Actor) -> None:
        logger.info(
            "transition_rejected",
            task_id=task.task_id,
            action=transition.action.value,
            actor_id=actor.actor_id,
            status=task.status.value,
            error=transition.error.code,
        )
