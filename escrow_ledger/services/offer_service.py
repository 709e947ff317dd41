"""Offer Service

Submission and rejection of offers on open tasks. Acceptance is a
lifecycle transition (see TaskLifecycleService.accept_offer) because it
assigns the executor and rejects every sibling offer.
"""

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from ..core.engine import to_units
from ..core.entities import Actor, Offer, OfferStatus, Task, TaskStatus
from ..core.exceptions import (
    InvalidAmount,
    InvalidState,
    OfferNotFound,
    TaskNotFound,
    TerminalStateViolation,
    Unauthorized,
)
from ..core.interfaces import IEscrowStore, ILockManager, INotificationDispatcher, LedgerCommit
from ..infrastructure.locking import task_lock_key
from .notifier import Notifier
from .retry import RetryPolicy

logger = structlog.get_logger()


class OfferService:
    def __init__(
        self,
        store: IEscrowStore,
        locks: ILockManager,
        dispatcher: INotificationDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.locks = locks
        self.notifier = Notifier(dispatcher)
        self.retry = retry_policy or RetryPolicy()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def submit_offer(
        self,
        task_id: str,
        user_id: str,
        price: int | str,
        message: str = "",
        match_score: float | None = None,
    ) -> Offer:
        """
        Append a PENDING offer to an OPEN task.

        Raises:
            InvalidAmount: If the price is not a positive whole amount
            TaskNotFound: If the task does not exist
            InvalidState: If the task is not OPEN
            Unauthorized: If the poster offers on their own task
        """
        units = to_units(price)
        if units <= 0:
            raise InvalidAmount(f"Offer price must be positive, got {units}", price=units)

        offer = Offer(
            offer_id=Offer.new_id(),
            task_id=task_id,
            user_id=user_id,
            price=units,
            message=message,
            match_score=match_score,
            created_at=self._clock(),
        )

        async def attempt() -> Task:
            async with self.locks.hold(task_lock_key(task_id)):
                task = await self._load_task(task_id)
                if task.find_offer(offer.offer_id):
                    # An earlier attempt landed despite reporting a failure
                    return task
                self._require_open(task)
                if task.is_poster(user_id):
                    raise Unauthorized(
                        "Posters cannot make offers on their own tasks",
                        task_id=task_id,
                        actor_id=user_id,
                    )
                task.offers.append(offer)
                task.updated_at = self._clock()
                return await self.store.commit(
                    LedgerCommit(task=task, expected_version=task.version)
                )

        task = await self.retry.run(attempt, name="submit_offer")
        logger.info(
            "offer_submitted",
            task_id=task_id,
            offer_id=offer.offer_id,
            user_id=user_id,
            price=units,
        )
        await self.notifier.publish([Notifier.offer_received(task, offer)])
        return task.find_offer(offer.offer_id)

    async def reject_offer(self, task_id: str, offer_id: str, actor: Actor | str) -> Offer:
        """
        Reject a single PENDING offer. Other offers are untouched.

        Raises:
            TaskNotFound / OfferNotFound: If either does not exist
            InvalidState: If the task is not OPEN or the offer not PENDING
            Unauthorized: If the actor is not the poster
        """
        actor_id = actor.actor_id if isinstance(actor, Actor) else actor

        async def attempt() -> Task:
            async with self.locks.hold(task_lock_key(task_id)):
                task = await self._load_task(task_id)
                self._require_open(task)
                if not task.is_poster(actor_id):
                    raise Unauthorized(
                        f"Only the poster can reject offers on task {task_id}",
                        task_id=task_id,
                        actor_id=actor_id,
                    )
                offer = task.find_offer(offer_id)
                if offer is None:
                    raise OfferNotFound(
                        f"Offer {offer_id} not found on task {task_id}",
                        task_id=task_id,
                        offer_id=offer_id,
                    )
                if not offer.is_pending():
                    raise InvalidState(
                        f"Offer {offer_id} is {offer.status.value}, requires PENDING",
                        offer_id=offer_id,
                        current=offer.status.value,
                        required=[OfferStatus.PENDING.value],
                    )
                offer.status = OfferStatus.REJECTED
                task.updated_at = self._clock()
                return await self.store.commit(
                    LedgerCommit(task=task, expected_version=task.version)
                )

        task = await self.retry.run(attempt, name="reject_offer")
        offer = task.find_offer(offer_id)
        logger.info("offer_rejected", task_id=task_id, offer_id=offer_id)
        await self.notifier.publish([Notifier.offer_rejected(task, offer)])
        return offer

    async def list_offers(self, task_id: str) -> list[Offer]:
        """Offers in submission order"""
        task = await self._load_task(task_id)
        return task.offers

    # ========== Helpers ==========

    async def _load_task(self, task_id: str) -> Task:
        task = await self.store.find_by_id(task_id)
        if not task:
            raise TaskNotFound(f"Task {task_id} not found", task_id=task_id)
        return task

    @staticmethod
    def _require_open(task: Task) -> None:
        if task.is_terminal():
            raise TerminalStateViolation(
                f"Task {task.task_id} is {task.status.value}; no further actions accepted",
                task_id=task.task_id,
                current=task.status.value,
            )
        if task.status != TaskStatus.OPEN:
            raise InvalidState(
                f"Task {task.task_id} is {task.status.value}, requires OPEN",
                task_id=task.task_id,
                current=task.status.value,
                required=[TaskStatus.OPEN.value],
            )
