"""Pytest Configuration and Fixtures

Shared fixtures for all tests.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from escrow_ledger.core.engine import EscrowEngine
from escrow_ledger.core.entities import (
    Actor,
    Attachment,
    Offer,
    ProofKind,
    ServiceTier,
    Task,
)
from escrow_ledger.core.interfaces import INotificationDispatcher
from escrow_ledger.infrastructure.locking import InMemoryLockManager
from escrow_ledger.infrastructure.persistence.memory import InMemoryEscrowStore
from escrow_ledger.infrastructure.proof_store import TaskProofStore
from escrow_ledger.services import (
    BudgetInputs,
    OfferService,
    RetryPolicy,
    TaskLifecycleService,
    WalletService,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class Clock:
    """Settable clock injected into services"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


async def _no_sleep(delay: float) -> None:
    return None


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store() -> InMemoryEscrowStore:
    return InMemoryEscrowStore()


@pytest.fixture
def locks() -> InMemoryLockManager:
    return InMemoryLockManager(timeout=2.0)


@pytest.fixture
def dispatcher() -> INotificationDispatcher:
    """Mock notification dispatcher"""
    return AsyncMock(spec=INotificationDispatcher)


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(storage_retries=2, storage_retry_delay=0, sleep=_no_sleep)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def lifecycle(store, locks, dispatcher, retry_policy, clock) -> TaskLifecycleService:
    return TaskLifecycleService(
        store,
        locks,
        engine=EscrowEngine(),
        proof_store=TaskProofStore(store),
        dispatcher=dispatcher,
        retry_policy=retry_policy,
        clock=clock,
    )


@pytest.fixture
def offers(store, locks, dispatcher, retry_policy, clock) -> OfferService:
    return OfferService(store, locks, dispatcher=dispatcher, retry_policy=retry_policy, clock=clock)


@pytest.fixture
def wallet(store, locks, dispatcher, retry_policy, clock) -> WalletService:
    return WalletService(
        store, locks, dispatcher=dispatcher, retry_policy=retry_policy, clock=clock
    )


# =============================================================================
# Marketplace driver
# =============================================================================


class Marketplace:
    """Drives tasks through the lifecycle with real services"""

    def __init__(self, lifecycle, offers, wallet):
        self.lifecycle = lifecycle
        self.offers = offers
        self.wallet = wallet
        self._deposits = 0

    async def user(self, user_id: str, balance: int = 0):
        await self.wallet.register_account(user_id)
        if balance:
            self._deposits += 1
            await self.wallet.record_deposit(user_id, balance, f"seed-{self._deposits}")
        return await self.wallet.get_account(user_id)

    async def post(
        self,
        poster_id: str = "poster",
        budget: int = 400,
        tier: ServiceTier = ServiceTier.STANDARD,
        title: str = "Logo design",
    ) -> Task:
        return await self.lifecycle.create_funded_task(
            poster_id, BudgetInputs(base_budget=budget, service_tier=tier, title=title)
        )

    async def offer(self, task: Task, user_id: str = "executor", price: int | None = None) -> Offer:
        return await self.offers.submit_offer(task.task_id, user_id, price or task.budget)

    async def assign(self, task: Task, executor_id: str = "executor") -> Task:
        offer = await self.offer(task, executor_id)
        return await self.lifecycle.accept_offer(task.task_id, offer.offer_id, task.poster_id)

    async def start(self, task: Task, executor_id: str = "executor") -> Task:
        task = await self.assign(task, executor_id)
        return await self.lifecycle.start_work(task.task_id, executor_id)

    async def attach_final(self, task: Task, executor_id: str = "executor") -> Task:
        return await self.lifecycle.attach_proof(
            task.task_id,
            executor_id,
            ProofKind.FINAL,
            Attachment(attachment_id="att-1", name="final.png", url="https://files/final.png"),
        )

    async def complete(self, task: Task, executor_id: str = "executor") -> Task:
        task = await self.start(task, executor_id)
        await self.attach_final(task, executor_id)
        return await self.lifecycle.submit_completion(task.task_id, executor_id)

    async def dispute(self, task: Task, executor_id: str = "executor") -> Task:
        task = await self.start(task, executor_id)
        return await self.lifecycle.raise_dispute(task.task_id, task.poster_id)


@pytest.fixture
def market(lifecycle, offers, wallet) -> Marketplace:
    return Marketplace(lifecycle, offers, wallet)


@pytest.fixture
async def parties(market):
    """Poster with 1000 available, executor with 0"""
    await market.user("poster", 1000)
    await market.user("executor")


@pytest.fixture
def admin() -> Actor:
    return Actor.admin("admin-1")
