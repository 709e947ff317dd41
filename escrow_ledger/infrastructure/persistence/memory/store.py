"""In-memory Implementation of IEscrowStore

Test double and default backend. Every read and write deep-copies, so
callers never hold references into the stored state, and ``commit``
validates the whole change before applying any of it.
"""

import asyncio
import copy
from datetime import datetime

import structlog

from ....core.entities import COMMISSION_TYPES, Account, Task, TaskStatus, Transaction
from ....core.exceptions import (
    AccountNotFound,
    ConcurrencyConflict,
    DuplicateIdempotencyKey,
)
from ....core.interfaces import IEscrowStore, LedgerCommit

logger = structlog.get_logger()


class InMemoryEscrowStore(IEscrowStore):
    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._tasks: dict[str, Task] = {}
        self._transactions: list[Transaction] = []
        self._keys: dict[str, Transaction] = {}
        self._lock = asyncio.Lock()

    # ========== Accounts ==========

    async def insert_account(self, account: Account) -> Account:
        async with self._lock:
            existing = self._accounts.get(account.user_id)
            if existing is not None:
                return copy.deepcopy(existing)
            self._accounts[account.user_id] = copy.deepcopy(account)
            return copy.deepcopy(account)

    async def find_account(self, user_id: str) -> Account | None:
        account = self._accounts.get(user_id)
        return copy.deepcopy(account) if account else None

    async def find_accounts(self, user_ids: list[str]) -> dict[str, Account]:
        return {
            uid: copy.deepcopy(self._accounts[uid]) for uid in user_ids if uid in self._accounts
        }

    # ========== Transactions ==========

    async def find_transactions(
        self, user_id: str, limit: int = 100, offset: int = 0
    ) -> list[Transaction]:
        owned = [tx for tx in self._transactions if tx.user_id == user_id]
        end = max(len(owned) - offset, 0)
        return copy.deepcopy(owned[max(end - limit, 0) : end])

    async def find_transaction_by_key(self, idempotency_key: str) -> Transaction | None:
        tx = self._keys.get(idempotency_key)
        return copy.deepcopy(tx) if tx else None

    async def total_fees(self) -> int:
        return sum(tx.fee or 0 for tx in self._transactions if tx.type in COMMISSION_TYPES)

    # ========== Tasks ==========

    async def find_by_id(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return copy.deepcopy(task) if task else None

    async def find_by_status(self, status: TaskStatus, limit: int = 50) -> list[Task]:
        return self._select(lambda t: t.status == status, limit)

    async def find_by_poster(self, poster_id: str, limit: int = 50) -> list[Task]:
        return self._select(lambda t: t.poster_id == poster_id, limit)

    async def find_by_executor(self, executor_id: str, limit: int = 50) -> list[Task]:
        return self._select(lambda t: t.executor_id == executor_id, limit)

    async def find_auto_release_due(self, now: datetime, limit: int = 100) -> list[Task]:
        return self._select(lambda t: t.is_auto_release_due(now), limit)

    def _select(self, predicate, limit: int) -> list[Task]:
        matched = sorted(
            (t for t in self._tasks.values() if predicate(t)),
            key=lambda t: t.created_at,
            reverse=True,
        )
        return copy.deepcopy(matched[:limit])

    # ========== Commit ==========

    async def commit(self, change: LedgerCommit) -> Task | None:
        async with self._lock:
            # Validate everything first; nothing is applied if any check fails
            for key in change.idempotency_keys:
                if key in self._keys:
                    raise DuplicateIdempotencyKey(
                        f"Idempotency key {key} already committed", idempotency_key=key
                    )

            if change.task is not None:
                self._check_version(change)

            updated: dict[str, Account] = {}
            for delta in change.deltas:
                current = updated.get(delta.user_id) or self._accounts.get(delta.user_id)
                if current is None:
                    raise AccountNotFound(
                        f"Account {delta.user_id} not found", user_id=delta.user_id
                    )
                updated[delta.user_id] = current.apply_delta(delta)

            self._accounts.update(updated)
            for tx in change.transactions:
                stored = copy.deepcopy(tx)
                self._transactions.append(stored)
                self._keys[tx.idempotency_key] = stored

            if change.task is None:
                return None
            task = copy.deepcopy(change.task)
            task.version = (change.expected_version or 0) + 1
            self._tasks[task.task_id] = task
            logger.debug(
                "memory_commit",
                task_id=task.task_id,
                version=task.version,
                deltas=len(change.deltas),
                transactions=len(change.transactions),
            )
            return copy.deepcopy(task)

    def _check_version(self, change: LedgerCommit) -> None:
        task_id = change.task.task_id
        stored = self._tasks.get(task_id)
        if change.expected_version is None:
            if stored is not None:
                raise ConcurrencyConflict(f"Task {task_id} already exists", task_id=task_id)
            return
        if stored is None:
            raise ConcurrencyConflict(f"Task {task_id} does not exist", task_id=task_id)
        if stored.version != change.expected_version:
            raise ConcurrencyConflict(
                f"Task {task_id} changed concurrently",
                task_id=task_id,
                expected_version=change.expected_version,
                actual_version=stored.version,
            )

    async def close(self) -> None:
        return None
