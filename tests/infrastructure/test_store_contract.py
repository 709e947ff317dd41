"""Behaviour every IEscrowStore must share

Each test runs against the in-memory store and the SQL store (SQLite via
aiosqlite), so both backends honour the same atomic commit contract.
"""

from datetime import UTC, datetime, timedelta

import pytest

from escrow_ledger.core.entities import (
    Account,
    BalanceDelta,
    Offer,
    OfferStatus,
    Task,
    TaskStatus,
    Transaction,
    TransactionType,
)
from escrow_ledger.core.exceptions import (
    AccountNotFound,
    ConcurrencyConflict,
    DuplicateIdempotencyKey,
    InsufficientFunds,
    InvariantViolation,
)
from escrow_ledger.core.interfaces import LedgerCommit
from escrow_ledger.infrastructure.persistence.memory import InMemoryEscrowStore
from escrow_ledger.infrastructure.persistence.postgres import (
    SqlEscrowStore,
    create_schema,
    get_engine,
    get_session_factory,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(params=["memory", "sql"])
async def store(request):
    if request.param == "memory":
        yield InMemoryEscrowStore()
        return

    engine = get_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    sql_store = SqlEscrowStore(get_session_factory(engine), engine=engine)
    yield sql_store
    await sql_store.close()


@pytest.fixture
async def accounts(store):
    await store.insert_account(Account(user_id="poster", available_balance=1000, created_at=NOW))
    await store.insert_account(Account(user_id="executor", created_at=NOW))


def _make_task(**overrides) -> Task:
    defaults = dict(
        task_id="task-001",
        poster_id="poster",
        budget=400,
        title="Logo design",
        created_at=NOW,
    )
    defaults.update(overrides)
    return Task(**defaults)


def _entry(key: str, **overrides) -> Transaction:
    defaults = dict(
        transaction_id=f"tx-{key}",
        user_id="poster",
        type=TransactionType.ESCROW_LOCK,
        amount=400,
        idempotency_key=key,
        task_id="task-001",
        created_at=NOW,
    )
    defaults.update(overrides)
    return Transaction(**defaults)


def _funding(task: Task, key: str = "task-001:fund") -> LedgerCommit:
    return LedgerCommit(
        task=task,
        expected_version=None,
        deltas=[BalanceDelta("poster", available=-task.budget, escrow=task.budget)],
        transactions=[_entry(key, amount=task.budget, task_id=task.task_id)],
    )


async def _balances(store, user_id: str) -> tuple[int, int]:
    account = await store.find_account(user_id)
    return account.available_balance, account.escrow_balance


pytestmark = pytest.mark.usefixtures("accounts")

# ============================================================================
# Accounts
# ============================================================================


class TestAccounts:
    async def test_insert_is_idempotent(self, store):
        again = await store.insert_account(Account(user_id="poster", created_at=NOW))
        assert again.available_balance == 1000

    async def test_find_accounts_skips_missing(self, store):
        found = await store.find_accounts(["poster", "ghost"])
        assert list(found) == ["poster"]

    async def test_unknown_account(self, store):
        assert await store.find_account("ghost") is None


# ============================================================================
# Commit
# ============================================================================


class TestCommit:
    async def test_insert_task_with_funding(self, store):
        stored = await store.commit(_funding(_make_task()))

        assert stored.version == 1
        assert await _balances(store, "poster") == (600, 400)
        loaded = await store.find_by_id("task-001")
        assert loaded.status == TaskStatus.OPEN
        assert loaded.budget == 400
        assert loaded.created_at == NOW
        tx = await store.find_transaction_by_key("task-001:fund")
        assert tx.type == TransactionType.ESCROW_LOCK
        assert tx.amount == 400

    async def test_versioned_update(self, store):
        await store.commit(_funding(_make_task()))
        task = await store.find_by_id("task-001")
        task.offers.append(
            Offer(offer_id="off-1", task_id="task-001", user_id="executor", price=380)
        )

        updated = await store.commit(LedgerCommit(task=task, expected_version=1))

        assert updated.version == 2
        loaded = await store.find_by_id("task-001")
        assert [o.offer_id for o in loaded.offers] == ["off-1"]
        assert loaded.offers[0].status == OfferStatus.PENDING

    async def test_offer_status_changes_persist(self, store):
        task = _make_task(
            offers=[
                Offer(offer_id="off-1", task_id="task-001", user_id="executor", price=400),
                Offer(offer_id="off-2", task_id="task-001", user_id="rival", price=390),
            ]
        )
        await store.commit(_funding(task))
        task = await store.find_by_id("task-001")
        task.offers[0].status = OfferStatus.ACCEPTED
        task.offers[1].status = OfferStatus.REJECTED
        task.executor_id = "executor"
        task.status = TaskStatus.ASSIGNED

        await store.commit(LedgerCommit(task=task, expected_version=1))

        loaded = await store.find_by_id("task-001")
        assert [o.status for o in loaded.offers] == [OfferStatus.ACCEPTED, OfferStatus.REJECTED]
        assert loaded.executor_id == "executor"

    async def test_stale_version_conflicts(self, store):
        await store.commit(_funding(_make_task()))
        task = await store.find_by_id("task-001")
        await store.commit(LedgerCommit(task=task, expected_version=1))

        task.status = TaskStatus.ASSIGNED
        with pytest.raises(ConcurrencyConflict):
            await store.commit(LedgerCommit(task=task, expected_version=1))
        assert (await store.find_by_id("task-001")).status == TaskStatus.OPEN

    async def test_insert_existing_task_conflicts(self, store):
        await store.commit(_funding(_make_task()))

        with pytest.raises(ConcurrencyConflict):
            await store.commit(_funding(_make_task(), key="other-key"))
        assert await _balances(store, "poster") == (600, 400)

    async def test_duplicate_key_applies_nothing(self, store):
        await store.commit(_funding(_make_task()))

        with pytest.raises(DuplicateIdempotencyKey):
            await store.commit(_funding(_make_task(task_id="task-002", budget=100)))

        assert await _balances(store, "poster") == (600, 400)
        assert await store.find_by_id("task-002") is None

    async def test_overdraw_rolls_back_whole_commit(self, store):
        change = LedgerCommit(
            task=_make_task(budget=1500),
            expected_version=None,
            deltas=[
                BalanceDelta("executor", available=10),
                BalanceDelta("poster", available=-1500, escrow=1500),
            ],
            transactions=[_entry("task-001:fund", amount=1500)],
        )

        with pytest.raises(InsufficientFunds):
            await store.commit(change)

        assert await _balances(store, "executor") == (0, 0)
        assert await _balances(store, "poster") == (1000, 0)
        assert await store.find_by_id("task-001") is None
        assert await store.find_transaction_by_key("task-001:fund") is None

    async def test_negative_escrow_is_invariant_violation(self, store):
        change = LedgerCommit(
            deltas=[BalanceDelta("poster", escrow=-1)],
            transactions=[_entry("bad-release")],
        )
        with pytest.raises(InvariantViolation):
            await store.commit(change)

    async def test_missing_account(self, store):
        change = LedgerCommit(
            deltas=[BalanceDelta("ghost", available=5)],
            transactions=[_entry("ghost-credit", user_id="ghost", type=TransactionType.DEPOSIT)],
        )
        with pytest.raises(AccountNotFound):
            await store.commit(change)

    async def test_wallet_commit_without_task(self, store):
        result = await store.commit(
            LedgerCommit(
                deltas=[BalanceDelta("executor", available=250)],
                transactions=[
                    _entry("deposit:gw-1", user_id="executor", type=TransactionType.DEPOSIT)
                ],
            )
        )
        assert result is None
        assert await _balances(store, "executor") == (250, 0)


# ============================================================================
# Queries
# ============================================================================


class TestQueries:
    async def test_transactions_oldest_first_per_user(self, store):
        await store.commit(_funding(_make_task()))
        await store.commit(
            LedgerCommit(
                deltas=[BalanceDelta("poster", available=50)],
                transactions=[
                    _entry("deposit:gw-2", type=TransactionType.DEPOSIT, amount=50, task_id=None)
                ],
            )
        )

        history = await store.find_transactions("poster")
        assert [tx.idempotency_key for tx in history] == ["task-001:fund", "deposit:gw-2"]
        assert await store.find_transactions("executor") == []
        assert len(await store.find_transactions("poster", limit=1)) == 1

    async def test_limit_keeps_newest_entries(self, store):
        for n in range(5):
            await store.commit(
                LedgerCommit(
                    deltas=[BalanceDelta("poster", available=10)],
                    transactions=[
                        _entry(
                            f"deposit:gw-{n}",
                            type=TransactionType.DEPOSIT,
                            amount=10,
                            task_id=None,
                        )
                    ],
                )
            )

        recent = await store.find_transactions("poster", limit=2)
        assert [tx.idempotency_key for tx in recent] == ["deposit:gw-3", "deposit:gw-4"]

        earlier = await store.find_transactions("poster", limit=2, offset=2)
        assert [tx.idempotency_key for tx in earlier] == ["deposit:gw-1", "deposit:gw-2"]

        oldest = await store.find_transactions("poster", limit=2, offset=4)
        assert [tx.idempotency_key for tx in oldest] == ["deposit:gw-0"]
        assert await store.find_transactions("poster", offset=10) == []

    async def test_total_fees_counts_commission_only(self, store):
        await store.commit(
            LedgerCommit(
                deltas=[BalanceDelta("executor", available=950)],
                transactions=[
                    _entry(
                        "rel",
                        user_id="executor",
                        type=TransactionType.PAYMENT_RELEASE,
                        amount=950,
                        fee=50,
                    ),
                    _entry(
                        "wd",
                        user_id="executor",
                        type=TransactionType.WITHDRAWAL,
                        amount=100,
                        fee=2,
                    ),
                ],
            )
        )
        assert await store.total_fees() == 50

    async def test_find_by_status_newest_first(self, store):
        for n in range(3):
            await store.commit(
                _funding(
                    _make_task(
                        task_id=f"task-{n}", budget=100, created_at=NOW + timedelta(minutes=n)
                    ),
                    key=f"task-{n}:fund",
                )
            )

        found = await store.find_by_status(TaskStatus.OPEN, limit=2)
        assert [t.task_id for t in found] == ["task-2", "task-1"]
        by_poster = await store.find_by_poster("poster")
        assert len(by_poster) == 3

    async def test_find_auto_release_due(self, store):
        due = _make_task(
            task_id="due",
            budget=100,
            status=TaskStatus.COMPLETED,
            executor_id="executor",
            auto_approve_at=NOW - timedelta(minutes=1),
        )
        later = _make_task(
            task_id="later",
            budget=100,
            status=TaskStatus.COMPLETED,
            executor_id="executor",
            auto_approve_at=NOW + timedelta(hours=1),
        )
        for task in (due, later):
            await store.commit(_funding(task, key=f"{task.task_id}:fund"))

        found = await store.find_auto_release_due(NOW)
        assert [t.task_id for t in found] == ["due"]
        assert [t.task_id for t in await store.find_by_executor("executor")] != []

    async def test_returned_objects_are_detached(self, store):
        await store.commit(_funding(_make_task()))
        task = await store.find_by_id("task-001")
        task.status = TaskStatus.CANCELLED

        assert (await store.find_by_id("task-001")).status == TaskStatus.OPEN
