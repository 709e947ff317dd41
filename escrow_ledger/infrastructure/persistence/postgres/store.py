"""SQLAlchemy Implementation of IEscrowStore

Runs on PostgreSQL (asyncpg) in production and on SQLite (aiosqlite) in
tests. One ``commit`` is one database transaction: the task row is
compare-and-swapped on its version, balances move by relative UPDATEs
guarded against going negative, and ledger rows rely on the UNIQUE
idempotency key. Any failure rolls the whole transaction back.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ....core.entities import (
    COMMISSION_TYPES,
    Account,
    BalanceDelta,
    Offer,
    OfferStatus,
    Proofs,
    ServiceTier,
    Task,
    TaskStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from ....core.exceptions import (
    AccountNotFound,
    ConcurrencyConflict,
    DuplicateIdempotencyKey,
    InsufficientFunds,
    InvariantViolation,
    StorageError,
)
from ....core.interfaces import IEscrowStore, LedgerCommit
from .models import AccountModel, OfferModel, TaskModel, TransactionModel

logger = structlog.get_logger()


class SqlEscrowStore(IEscrowStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    # =========================================================================
    # Mapping
    # =========================================================================

    @staticmethod
    def _tz(dt: datetime | None) -> datetime | None:
        """Ensure a datetime is timezone-aware (UTC). asyncpg rejects naive datetimes."""
        if dt is None:
            return None
        return dt if dt.tzinfo else dt.replace(tzinfo=UTC)

    def _model_to_account(self, row: AccountModel) -> Account:
        return Account(
            user_id=row.user_id,
            available_balance=row.available_balance,
            escrow_balance=row.escrow_balance,
            tasks_completed=row.tasks_completed,
            rating=row.rating,
            version=row.version,
            created_at=self._tz(row.created_at),
        )

    def _model_to_offer(self, row: OfferModel) -> Offer:
        return Offer(
            offer_id=row.offer_id,
            task_id=row.task_id,
            user_id=row.user_id,
            price=row.price,
            message=row.message,
            status=OfferStatus(row.status),
            match_score=row.match_score,
            created_at=self._tz(row.created_at),
        )

    def _model_to_task(self, row: TaskModel, offers: list[OfferModel]) -> Task:
        return Task(
            task_id=row.task_id,
            poster_id=row.poster_id,
            budget=row.budget,
            title=row.title,
            description=row.description,
            category=row.category,
            service_tier=ServiceTier(row.service_tier),
            status=TaskStatus(row.status),
            executor_id=row.executor_id,
            offers=[self._model_to_offer(o) for o in offers],
            proofs=Proofs.from_dict(row.proofs),
            auto_approve_at=self._tz(row.auto_approve_at),
            created_at=self._tz(row.created_at),
            updated_at=self._tz(row.updated_at),
            version=row.version,
        )

    def _task_values(self, task: Task) -> dict:
        return {
            "poster_id": task.poster_id,
            "executor_id": task.executor_id,
            "budget": task.budget,
            "status": task.status.value,
            "service_tier": task.service_tier.value,
            "title": task.title,
            "description": task.description,
            "category": task.category,
            "proofs": task.proofs.to_dict(),
            "auto_approve_at": self._tz(task.auto_approve_at),
            "created_at": self._tz(task.created_at),
            "updated_at": self._tz(task.updated_at),
        }

    def _offer_to_model(self, offer: Offer, position: int) -> OfferModel:
        return OfferModel(
            offer_id=offer.offer_id,
            task_id=offer.task_id,
            user_id=offer.user_id,
            price=offer.price,
            message=offer.message,
            status=offer.status.value,
            match_score=offer.match_score,
            position=position,
            created_at=self._tz(offer.created_at),
        )

    def _model_to_tx(self, row: TransactionModel) -> Transaction:
        return Transaction(
            transaction_id=row.transaction_id,
            user_id=row.user_id,
            type=TransactionType(row.type),
            amount=row.amount,
            idempotency_key=row.idempotency_key,
            target_user_id=row.target_user_id,
            task_id=row.task_id,
            fee=row.fee,
            status=TransactionStatus(row.status),
            description=row.description,
            created_at=self._tz(row.created_at),
        )

    def _tx_to_model(self, tx: Transaction) -> TransactionModel:
        return TransactionModel(
            transaction_id=tx.transaction_id,
            idempotency_key=tx.idempotency_key,
            user_id=tx.user_id,
            target_user_id=tx.target_user_id,
            task_id=tx.task_id,
            type=tx.type.value,
            amount=tx.amount,
            fee=tx.fee,
            status=tx.status.value,
            description=tx.description,
            created_at=self._tz(tx.created_at),
        )

    # =========================================================================
    # Error translation
    # =========================================================================

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as e:
            # Unique violations lost a race with a concurrent writer
            logger.warning("sql_integrity_error", operation=operation, error=str(e.orig))
            if "idempotency_key" in str(e.orig):
                raise DuplicateIdempotencyKey(
                    "Idempotency key already committed", operation=operation
                ) from e
            raise ConcurrencyConflict(
                f"Concurrent write during {operation}", operation=operation
            ) from e
        except (SQLAlchemyError, OSError) as e:
            logger.error("sql_storage_error", operation=operation, error=str(e))
            raise StorageError(f"Storage failure during {operation}", operation=operation) from e

    # =========================================================================
    # Accounts
    # =========================================================================

    async def insert_account(self, account: Account) -> Account:
        with self._storage_errors("insert_account"):
            async with self._session_factory() as session, session.begin():
                existing = await session.get(AccountModel, account.user_id)
                if existing is not None:
                    return self._model_to_account(existing)
                row = AccountModel(
                    user_id=account.user_id,
                    available_balance=account.available_balance,
                    escrow_balance=account.escrow_balance,
                    tasks_completed=account.tasks_completed,
                    rating=account.rating,
                    version=account.version,
                    created_at=self._tz(account.created_at),
                )
                session.add(row)
            return account

    async def find_account(self, user_id: str) -> Account | None:
        with self._storage_errors("find_account"):
            async with self._session_factory() as session:
                row = await session.get(AccountModel, user_id)
                return self._model_to_account(row) if row else None

    async def find_accounts(self, user_ids: list[str]) -> dict[str, Account]:
        if not user_ids:
            return {}
        with self._storage_errors("find_accounts"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(AccountModel).where(AccountModel.user_id.in_(user_ids))
                )
                return {r.user_id: self._model_to_account(r) for r in result.scalars().all()}

    # =========================================================================
    # Transactions
    # =========================================================================

    async def find_transactions(
        self, user_id: str, limit: int = 100, offset: int = 0
    ) -> list[Transaction]:
        with self._storage_errors("find_transactions"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TransactionModel)
                    .where(TransactionModel.user_id == user_id)
                    .order_by(TransactionModel.seq.desc())
                    .offset(offset)
                    .limit(limit)
                )
                newest_first = [self._model_to_tx(r) for r in result.scalars().all()]
                return newest_first[::-1]

    async def find_transaction_by_key(self, idempotency_key: str) -> Transaction | None:
        with self._storage_errors("find_transaction_by_key"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TransactionModel).where(
                        TransactionModel.idempotency_key == idempotency_key
                    )
                )
                row = result.scalar_one_or_none()
                return self._model_to_tx(row) if row else None

    async def total_fees(self) -> int:
        with self._storage_errors("total_fees"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.coalesce(func.sum(TransactionModel.fee), 0)).where(
                        TransactionModel.type.in_([t.value for t in COMMISSION_TYPES])
                    )
                )
                return int(result.scalar_one())

    # =========================================================================
    # Tasks
    # =========================================================================

    async def find_by_id(self, task_id: str) -> Task | None:
        with self._storage_errors("find_task"):
            async with self._session_factory() as session:
                row = await session.get(TaskModel, task_id)
                if row is None:
                    return None
                tasks = await self._with_offers(session, [row])
                return tasks[0]

    async def find_by_status(self, status: TaskStatus, limit: int = 50) -> list[Task]:
        return await self._find_tasks(TaskModel.status == status.value, limit=limit)

    async def find_by_poster(self, poster_id: str, limit: int = 50) -> list[Task]:
        return await self._find_tasks(TaskModel.poster_id == poster_id, limit=limit)

    async def find_by_executor(self, executor_id: str, limit: int = 50) -> list[Task]:
        return await self._find_tasks(TaskModel.executor_id == executor_id, limit=limit)

    async def find_auto_release_due(self, now: datetime, limit: int = 100) -> list[Task]:
        return await self._find_tasks(
            TaskModel.status == TaskStatus.COMPLETED.value,
            TaskModel.auto_approve_at.is_not(None),
            TaskModel.auto_approve_at <= now.astimezone(UTC),
            limit=limit,
        )

    async def _find_tasks(self, *conditions, limit: int) -> list[Task]:
        with self._storage_errors("find_tasks"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TaskModel)
                    .where(*conditions)
                    .order_by(TaskModel.created_at.desc())
                    .limit(limit)
                )
                return await self._with_offers(session, list(result.scalars().all()))

    async def _with_offers(self, session: AsyncSession, rows: list[TaskModel]) -> list[Task]:
        if not rows:
            return []
        result = await session.execute(
            select(OfferModel)
            .where(OfferModel.task_id.in_([r.task_id for r in rows]))
            .order_by(OfferModel.position)
        )
        by_task: dict[str, list[OfferModel]] = {}
        for offer in result.scalars().all():
            by_task.setdefault(offer.task_id, []).append(offer)
        return [self._model_to_task(r, by_task.get(r.task_id, [])) for r in rows]

    # =========================================================================
    # Commit
    # =========================================================================

    async def commit(self, change: LedgerCommit) -> Task | None:
        with self._storage_errors("commit"):
            async with self._session_factory() as session, session.begin():
                await self._check_keys(session, change.idempotency_keys)
                stored = None
                if change.task is not None:
                    stored = await self._write_task(session, change)
                for delta in change.deltas:
                    await self._apply_delta(session, delta)
                session.add_all([self._tx_to_model(tx) for tx in change.transactions])
                await session.flush()

            if stored is not None:
                logger.debug(
                    "sql_commit",
                    task_id=stored.task_id,
                    version=stored.version,
                    deltas=len(change.deltas),
                    transactions=len(change.transactions),
                )
            return stored

    async def _check_keys(self, session: AsyncSession, keys: list[str]) -> None:
        if not keys:
            return
        result = await session.execute(
            select(TransactionModel.idempotency_key).where(
                TransactionModel.idempotency_key.in_(keys)
            )
        )
        duplicate = result.scalars().first()
        if duplicate is not None:
            raise DuplicateIdempotencyKey(
                f"Idempotency key {duplicate} already committed", idempotency_key=duplicate
            )

    async def _write_task(self, session: AsyncSession, change: LedgerCommit) -> Task:
        task = change.task
        values = self._task_values(task)

        if change.expected_version is None:
            if await session.get(TaskModel, task.task_id) is not None:
                raise ConcurrencyConflict(
                    f"Task {task.task_id} already exists", task_id=task.task_id
                )
            new_version = 1
            session.add(TaskModel(task_id=task.task_id, version=new_version, **values))
        else:
            new_version = change.expected_version + 1
            result = await session.execute(
                update(TaskModel)
                .where(
                    TaskModel.task_id == task.task_id,
                    TaskModel.version == change.expected_version,
                )
                .values(version=new_version, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrencyConflict(
                    f"Task {task.task_id} changed concurrently",
                    task_id=task.task_id,
                    expected_version=change.expected_version,
                )

        # Offers are never deleted, so merging the full list is an upsert
        for position, offer in enumerate(task.offers):
            await session.merge(self._offer_to_model(offer, position))

        stored = Task.from_dict(task.to_dict())
        stored.version = new_version
        return stored

    async def _apply_delta(self, session: AsyncSession, delta: BalanceDelta) -> None:
        if delta.is_empty():
            return
        result = await session.execute(
            update(AccountModel)
            .where(
                AccountModel.user_id == delta.user_id,
                AccountModel.available_balance + delta.available >= 0,
                AccountModel.escrow_balance + delta.escrow >= 0,
            )
            .values(
                available_balance=AccountModel.available_balance + delta.available,
                escrow_balance=AccountModel.escrow_balance + delta.escrow,
                tasks_completed=AccountModel.tasks_completed + delta.tasks_completed,
                version=AccountModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        row = await session.get(AccountModel, delta.user_id)
        if row is None:
            raise AccountNotFound(f"Account {delta.user_id} not found", user_id=delta.user_id)
        if row.available_balance + delta.available < 0:
            raise InsufficientFunds(
                f"Account {delta.user_id} has {row.available_balance} available, "
                f"needs {-delta.available}",
                user_id=delta.user_id,
                available=row.available_balance,
                required=-delta.available,
            )
        raise InvariantViolation(
            f"Escrow balance of {delta.user_id} would become negative",
            user_id=delta.user_id,
            escrow=row.escrow_balance,
            delta=delta.escrow,
        )

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
