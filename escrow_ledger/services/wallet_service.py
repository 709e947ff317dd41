"""Wallet Service

Account registration, balance reads, the ledger history, and the two
money movements that happen outside a task: gateway deposits and
withdrawals.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import structlog

from ..core.engine import round_half_up, to_units
from ..core.entities import Account, BalanceDelta, Transaction, TransactionType
from ..core.exceptions import (
    AccountNotFound,
    DuplicateIdempotencyKey,
    InsufficientFunds,
    InvalidAmount,
    InvalidRequest,
)
from ..core.interfaces import IEscrowStore, ILockManager, INotificationDispatcher, LedgerCommit
from ..infrastructure.locking import account_lock_key
from .notifier import Notifier
from .retry import RetryPolicy

logger = structlog.get_logger()

DEFAULT_INSTANT_WITHDRAWAL_FEE_RATE = Decimal("0.02")


class WalletService:
    def __init__(
        self,
        store: IEscrowStore,
        locks: ILockManager,
        dispatcher: INotificationDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
        instant_fee_rate: Decimal = DEFAULT_INSTANT_WITHDRAWAL_FEE_RATE,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.locks = locks
        self.notifier = Notifier(dispatcher)
        self.retry = retry_policy or RetryPolicy()
        self.instant_fee_rate = Decimal(instant_fee_rate)
        self._clock = clock or (lambda: datetime.now(UTC))

    # =========================================================================
    # Accounts
    # =========================================================================

    async def register_account(self, user_id: str) -> Account:
        """Create a zero-balance account; registering twice returns the existing one"""
        if not user_id:
            raise InvalidRequest("user_id is required")
        account = await self.store.insert_account(
            Account(user_id=user_id, created_at=self._clock())
        )
        logger.info("account_registered", user_id=user_id)
        return account

    async def get_account(self, user_id: str) -> Account:
        account = await self.store.find_account(user_id)
        if not account:
            raise AccountNotFound(f"Account {user_id} not found", user_id=user_id)
        return account

    async def list_transactions(
        self, user_id: str, limit: int = 100, offset: int = 0
    ) -> list[Transaction]:
        """The user's most recent entries, oldest first; ``offset`` pages back"""
        await self.get_account(user_id)
        return await self.store.find_transactions(user_id, limit=limit, offset=offset)

    async def total_fees_collected(self) -> int:
        """Platform commission from releases and pay-executor resolutions"""
        return await self.store.total_fees()

    # =========================================================================
    # Deposits
    # =========================================================================

    async def record_deposit(
        self, user_id: str, amount: int | str, external_reference: str
    ) -> Transaction:
        """
        Credit a deposit reported by the payment gateway.

        ``external_reference`` is the idempotency key: a replayed callback
        returns the original transaction without crediting again.

        Raises:
            InvalidAmount: If the amount is not positive, or a replay
                carries a different amount or user
            AccountNotFound: If the user has no account
        """
        units = self._positive_units(amount)
        if not external_reference:
            raise InvalidRequest("external_reference is required")
        key = f"deposit:{external_reference}"

        tx = Transaction(
            transaction_id=Transaction.new_id(),
            user_id=user_id,
            type=TransactionType.DEPOSIT,
            amount=units,
            idempotency_key=key,
            description=f"Deposit ({external_reference})",
            created_at=self._clock(),
        )
        delta = BalanceDelta(user_id, available=units)
        return await self._post(tx, delta, name="record_deposit")

    # =========================================================================
    # Withdrawals
    # =========================================================================

    async def withdraw(
        self,
        user_id: str,
        amount: int | str,
        method: str = "BANK",
        instant: bool = False,
        request_id: str | None = None,
    ) -> Transaction:
        """
        Move funds out of the available balance.

        The full amount leaves the balance; for instant withdrawals the
        platform keeps ``fee`` of it and the user receives the rest.

        Raises:
            InvalidAmount: If the amount is not positive
            InsufficientFunds: If available balance does not cover it
            AccountNotFound: If the user has no account
        """
        units = self._positive_units(amount)
        fee = round_half_up(Decimal(units) * self.instant_fee_rate) if instant else 0
        key = f"withdrawal:{request_id or uuid4()}"

        tx = Transaction(
            transaction_id=Transaction.new_id(),
            user_id=user_id,
            type=TransactionType.WITHDRAWAL,
            amount=units,
            idempotency_key=key,
            fee=fee or None,
            description=f"Withdrawal to {method}" + (" (instant)" if instant else ""),
            created_at=self._clock(),
        )
        delta = BalanceDelta(user_id, available=-units)
        return await self._post(tx, delta, name="withdraw")

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _post(self, tx: Transaction, delta: BalanceDelta, name: str) -> Transaction:
        replay = await self._replayed(tx)
        if replay is not None:
            return replay

        async def attempt() -> Transaction:
            async with self.locks.hold(account_lock_key(tx.user_id)):
                account = await self.get_account(tx.user_id)
                if delta.available < 0 and not account.can_cover(-delta.available):
                    raise InsufficientFunds(
                        f"Available balance {account.available_balance} does not cover "
                        f"{-delta.available}",
                        user_id=tx.user_id,
                        available=account.available_balance,
                        required=-delta.available,
                    )
                await self.store.commit(LedgerCommit(deltas=[delta], transactions=[tx]))
                return tx

        try:
            committed = await self.retry.run(
                attempt, name=name, recover=lambda: self._replayed(tx)
            )
        except DuplicateIdempotencyKey:
            # Lost a race with the same callback
            replay = await self._replayed(tx)
            if replay is None:
                raise
            return replay

        logger.info(
            "wallet_posted",
            user_id=tx.user_id,
            type=tx.type.value,
            amount=tx.amount,
            fee=tx.fee,
            idempotency_key=tx.idempotency_key,
        )
        await self.notifier.publish([Notifier.wallet_entry(committed)])
        return committed

    async def _replayed(self, tx: Transaction) -> Transaction | None:
        """Return the committed entry for this key, checking it matches"""
        existing = await self.store.find_transaction_by_key(tx.idempotency_key)
        if existing is None:
            return None
        if (
            existing.user_id != tx.user_id
            or existing.amount != tx.amount
            or existing.type != tx.type
        ):
            raise InvalidAmount(
                f"Idempotency key {tx.idempotency_key} was used for a different request",
                idempotency_key=tx.idempotency_key,
                committed_amount=existing.amount,
                requested_amount=tx.amount,
            )
        logger.info("wallet_replayed", idempotency_key=tx.idempotency_key)
        return existing

    @staticmethod
    def _positive_units(amount: int | str) -> int:
        units = to_units(amount)
        if units <= 0:
            raise InvalidAmount(f"Amount must be positive, got {units}", amount=units)
        return units
