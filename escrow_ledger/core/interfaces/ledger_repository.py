"""Ledger Repository Interface

Defines contract for account and transaction persistence.
"""

from abc import ABC, abstractmethod

from ..entities import Account, Transaction


class ILedgerRepository(ABC):
    """
    Abstract interface for account balances and the transaction log

    Balances are only ever changed through ``IEscrowStore.commit``;
    this interface covers registration and reads.
    """

    # ========== Accounts ==========

    @abstractmethod
    async def insert_account(self, account: Account) -> Account:
        """Create an account; returns the existing one if already registered"""
        pass

    @abstractmethod
    async def find_account(self, user_id: str) -> Account | None:
        """Find account by user ID"""
        pass

    @abstractmethod
    async def find_accounts(self, user_ids: list[str]) -> dict[str, Account]:
        """Find several accounts at once, keyed by user ID"""
        pass

    # ========== Transactions ==========

    @abstractmethod
    async def find_transactions(
        self, user_id: str, limit: int = 100, offset: int = 0
    ) -> list[Transaction]:
        """
        Find transactions owned by a user, oldest first.

        The window is the newest ``limit`` entries after skipping the
        ``offset`` most recent ones, so a larger offset pages back in time.
        """
        pass

    @abstractmethod
    async def find_transaction_by_key(self, idempotency_key: str) -> Transaction | None:
        """Find the transaction committed under an idempotency key"""
        pass

    @abstractmethod
    async def total_fees(self) -> int:
        """Sum of platform fees across all committed transactions"""
        pass
