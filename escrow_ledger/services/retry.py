"""Retry policy for ledger writes

- ConcurrencyConflict: retried with fresh state, once by default
- StorageError: retried with exponential backoff; before each retry the
  idempotency key is checked so an ambiguous commit is never applied twice
- everything else (funds, state, authorization) is surfaced immediately
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from ..core.exceptions import ConcurrencyConflict, DuplicateIdempotencyKey, StorageError

logger = structlog.get_logger()

T = TypeVar("T")

_MISSING = object()


class RetryPolicy:
    def __init__(
        self,
        storage_retries: int = 3,
        storage_retry_delay: float = 0.05,
        conflict_retries: int = 1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.storage_retries = storage_retries
        self.storage_retry_delay = storage_retry_delay
        self.conflict_retries = conflict_retries
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str,
        recover: Callable[[], Awaitable[T | None]] | None = None,
    ) -> T:
        """
        Run ``operation`` under the policy.

        Args:
            operation: Performs one full load-compute-commit attempt
            name: Operation name for logs
            recover: Called after a StorageError; returns the committed
                result if the previous attempt actually landed, else None
        """
        conflicts = 0
        storage_failures = 0

        while True:
            try:
                return await operation()
            except DuplicateIdempotencyKey:
                raise
            except ConcurrencyConflict as e:
                conflicts += 1
                if conflicts > self.conflict_retries:
                    logger.warning("retry_exhausted", operation=name, error=e.code)
                    raise
                logger.info("retry_conflict", operation=name, attempt=conflicts)
            except StorageError as e:
                storage_failures += 1
                recovered = await self._recover(recover, name)
                if recovered is not _MISSING:
                    return recovered
                if storage_failures > self.storage_retries:
                    logger.error("retry_exhausted", operation=name, error=e.code)
                    raise
                delay = self.storage_retry_delay * (2 ** (storage_failures - 1))
                logger.warning(
                    "retry_storage_error", operation=name, attempt=storage_failures, delay=delay
                )
                await self._sleep(delay)

    @staticmethod
    async def _recover(recover, name: str):
        if recover is None:
            return _MISSING
        try:
            result = await recover()
        except StorageError:
            # Cannot tell yet; let the retry loop try again
            return _MISSING
        if result is None:
            return _MISSING
        logger.info("retry_recovered_commit", operation=name)
        return result
