"""Lock Manager Interface"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager


class ILockManager(ABC):
    """
    Mutual exclusion over task and account keys.

    Implementations acquire keys in sorted order so two holders can
    never wait on each other, and raise ConcurrencyConflict when a key
    cannot be acquired within the configured timeout.
    """

    @abstractmethod
    def hold(self, *keys: str) -> AbstractAsyncContextManager[None]:
        """Hold all keys for the duration of the ``async with`` block"""
        pass

    async def close(self) -> None:
        """Release resources (no-op by default)"""
        return None
