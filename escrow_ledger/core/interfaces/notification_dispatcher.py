"""Notification Dispatcher Interface"""

from abc import ABC, abstractmethod

from ..entities import Notification


class INotificationDispatcher(ABC):
    """
    Delivers notifications after a transition has committed.

    Delivery is best-effort; a failure here never rolls back ledger state.
    """

    @abstractmethod
    async def dispatch(self, notification: Notification) -> None:
        pass

    async def close(self) -> None:
        return None
