"""Task Repository Interface

Defines contract for task reads. Writes go through ``IEscrowStore.commit``.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from ..entities import Task, TaskStatus


class ITaskRepository(ABC):
    """
    Abstract interface for Task persistence

    Infrastructure layer provides concrete implementation (memory, Postgres).
    """

    @abstractmethod
    async def find_by_id(self, task_id: str) -> Task | None:
        """Find task by ID"""
        pass

    @abstractmethod
    async def find_by_status(self, status: TaskStatus, limit: int = 50) -> list[Task]:
        """Find tasks by status"""
        pass

    @abstractmethod
    async def find_by_poster(self, poster_id: str, limit: int = 50) -> list[Task]:
        """Find tasks posted by a user"""
        pass

    @abstractmethod
    async def find_by_executor(self, executor_id: str, limit: int = 50) -> list[Task]:
        """Find tasks assigned to a user"""
        pass

    @abstractmethod
    async def find_auto_release_due(self, now: datetime, limit: int = 100) -> list[Task]:
        """Find COMPLETED tasks whose auto-approve deadline has passed"""
        pass
