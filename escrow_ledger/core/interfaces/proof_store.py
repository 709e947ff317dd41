"""Proof Store Interface"""

from abc import ABC, abstractmethod


class IProofStore(ABC):
    """Answers whether a task has a final deliverable attached"""

    @abstractmethod
    async def has_final_proof(self, task_id: str) -> bool:
        pass
