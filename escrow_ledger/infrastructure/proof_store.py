"""Proof store backed by the task's own attachment lists"""

from ..core.interfaces import IProofStore, ITaskRepository


class TaskProofStore(IProofStore):
    """Answers ``has_final_proof`` from ``task.proofs.final``"""

    def __init__(self, tasks: ITaskRepository):
        self.tasks = tasks

    async def has_final_proof(self, task_id: str) -> bool:
        task = await self.tasks.find_by_id(task_id)
        return task is not None and task.has_final_proof()
