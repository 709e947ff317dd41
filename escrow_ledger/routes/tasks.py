"""Task API Routes

Route -> TaskLifecycleService / OfferService -> IEscrowStore
"""

from typing import Annotated

from fastapi import APIRouter, Query

from ..core.engine import TaskAction
from ..core.entities import Attachment, TaskStatus
from ..services import BudgetInputs, TransitionPayload
from .dependencies import (
    ActorDep,
    AdminDep,
    LifecycleServiceDep,
    OfferServiceDep,
    SystemDep,
)
from .schemas import (
    OfferCreateRequest,
    OfferResponse,
    ProofRequest,
    TaskCreateRequest,
    TaskListResponse,
    TaskResponse,
    TransitionRequest,
)

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


@router.post("", response_model=TaskResponse, status_code=201)
async def create_task(
    request: TaskCreateRequest,
    actor: ActorDep,
    lifecycle: LifecycleServiceDep,
):
    """Post a task and lock its budget in escrow"""
    task = await lifecycle.create_funded_task(
        actor.actor_id,
        BudgetInputs(
            base_budget=request.base_budget,
            service_tier=request.service_tier,
            title=request.title,
            description=request.description,
            category=request.category,
        ),
        idempotency_key=request.idempotency_key,
    )
    return TaskResponse.from_entity(task)


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    lifecycle: LifecycleServiceDep,
    status: TaskStatus | None = None,
    poster_id: str | None = None,
    executor_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
):
    tasks = await lifecycle.list_tasks(
        status=status, poster_id=poster_id, executor_id=executor_id, limit=limit
    )
    return TaskListResponse(tasks=[TaskResponse.from_entity(t) for t in tasks], total=len(tasks))


@router.get("/disputed", response_model=TaskListResponse)
async def list_disputed_tasks(admin: AdminDep, lifecycle: LifecycleServiceDep):
    """Admin dispute queue"""
    tasks = await lifecycle.list_disputed_tasks()
    return TaskListResponse(tasks=[TaskResponse.from_entity(t) for t in tasks], total=len(tasks))


@router.post("/auto-release", response_model=TaskListResponse)
async def release_due_tasks(scheduler: SystemDep, lifecycle: LifecycleServiceDep):
    """Invoked by the external scheduler"""
    tasks = await lifecycle.release_due_tasks()
    return TaskListResponse(tasks=[TaskResponse.from_entity(t) for t in tasks], total=len(tasks))


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, lifecycle: LifecycleServiceDep):
    return TaskResponse.from_entity(await lifecycle.get_task(task_id))


@router.post("/{task_id}/actions/{action}", response_model=TaskResponse)
async def apply_action(
    task_id: str,
    action: TaskAction,
    actor: ActorDep,
    lifecycle: LifecycleServiceDep,
    request: TransitionRequest | None = None,
):
    """Apply a lifecycle action (start_work, submit_completion, release_payment, ...)"""
    request = request or TransitionRequest()
    task = await lifecycle.transition(
        task_id,
        action,
        actor,
        TransitionPayload(offer_id=request.offer_id, decision=request.decision),
        idempotency_key=request.idempotency_key,
    )
    return TaskResponse.from_entity(task)


@router.post("/{task_id}/proofs", response_model=TaskResponse)
async def attach_proof(
    task_id: str,
    request: ProofRequest,
    actor: ActorDep,
    lifecycle: LifecycleServiceDep,
):
    task = await lifecycle.attach_proof(
        task_id,
        actor,
        request.kind,
        Attachment(
            attachment_id=request.attachment_id,
            name=request.name,
            url=request.url,
            type=request.type,
        ),
    )
    return TaskResponse.from_entity(task)


# ========== Offers ==========


@router.get("/{task_id}/offers", response_model=list[OfferResponse])
async def list_offers(task_id: str, offers: OfferServiceDep):
    return [OfferResponse.from_entity(o) for o in await offers.list_offers(task_id)]


@router.post("/{task_id}/offers", response_model=OfferResponse, status_code=201)
async def submit_offer(
    task_id: str,
    request: OfferCreateRequest,
    actor: ActorDep,
    offers: OfferServiceDep,
):
    offer = await offers.submit_offer(
        task_id,
        actor.actor_id,
        request.price,
        message=request.message,
        match_score=request.match_score,
    )
    return OfferResponse.from_entity(offer)


@router.post("/{task_id}/offers/{offer_id}/accept", response_model=TaskResponse)
async def accept_offer(
    task_id: str,
    offer_id: str,
    actor: ActorDep,
    lifecycle: LifecycleServiceDep,
):
    return TaskResponse.from_entity(await lifecycle.accept_offer(task_id, offer_id, actor))


@router.post("/{task_id}/offers/{offer_id}/reject", response_model=OfferResponse)
async def reject_offer(
    task_id: str,
    offer_id: str,
    actor: ActorDep,
    offers: OfferServiceDep,
):
    return OfferResponse.from_entity(await offers.reject_offer(task_id, offer_id, actor))
