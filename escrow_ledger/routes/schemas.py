"""Request/Response Models"""

from pydantic import BaseModel, Field

from ..core.engine import DisputeDecision
from ..core.entities import Account, Offer, ProofKind, ServiceTier, Task, Transaction


# ========== Requests ==========


class TaskCreateRequest(BaseModel):
    """Request to post and fund a task"""

    base_budget: int | str = Field(..., description="Budget before the tier multiplier")
    service_tier: ServiceTier = ServiceTier.STANDARD
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(default="", max_length=10000)
    category: str = Field(default="general", max_length=64)
    idempotency_key: str | None = Field(None, max_length=200)


class OfferCreateRequest(BaseModel):
    price: int | str
    message: str = Field(default="", max_length=2000)
    match_score: float | None = Field(None, ge=0, le=100)


class TransitionRequest(BaseModel):
    offer_id: str | None = None
    decision: DisputeDecision | None = None
    idempotency_key: str | None = Field(None, max_length=200)


class ProofRequest(BaseModel):
    kind: ProofKind
    attachment_id: str
    name: str
    url: str
    type: str = "DOCUMENT"


class DepositRequest(BaseModel):
    """Payment gateway callback"""

    user_id: str
    amount: int | str
    external_reference: str = Field(..., min_length=1, max_length=200)


class WithdrawalRequest(BaseModel):
    amount: int | str
    method: str = Field(default="BANK", max_length=32)
    instant: bool = False
    request_id: str | None = Field(None, max_length=200)


# ========== Responses ==========


class OfferResponse(BaseModel):
    offer_id: str
    task_id: str
    user_id: str
    price: int
    message: str
    status: str
    match_score: float | None = None
    created_at: str

    @classmethod
    def from_entity(cls, offer: Offer) -> "OfferResponse":
        return cls(**offer.to_dict())


class TaskResponse(BaseModel):
    task_id: str
    poster_id: str
    executor_id: str | None = None
    budget: int
    title: str
    description: str
    category: str
    service_tier: str
    status: str
    offers: list[OfferResponse]
    proofs: dict
    auto_approve_at: str | None = None
    created_at: str
    updated_at: str | None = None
    version: int

    @classmethod
    def from_entity(cls, task: Task) -> "TaskResponse":
        return cls(**task.to_dict())


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]
    total: int


class AccountResponse(BaseModel):
    user_id: str
    available_balance: int
    escrow_balance: int
    tasks_completed: int
    rating: float | None = None

    @classmethod
    def from_entity(cls, account: Account) -> "AccountResponse":
        return cls(
            user_id=account.user_id,
            available_balance=account.available_balance,
            escrow_balance=account.escrow_balance,
            tasks_completed=account.tasks_completed,
            rating=account.rating,
        )


class TransactionResponse(BaseModel):
    transaction_id: str
    user_id: str
    type: str
    amount: int
    idempotency_key: str
    target_user_id: str | None = None
    task_id: str | None = None
    fee: int | None = None
    status: str
    description: str
    created_at: str

    @classmethod
    def from_entity(cls, tx: Transaction) -> "TransactionResponse":
        return cls(**tx.to_dict())
