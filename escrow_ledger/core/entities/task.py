"""Task Domain Entity

Pure business objects for tasks, offers and proof attachments,
independent of infrastructure.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4


class TaskStatus(str, Enum):
    """Task status"""

    OPEN = "OPEN"  # Funded, accepting offers
    ASSIGNED = "ASSIGNED"  # Offer accepted, executor set
    IN_PROGRESS = "IN_PROGRESS"  # Executor working
    COMPLETED = "COMPLETED"  # Final proof submitted, awaiting release
    PAID = "PAID"  # Escrow released to executor
    CANCELLED = "CANCELLED"  # Escrow refunded to poster
    DISPUTED = "DISPUTED"  # Funds frozen pending admin decision


TERMINAL_STATUSES = frozenset({TaskStatus.PAID, TaskStatus.CANCELLED})


class ServiceTier(str, Enum):
    """Requested urgency; scales the budget once at creation"""

    STANDARD = "STANDARD"
    URGENT = "URGENT"
    OVERNIGHT = "OVERNIGHT"

    @property
    def multiplier(self) -> Decimal:
        return _TIER_MULTIPLIERS[self]


_TIER_MULTIPLIERS = {
    ServiceTier.STANDARD: Decimal("1.0"),
    ServiceTier.URGENT: Decimal("1.5"),
    ServiceTier.OVERNIGHT: Decimal("2.0"),
}


class OfferStatus(str, Enum):
    """Offer status"""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ProofKind(str, Enum):
    """Proof attachment slot"""

    DRAFT = "draft"
    FINAL = "final"


@dataclass
class Attachment:
    """A deliverable reference; content lives in the attachment store"""

    attachment_id: str
    name: str
    url: str
    type: str = "DOCUMENT"  # IMAGE, DOCUMENT, AUDIO
    is_verified: bool = False

    def to_dict(self) -> dict:
        return {
            "attachment_id": self.attachment_id,
            "name": self.name,
            "url": self.url,
            "type": self.type,
            "is_verified": self.is_verified,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Attachment":
        return cls(**data)


@dataclass
class Proofs:
    draft: list[Attachment] = field(default_factory=list)
    final: list[Attachment] = field(default_factory=list)

    def add(self, kind: ProofKind, attachment: Attachment) -> None:
        if kind == ProofKind.FINAL:
            self.final.append(attachment)
        else:
            self.draft.append(attachment)

    def to_dict(self) -> dict:
        return {
            "draft": [a.to_dict() for a in self.draft],
            "final": [a.to_dict() for a in self.final],
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "Proofs":
        data = data or {}
        return cls(
            draft=[Attachment.from_dict(a) for a in data.get("draft", [])],
            final=[Attachment.from_dict(a) for a in data.get("final", [])],
        )


@dataclass
class Offer:
    """
    Offer Domain Entity

    A proposal by a would-be executor on an OPEN task. Never deleted,
    only moved from PENDING to ACCEPTED or REJECTED.
    """

    offer_id: str
    task_id: str
    user_id: str
    price: int
    message: str = ""
    status: OfferStatus = OfferStatus.PENDING
    match_score: float | None = None  # Advisory only
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def new_id() -> str:
        return f"off-{uuid4()}"

    def is_pending(self) -> bool:
        return self.status == OfferStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "offer_id": self.offer_id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "price": self.price,
            "message": self.message,
            "status": self.status.value,
            "match_score": self.match_score,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Offer":
        data = data.copy()
        if isinstance(data.get("status"), str):
            data["status"] = OfferStatus(data["status"])
        if isinstance(data.get("created_at"), str):
            data["created_at"] = datetime.fromisoformat(data["created_at"])
        return cls(**data)


@dataclass
class Task:
    """
    Task Domain Entity

    A funded unit of work. ``budget`` is fixed at creation (tier
    multiplier already applied) and never changes afterwards; the
    escrow engine is the only writer of ``status`` and ``executor_id``.

    ``version`` is bumped by the store on every committed change and is
    used for optimistic concurrency checks.
    """

    task_id: str
    poster_id: str
    budget: int

    # Content
    title: str = ""
    description: str = ""
    category: str = "general"
    service_tier: ServiceTier = ServiceTier.STANDARD

    # Lifecycle
    status: TaskStatus = TaskStatus.OPEN
    executor_id: str | None = None
    offers: list[Offer] = field(default_factory=list)
    proofs: Proofs = field(default_factory=Proofs)
    auto_approve_at: datetime | None = None

    # Timestamps
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    version: int = 0

    def __post_init__(self):
        """Validate invariants"""
        if not self.task_id:
            raise ValueError("task_id cannot be empty")
        if not self.poster_id:
            raise ValueError("poster_id cannot be empty")
        if self.budget <= 0:
            raise ValueError("budget must be positive")

    @staticmethod
    def new_id() -> str:
        return str(uuid4())

    # ========== Queries ==========

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_open(self) -> bool:
        return self.status == TaskStatus.OPEN

    def is_poster(self, user_id: str) -> bool:
        return self.poster_id == user_id

    def is_executor(self, user_id: str) -> bool:
        return self.executor_id is not None and self.executor_id == user_id

    def find_offer(self, offer_id: str) -> Offer | None:
        for offer in self.offers:
            if offer.offer_id == offer_id:
                return offer
        return None

    def pending_offers(self) -> list[Offer]:
        return [o for o in self.offers if o.is_pending()]

    def accepted_offer(self) -> Offer | None:
        for offer in self.offers:
            if offer.status == OfferStatus.ACCEPTED:
                return offer
        return None

    def has_final_proof(self) -> bool:
        return bool(self.proofs.final)

    def is_auto_release_due(self, now: datetime) -> bool:
        return (
            self.status == TaskStatus.COMPLETED
            and self.auto_approve_at is not None
            and self.auto_approve_at <= now
        )

    # ========== Serialization ==========

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            "task_id": self.task_id,
            "poster_id": self.poster_id,
            "budget": self.budget,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "service_tier": self.service_tier.value,
            "status": self.status.value,
            "executor_id": self.executor_id,
            "offers": [o.to_dict() for o in self.offers],
            "proofs": self.proofs.to_dict(),
            "auto_approve_at": self.auto_approve_at.isoformat() if self.auto_approve_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Create Task from dictionary"""
        data = data.copy()

        if isinstance(data.get("status"), str):
            data["status"] = TaskStatus(data["status"])
        if isinstance(data.get("service_tier"), str):
            data["service_tier"] = ServiceTier(data["service_tier"])
        data["offers"] = [
            o if isinstance(o, Offer) else Offer.from_dict(o) for o in data.get("offers", [])
        ]
        if not isinstance(data.get("proofs"), Proofs):
            data["proofs"] = Proofs.from_dict(data.get("proofs"))

        for field_name in ("auto_approve_at", "created_at", "updated_at"):
            if data.get(field_name) and isinstance(data[field_name], str):
                data[field_name] = datetime.fromisoformat(data[field_name])

        return cls(**data)
