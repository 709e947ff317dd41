"""Notification value objects handed to the dispatcher"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class NotificationEvent(str, Enum):
    OFFER_RECEIVED = "offer.received"
    OFFER_ACCEPTED = "offer.accepted"
    OFFER_REJECTED = "offer.rejected"
    WORK_STARTED = "task.work_started"
    TASK_COMPLETED = "task.completed"
    PAYMENT_RELEASED = "task.payment_released"
    TASK_REFUNDED = "task.refunded"
    DISPUTE_RAISED = "task.disputed"
    DISPUTE_RESOLVED = "task.dispute_resolved"
    FUNDS_DEPOSITED = "wallet.deposited"
    FUNDS_WITHDRAWN = "wallet.withdrawn"


class NotificationLevel(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class Notification:
    user_id: str
    event: NotificationEvent
    title: str
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    task_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def link(self) -> str | None:
        return f"/tasks/{self.task_id}" if self.task_id else None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "event": self.event.value,
            "title": self.title,
            "message": self.message,
            "level": self.level.value,
            "task_id": self.task_id,
            "link": self.link,
            "created_at": self.created_at.isoformat(),
        }
