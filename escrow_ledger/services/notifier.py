"""Builds lifecycle notifications and hands them to the dispatcher"""

import structlog

from ..core.engine import DisputeDecision, TaskAction, Transition
from ..core.entities import (
    Notification,
    NotificationEvent,
    NotificationLevel,
    Offer,
    Task,
    Transaction,
    TransactionType,
)
from ..core.interfaces import INotificationDispatcher

logger = structlog.get_logger()


class Notifier:
    """
    Best-effort notifications after a committed change.

    Never raises: a dispatcher failure is logged and the ledger
    operation that triggered it still succeeds.
    """

    def __init__(self, dispatcher: INotificationDispatcher | None = None):
        self.dispatcher = dispatcher

    async def publish(self, notifications: list[Notification]) -> None:
        if not self.dispatcher:
            return
        for notification in notifications:
            try:
                await self.dispatcher.dispatch(notification)
            except Exception as e:
                logger.warning(
                    "notification_failed",
                    user_id=notification.user_id,
                    notification_event=notification.event.value,
                    error=str(e),
                )

    # ========== Builders ==========

    @staticmethod
    def for_transition(
        before: Task, after: Task, transition: Transition, decision: DisputeDecision | None = None
    ) -> list[Notification]:
        action = transition.action
        task_id = after.task_id
        title = after.title or task_id

        if action == TaskAction.ACCEPT_OFFER:
            rejected = [
                o.user_id
                for o in before.offers
                if o.is_pending() and o.user_id != after.executor_id
            ]
            return [
                Notification(
                    user_id=after.executor_id,
                    event=NotificationEvent.OFFER_ACCEPTED,
                    title="Offer Accepted",
                    message=f"Your offer on '{title}' was accepted. You can start work.",
                    level=NotificationLevel.SUCCESS,
                    task_id=task_id,
                )
            ] + [
                Notification(
                    user_id=user_id,
                    event=NotificationEvent.OFFER_REJECTED,
                    title="Offer Not Selected",
                    message=f"Another offer was chosen for '{title}'.",
                    task_id=task_id,
                )
                for user_id in dict.fromkeys(rejected)
            ]

        if action == TaskAction.START_WORK:
            return [
                Notification(
                    user_id=after.poster_id,
                    event=NotificationEvent.WORK_STARTED,
                    title="Work Started",
                    message=f"Work has started on '{title}'.",
                    task_id=task_id,
                )
            ]

        if action == TaskAction.SUBMIT_COMPLETION:
            return [
                Notification(
                    user_id=after.poster_id,
                    event=NotificationEvent.TASK_COMPLETED,
                    title="Task Completed",
                    message=(
                        f"'{title}' was submitted for review. Payment is released "
                        f"automatically at {after.auto_approve_at.isoformat()}."
                    ),
                    level=NotificationLevel.SUCCESS,
                    task_id=task_id,
                )
            ]

        if action == TaskAction.RELEASE_PAYMENT:
            entry = transition.entries[0]
            return [
                Notification(
                    user_id=after.executor_id,
                    event=NotificationEvent.PAYMENT_RELEASED,
                    title="Payment Received",
                    message=f"{entry.amount} added to wallet ({entry.fee} platform fee deducted).",
                    level=NotificationLevel.SUCCESS,
                    task_id=task_id,
                )
            ]

        if action == TaskAction.CANCEL:
            recipients = [after.poster_id] + ([after.executor_id] if after.executor_id else [])
            return [
                Notification(
                    user_id=user_id,
                    event=NotificationEvent.TASK_REFUNDED,
                    title="Task Cancelled",
                    message=f"'{title}' was cancelled and {after.budget} refunded to the poster.",
                    level=NotificationLevel.WARNING,
                    task_id=task_id,
                )
                for user_id in recipients
            ]

        if action == TaskAction.RAISE_DISPUTE:
            return [
                Notification(
                    user_id=user_id,
                    event=NotificationEvent.DISPUTE_RAISED,
                    title="Dispute Raised",
                    message=f"A dispute was raised on '{title}'. Funds are frozen pending review.",
                    level=NotificationLevel.WARNING,
                    task_id=task_id,
                )
                for user_id in (after.poster_id, after.executor_id)
                if user_id
            ]

        if action == TaskAction.RESOLVE_DISPUTE:
            outcome = (
                "refunded to the poster"
                if decision == DisputeDecision.REFUND_POSTER
                else "paid to the executor"
            )
            return [
                Notification(
                    user_id=user_id,
                    event=NotificationEvent.DISPUTE_RESOLVED,
                    title="Dispute Resolved",
                    message=f"The dispute on '{title}' was resolved: funds {outcome}.",
                    task_id=task_id,
                )
                for user_id in (after.poster_id, after.executor_id)
                if user_id
            ]

        return []

    @staticmethod
    def offer_received(task: Task, offer: Offer) -> Notification:
        return Notification(
            user_id=task.poster_id,
            event=NotificationEvent.OFFER_RECEIVED,
            title="New Offer",
            message=f"New offer of {offer.price} on '{task.title or task.task_id}'.",
            task_id=task.task_id,
        )

    @staticmethod
    def offer_rejected(task: Task, offer: Offer) -> Notification:
        return Notification(
            user_id=offer.user_id,
            event=NotificationEvent.OFFER_REJECTED,
            title="Offer Declined",
            message=f"Your offer on '{task.title or task.task_id}' was declined.",
            task_id=task.task_id,
        )

    @staticmethod
    def wallet_entry(tx: Transaction) -> Notification:
        if tx.fee:
            detail = f"{tx.amount} ({tx.fee} instant fee)"
        else:
            detail = str(tx.amount)
        deposited = tx.type == TransactionType.DEPOSIT
        event = NotificationEvent.FUNDS_WITHDRAWN
        if deposited:
            event = NotificationEvent.FUNDS_DEPOSITED
        return Notification(
            user_id=tx.user_id,
            event=event,
            title="Funds Added" if deposited else "Withdrawal Processed",
            message=f"{detail} {'added to' if deposited else 'withdrawn from'} your wallet.",
            level=NotificationLevel.SUCCESS,
        )
