"""
Notification Dispatchers

Fire-and-forget delivery of lifecycle notifications to posters and
executors. A dispatcher failure is logged and never surfaces to the
ledger operation that produced the notification.

Dispatchers:
- LoggingNotificationDispatcher: structured log line per notification
- WebhookNotificationDispatcher: signed HTTP POST to an external notifier
"""

import asyncio
import hashlib
import hmac
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from ...core.entities import Notification
from ...core.interfaces import INotificationDispatcher

logger = structlog.get_logger()


class LoggingNotificationDispatcher(INotificationDispatcher):
    """Writes each notification to the structured log"""

    async def dispatch(self, notification: Notification) -> None:
        logger.info(
            "notification",
            user_id=notification.user_id,
            notification_event=notification.event.value,
            title=notification.title,
            task_id=notification.task_id,
        )


class WebhookConfig(BaseModel):
    """Webhook configuration"""

    url: str
    secret: str | None = None
    timeout: float = 10.0
    retry_count: int = 3
    retry_delay: float = 1.0
    enabled: bool = True


class WebhookPayload(BaseModel):
    """Webhook payload structure"""

    event: str
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    user_id: str
    task_id: str | None = None
    data: dict[str, Any]


class WebhookNotificationDispatcher(INotificationDispatcher):
    """
    Posts notifications to a webhook endpoint.

    Features:
    - HMAC-SHA256 signature header when a secret is configured
    - Automatic retries with exponential backoff
    - Delivery runs in the background; ``close()`` drains pending deliveries
    """

    def __init__(self, config: WebhookConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._http_client = http_client
        self._owns_client = http_client is None
        self._pending: set[asyncio.Task] = set()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._http_client

    @staticmethod
    def _sign_payload(payload: str, secret: str) -> str:
        """Create HMAC-SHA256 signature for payload"""
        return hmac.new(
            secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    async def dispatch(self, notification: Notification) -> None:
        if not self.config.enabled:
            return
        task = asyncio.create_task(self.deliver(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def deliver(self, notification: Notification) -> bool:
        """Deliver one notification with retries; returns True once delivered"""
        payload = WebhookPayload(
            event=notification.event.value,
            user_id=notification.user_id,
            task_id=notification.task_id,
            data=notification.to_dict(),
        )
        payload_json = payload.model_dump_json()

        headers = {
            "Content-Type": "application/json",
            "X-Escrow-Event": payload.event,
            "X-Escrow-Timestamp": payload.timestamp,
        }
        if self.config.secret:
            signature = self._sign_payload(payload_json, self.config.secret)
            headers["X-Escrow-Signature"] = f"sha256={signature}"

        for attempt in range(self.config.retry_count):
            try:
                response = await self._client().post(
                    self.config.url,
                    content=payload_json,
                    headers=headers,
                    timeout=self.config.timeout,
                )
                if response.is_success:
                    logger.info(
                        "webhook_delivered",
                        notification_event=payload.event,
                        user_id=payload.user_id,
                        attempts=attempt + 1,
                    )
                    return True
                logger.warning(
                    "webhook_rejected",
                    attempt=attempt + 1,
                    status_code=response.status_code,
                    body=response.text[:200],
                )
            except httpx.TimeoutException:
                logger.warning("webhook_timeout", attempt=attempt + 1, url=self.config.url)
            except httpx.RequestError as e:
                logger.warning("webhook_error", attempt=attempt + 1, error=str(e))

            # Wait before retry (exponential backoff)
            if attempt < self.config.retry_count - 1:
                await asyncio.sleep(self.config.retry_delay * (2**attempt))

        logger.error(
            "webhook_failed",
            notification_event=payload.event,
            user_id=payload.user_id,
            attempts=self.config.retry_count,
        )
        return False

    async def close(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
