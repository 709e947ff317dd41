"""Service wiring

Builds the store, lock manager, dispatcher and services from Settings.
Everything is created per container; nothing lives at module level.
"""

from dataclasses import dataclass
from datetime import timedelta

import structlog
from redis.asyncio import Redis

from .config import Settings
from .core.engine import EscrowEngine, PayoutCalculator
from .core.interfaces import IEscrowStore, ILockManager, INotificationDispatcher
from .infrastructure.locking import InMemoryLockManager, RedisLockManager
from .infrastructure.notifications import (
    LoggingNotificationDispatcher,
    WebhookConfig,
    WebhookNotificationDispatcher,
)
from .infrastructure.persistence.memory import InMemoryEscrowStore
from .infrastructure.persistence.postgres import SqlEscrowStore, get_engine, get_session_factory
from .infrastructure.proof_store import TaskProofStore
from .services import OfferService, RetryPolicy, TaskLifecycleService, WalletService

logger = structlog.get_logger()


@dataclass
class Container:
    store: IEscrowStore
    locks: ILockManager
    dispatcher: INotificationDispatcher
    lifecycle: TaskLifecycleService
    offers: OfferService
    wallet: WalletService

    async def aclose(self) -> None:
        await self.dispatcher.close()
        await self.locks.close()
        await self.store.close()


def build_store(settings: Settings) -> IEscrowStore:
    if settings.storage_backend == "postgres":
        if not settings.database_url:
            raise ValueError("database_url is required for the postgres storage backend")
        engine = get_engine(settings.database_url)
        return SqlEscrowStore(get_session_factory(engine), engine=engine)
    return InMemoryEscrowStore()


def build_locks(settings: Settings) -> ILockManager:
    if settings.redis_url:
        return RedisLockManager(
            Redis.from_url(settings.redis_url),
            timeout=settings.lock_timeout,
            ttl=settings.lock_ttl,
        )
    return InMemoryLockManager(timeout=settings.lock_timeout)


def build_dispatcher(settings: Settings) -> INotificationDispatcher:
    if settings.webhook_url:
        return WebhookNotificationDispatcher(
            WebhookConfig(
                url=settings.webhook_url,
                secret=settings.webhook_secret,
                timeout=settings.webhook_timeout,
                retry_count=settings.webhook_retry_count,
                retry_delay=settings.webhook_retry_delay,
            )
        )
    return LoggingNotificationDispatcher()


def build_container(
    settings: Settings,
    store: IEscrowStore | None = None,
    locks: ILockManager | None = None,
    dispatcher: INotificationDispatcher | None = None,
) -> Container:
    """Wire services; explicit collaborators override the settings-driven ones"""
    store = store or build_store(settings)
    locks = locks or build_locks(settings)
    dispatcher = dispatcher or build_dispatcher(settings)
    retry_policy = RetryPolicy(
        storage_retries=settings.storage_retry_count,
        storage_retry_delay=settings.storage_retry_delay,
    )
    engine = EscrowEngine(
        payout_calculator=PayoutCalculator(settings.commission_rate),
        auto_approve_after=timedelta(hours=settings.auto_approve_hours),
    )

    logger.info(
        "container_built",
        storage_backend=settings.storage_backend,
        locks=type(locks).__name__,
        dispatcher=type(dispatcher).__name__,
    )
    return Container(
        store=store,
        locks=locks,
        dispatcher=dispatcher,
        lifecycle=TaskLifecycleService(
            store,
            locks,
            engine=engine,
            proof_store=TaskProofStore(store),
            dispatcher=dispatcher,
            retry_policy=retry_policy,
        ),
        offers=OfferService(store, locks, dispatcher=dispatcher, retry_policy=retry_policy),
        wallet=WalletService(
            store,
            locks,
            dispatcher=dispatcher,
            retry_policy=retry_policy,
            instant_fee_rate=settings.instant_withdrawal_fee_rate,
        ),
    )
