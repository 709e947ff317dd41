"""Tests for settings, service wiring and logging setup"""

from decimal import Decimal

import pytest
import structlog
from pydantic import ValidationError

from escrow_ledger.config import Settings, get_settings
from escrow_ledger.container import build_container, build_dispatcher, build_locks, build_store
from escrow_ledger.infrastructure.locking import InMemoryLockManager, RedisLockManager
from escrow_ledger.infrastructure.notifications import (
    LoggingNotificationDispatcher,
    WebhookNotificationDispatcher,
)
from escrow_ledger.infrastructure.persistence.memory import InMemoryEscrowStore
from escrow_ledger.infrastructure.persistence.postgres import SqlEscrowStore
from escrow_ledger.log_config import configure_logging


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.storage_backend == "memory"
        assert settings.commission_rate == Decimal("0.05")
        assert settings.instant_withdrawal_fee_rate == Decimal("0.02")
        assert settings.auto_approve_hours == 72

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("COMMISSION_RATE", "0.08")
        monkeypatch.setenv("STORAGE_BACKEND", "postgres")
        settings = Settings(_env_file=None)
        assert settings.commission_rate == Decimal("0.08")
        assert settings.storage_backend == "postgres"

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, storage_backend="cassandra")

    def test_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()


class TestContainer:
    def test_memory_defaults(self):
        settings = Settings(_env_file=None, redis_url=None, webhook_url=None)
        assert isinstance(build_store(settings), InMemoryEscrowStore)
        assert isinstance(build_locks(settings), InMemoryLockManager)
        assert isinstance(build_dispatcher(settings), LoggingNotificationDispatcher)

    def test_postgres_requires_url(self):
        with pytest.raises(ValueError):
            build_store(Settings(_env_file=None, storage_backend="postgres", database_url=None))

    async def test_sql_store_from_url(self):
        store = build_store(
            Settings(
                _env_file=None,
                storage_backend="postgres",
                database_url="sqlite+aiosqlite:///:memory:",
            )
        )
        assert isinstance(store, SqlEscrowStore)
        await store.close()

    def test_redis_and_webhook(self):
        settings = Settings(
            _env_file=None,
            redis_url="redis://localhost:6379/0",
            webhook_url="https://hooks.example.com/escrow",
            webhook_secret="s3cret",
        )
        assert isinstance(build_locks(settings), RedisLockManager)
        dispatcher = build_dispatcher(settings)
        assert isinstance(dispatcher, WebhookNotificationDispatcher)
        assert dispatcher.config.secret == "s3cret"

    async def test_settings_reach_services(self):
        settings = Settings(
            _env_file=None,
            redis_url=None,
            webhook_url=None,
            commission_rate=Decimal("0.10"),
            auto_approve_hours=24,
        )
        container = build_container(settings)

        engine = container.lifecycle.engine
        assert engine.payout_calculator.commission_rate == Decimal("0.10")
        assert engine.auto_approve_after.total_seconds() == 24 * 3600
        assert container.wallet.instant_fee_rate == Decimal("0.02")
        await container.aclose()


class TestLogging:
    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.reset_defaults()

    @pytest.mark.parametrize("json_logs", [True, False])
    def test_configure(self, json_logs, capsys):
        configure_logging("debug", json_logs=json_logs)
        structlog.get_logger().info("hello", task_id="task-001")
        assert "task-001" in capsys.readouterr().out

    def test_level_filters(self, capsys):
        configure_logging("WARNING")
        structlog.get_logger().info("quiet")
        assert capsys.readouterr().out == ""

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging("chatty")
