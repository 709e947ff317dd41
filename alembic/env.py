"""Alembic migration environment."""

import asyncio
import importlib.util
import os
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

# Alembic Config object
config = context.config

# Set up logging from ini file
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# ---------------------------------------------------------------------------
# Import ORM Base by file path so migrations do not pull in the whole
# escrow_ledger package (services, FastAPI, Redis).
# ---------------------------------------------------------------------------
_models_path = (
    Path(__file__).parent.parent
    / "escrow_ledger"
    / "infrastructure"
    / "persistence"
    / "postgres"
    / "models.py"
)
_spec = importlib.util.spec_from_file_location("escrow_ledger_sql_models", _models_path)
_module = importlib.util.module_from_spec(_spec)  # type: ignore[arg-type]
sys.modules["escrow_ledger_sql_models"] = _module
_spec.loader.exec_module(_module)  # type: ignore[union-attr]

target_metadata = _module.Base.metadata

# ---------------------------------------------------------------------------
# Override sqlalchemy.url from DATABASE_URL env var if present.
# Migrations run through asyncpg, the same driver the service uses.
# ---------------------------------------------------------------------------
database_url = os.environ.get("DATABASE_URL", "")
if database_url:
    async_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if async_url.startswith("postgresql://"):
        async_url = async_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    config.set_main_option("sqlalchemy.url", async_url)


def run_migrations_offline() -> None:
    """Emit SQL to stdout without a live DB connection (for dry-run / review)."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Run migrations against a live database connection."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
