"""SQLAlchemy ORM Models

Maps domain entities to relational tables.

Design decisions:
- Money columns are BIGINT whole currency units
- accounts.version and tasks.version back optimistic concurrency checks
- transactions.idempotency_key is UNIQUE; the database is the final
  arbiter of exactly-once effects
- JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


# =============================================================================
# Accounts
# =============================================================================


class AccountModel(Base):
    __tablename__ = "accounts"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    available_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    escrow_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_accounts_available_non_negative"),
        CheckConstraint("escrow_balance >= 0", name="ck_accounts_escrow_non_negative"),
    )


# =============================================================================
# Tasks
# =============================================================================


class TaskModel(Base):
    __tablename__ = "tasks"

    task_id: Mapped[str] = mapped_column(String, primary_key=True)
    poster_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    executor_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    budget: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    service_tier: Mapped[str] = mapped_column(String(32), nullable=False, default="STANDARD")
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    proofs: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    auto_approve_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("budget > 0", name="ck_tasks_budget_positive"),
        Index("ix_tasks_status_auto_approve", "status", "auto_approve_at"),
    )


# =============================================================================
# Offers
# =============================================================================


class OfferModel(Base):
    __tablename__ = "offers"

    offer_id: Mapped[str] = mapped_column(String, primary_key=True)
    task_id: Mapped[str] = mapped_column(
        String, ForeignKey("tasks.task_id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    match_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


# =============================================================================
# Transactions (append-only ledger)
# =============================================================================


class TransactionModel(Base):
    __tablename__ = "transactions"

    # Insertion order is the chronological order of the ledger
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    idempotency_key: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    target_user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    task_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="SUCCESS")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
