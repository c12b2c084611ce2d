"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Constraints and indexes defined here.
Alembic migrations mirror these definitions.

Key concepts:
- UUID primary keys
- Portable Uuid/JSON column types (JSONB on PostgreSQL) so the test suite
  can run against SQLite
- Uniqueness of email and wallet address is enforced by the database,
  not only by the service's pre-checks. Two concurrent signups for the
  same email both pass the pre-check; the unique constraint decides.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


ROLES = ("client", "freelancer")


class User(Base):
    """One principal: a password account, a wallet account, or both.

    Learn: email and wallet_address are two disjoint login namespaces.
    Either may be NULL, but not both. Both are stored lower-cased so
    the unique constraints are case-insensitive in practice.

    `profile` holds the role-shaped profile document, tagged with
    "kind" ("client" or "freelancer") matching `role`.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("wallet_address", name="uq_users_wallet_address"),
        CheckConstraint(
            "email IS NOT NULL OR wallet_address IS NOT NULL",
            name="ck_users_has_login",
        ),
        CheckConstraint("role IN ('client', 'freelancer')", name="ck_users_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # NULL for wallet-only accounts
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    avatar: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    profile: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class Event(Base):
    """Immutable event log for identity lifecycle changes.

    Learn: Every change to an identity is recorded as an event.
    Events are append-only (never updated/deleted). The users table
    holds the current state; events answer "who changed what, when".

    stream_id examples: "identity:<uuid>"
    type examples: "identity.created", "identity.wallet_linked"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
        Index("idx_events_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    meta: Mapped[dict] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )  # actor_id, request_id
    # Note: Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    # DB column is still "metadata" via the first positional arg.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
