"""
Identity service — SQLAlchemy ORM models for the auth domain.

Tables owned by this module:
  - users              Core user accounts, account flags and role
  - single_use_tokens  Email-verification and password-reset link tokens
  - social_accounts    Links between external provider accounts and users
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from shared.constants import Role
from shared.database.postgres import Base

from app.auth.constants import SingleUseTokenKind, SocialProvider

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
_JSON = JSONB().with_variant(sa.JSON(), "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every timestamp here is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enum(enum_cls: type, name: str) -> sa.Enum:
    return sa.Enum(
        enum_cls,
        name=name,
        values_callable=lambda e: [x.value for x in e],
    )


class User(Base):
    __tablename__ = "users"

    # ── Primary key ──────────────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Authentication identifiers ────────────────────────────────────────────
    username: Mapped[str] = mapped_column(
        sa.String(50), unique=True, nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(
        sa.String(255), unique=True, nullable=False, index=True
    )
    # Never serialized; UserResponse has no field for it
    password_hash: Mapped[str] = mapped_column(sa.String(255), nullable=False)

    # ── Profile fields ────────────────────────────────────────────────────────
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    role: Mapped[Role] = mapped_column(
        _enum(Role, "userrole"),
        nullable=False,
        default=Role.LEARNER,
        index=True,
    )

    # ── Account flags ─────────────────────────────────────────────────────────
    is_verified: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, default=False, server_default=sa.false()
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, default=True, server_default=sa.true()
    )
    is_locked: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, default=False, server_default=sa.false()
    )

    # Embedded as ``ver`` in every JWT. Bumping it revokes all outstanding
    # access and refresh tokens for the user (logout, password reset).
    token_version: Mapped[int] = mapped_column(
        sa.Integer(), nullable=False, default=0, server_default=sa.text("0")
    )

    last_login_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    # ── Audit timestamps ──────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    # ── Relationships ─────────────────────────────────────────────────────────
    single_use_tokens: Mapped[list[SingleUseToken]] = relationship(
        "SingleUseToken",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    social_accounts: Mapped[list[SocialAccount]] = relationship(
        "SocialAccount",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class SingleUseToken(Base):
    """
    Opaque, time-boxed token proving possession of an email inbox.

    Valid iff not is_used and now <= expires_at.  Consumption is a single
    conditional UPDATE (see app.auth.single_use) so concurrent attempts with
    the same value cannot both succeed.
    """

    __tablename__ = "single_use_tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    token: Mapped[str] = mapped_column(
        sa.String(128), unique=True, nullable=False, index=True
    )
    kind: Mapped[SingleUseTokenKind] = mapped_column(
        _enum(SingleUseTokenKind, "singleusetokenkind"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_single_use_tokens_user_id"),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    is_used: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, default=False, server_default=sa.false()
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    user: Mapped[User] = relationship("User", back_populates="single_use_tokens")

    def is_expired(self, now: datetime) -> bool:
        return now > _as_utc(self.expires_at)

    def is_valid(self, now: datetime) -> bool:
        return not self.is_used and not self.is_expired(now)


class SocialAccount(Base):
    """
    Link between an external provider account and a local user.

    (provider, provider_subject_id) is unique: at most one local user per
    external account.  The provider access token and profile are refreshed
    on every social sign-in.
    """

    __tablename__ = "social_accounts"
    __table_args__ = (
        sa.UniqueConstraint(
            "provider",
            "provider_subject_id",
            name="uq_social_accounts_provider_subject",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    provider: Mapped[SocialProvider] = mapped_column(
        _enum(SocialProvider, "socialprovider"),
        nullable=False,
    )
    provider_subject_id: Mapped[str] = mapped_column(
        sa.String(255), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_social_accounts_user_id"),
        nullable=False,
        index=True,
    )
    access_token: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    profile: Mapped[dict | None] = mapped_column(_JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    user: Mapped[User] = relationship("User", back_populates="social_accounts")
