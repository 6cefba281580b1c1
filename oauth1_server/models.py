"""
SQLAlchemy models for the host application: option store (token records),
consumer registry, users and audit log.
"""
import json
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, LargeBinary, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from oauth1_server.config import CONSUMER_TYPE


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Option(Base):
    """Generic key-value record. Token records live under request:<key> and access:<key>."""
    __tablename__ = "options"

    # Primary key index also serves prefix lookups (LIKE 'access:%')
    name: Mapped[str] = mapped_column(String(191), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    autoload: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


class OAuthConsumer(Base):
    __tablename__ = "consumers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    secret: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Registered callback URL, "oob", or None
    callback: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default=CONSUMER_TYPE)
    # JSON object {timestamp: [nonce, ...]}
    nonces: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    # Bumped on every ledger write; writers update only the version they read
    nonce_version: Mapped[int] = mapped_column(nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def get_nonces(self) -> dict[str, list[str]]:
        return json.loads(self.nonces or "{}")


class AuditLog(Base):
    """Security-relevant events. No token secrets, verifiers or passwords stored."""
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    consumer_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    user_id: Mapped[int | None] = mapped_column(nullable=True)  # None = anonymous
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)  # success | fail
