"""
SQLAlchemy ORM models for platform connections and in-flight authorizations.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    pass


class PlatformConnection(Base):
    __tablename__ = "platform_connections"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "organization_id",
            "provider",
            name="uq_platform_connections_identity",
        ),
        Index("ix_platform_connections_org", "organization_id"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    organization_id = Column(String(64), nullable=False)
    provider = Column(String(32), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    token_type = Column(String(32), default="Bearer")
    scopes = Column(JSON, default=list)
    token_expires_at = Column(UTCDateTime)
    refresh_expires_at = Column(UTCDateTime)
    provider_user_id = Column(String(256))
    display_name = Column(String(256))
    email = Column(String(320))
    profile_picture_url = Column(Text)
    username = Column(String(256))
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)


class AuthorizationAttempt(Base):
    __tablename__ = "authorization_attempts"

    nonce = Column(String(64), primary_key=True)
    organization_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=False)
    provider = Column(String(32), nullable=False)
    code_verifier = Column(Text)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
