"""
Database models for HealthChain Notify.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TemplateRecord(Base):
    """Message template, unique per (key, channel)."""

    __tablename__ = "notification_templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    key = Column(String, nullable=False, index=True)
    channel = Column(String(16), nullable=False)
    body = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint('key', 'channel', name='uq_templates_key_channel'),
    )


class NotificationRecord(Base):
    """Delivery record for one notification on one channel."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    recipient_id = Column(String, nullable=False, index=True)
    channel = Column(String(16), nullable=False)
    template_key = Column(String, nullable=False)
    variables = Column(JSON, nullable=False, default=dict)
    rendered_body = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        Index('idx_notifications_recipient_created', 'recipient_id', 'created_at'),
    )


class DispatchJobRecord(Base):
    """Durable dispatch queue entry."""

    __tablename__ = "dispatch_jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    notification_id = Column(String(36), nullable=False, index=True)
    channel = Column(String(16), nullable=False)
    payload = Column(JSON, nullable=False)
    policy = Column(JSON, nullable=False)
    attempt = Column(Integer, nullable=False, default=1)

    # queued -> active -> completed | queued (retry) | dead
    state = Column(String(16), nullable=False, default="queued")
    available_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    locked_until = Column(DateTime(timezone=True))
    version = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    finished_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_jobs_state_available', 'state', 'available_at'),
        Index('idx_jobs_state_locked', 'state', 'locked_until'),
    )
