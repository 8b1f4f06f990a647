"""
File: wa_relay/models.py

Project: WhatsApp Notification Relay

Purpose:
SQLAlchemy ORM models for the outbound notification queue and the
mirrored WhatsApp session files.

Design principles:
- No business logic in models
- All status transitions are decided by the bridge, not model side-effects
- Portable column types (runs on Postgres in production, SQLite in tests)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    DateTime,
    CheckConstraint,
    UniqueConstraint,
    Index,
    func,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

JOB_STATUSES = ("pending", "processing", "completed", "failed")


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Queue job (one outbound notification)
# ---------------------------------------------------------------------
class QueueJob(Base):
    __tablename__ = "whatsapp_queue"

    id = Column(String(64), primary_key=True, default=_new_id)
    scope = Column(String(128), nullable=False)

    recipient = Column(Text, nullable=True)
    text = Column(Text, nullable=True)
    message_type = Column(String(32), nullable=True)

    status = Column(String(16), nullable=False, server_default="pending", default="pending")
    attempts = Column(Integer, nullable=False, server_default="0", default=0)
    max_attempts = Column(Integer, nullable=False, server_default="3", default=3)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_whatsapp_queue_status",
        ),
        CheckConstraint("attempts >= 0", name="ck_whatsapp_queue_attempts"),
    )

    def __repr__(self) -> str:
        return f"<QueueJob {self.scope}/{self.id} {self.status} attempts={self.attempts}/{self.max_attempts}>"


# Pending scan per scope, oldest first
Index(
    "ix_whatsapp_queue_scope_status_created",
    QueueJob.scope,
    QueueJob.status,
    QueueJob.created_at,
)


# ---------------------------------------------------------------------
# Session file mirror
# ---------------------------------------------------------------------
class SessionFile(Base):
    __tablename__ = "session_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_key = Column(String(255), nullable=False)
    file_name = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    size = Column(Integer, nullable=False, default=0)
    uploaded_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "session_key",
            "file_name",
            name="uq_session_files_key_name",
        ),
    )
