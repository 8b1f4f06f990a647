"""
File: wa_relay/services/queue_store.py

Project: WhatsApp Notification Relay

Purpose:
Queue store boundary for the outbound notification queue.

This is the ONLY place allowed to:
- list scopes
- read pending / failed jobs
- write job status

Design rules:
- Dumb CRUD: no retry, backoff or readiness policy (that lives in the bridge)
- Idempotent writes: replaying the same status/attempts/error is a no-op
- DB is source of truth
- SQLAlchemy errors surface as StoreError
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from wa_relay.errors import StoreError
from wa_relay.models import JOB_STATUSES, QueueJob

logger = logging.getLogger("queue_store")


@dataclass(frozen=True)
class Job:
    """
    Detached, read-only view of one queued message.
    """
    id: str
    scope: str
    recipient: Optional[str]
    text: Optional[str]
    status: str
    attempts: int
    max_attempts: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    message_type: Optional[str] = None

    @staticmethod
    def from_row(row: QueueJob) -> "Job":
        return Job(
            id=row.id,
            scope=row.scope,
            recipient=row.recipient,
            text=row.text,
            status=row.status,
            attempts=row.attempts or 0,
            max_attempts=row.max_attempts,
            created_at=row.created_at,
            updated_at=row.updated_at,
            completed_at=row.completed_at,
            error_message=row.error_message,
            message_type=row.message_type,
        )


class QueueStore(Protocol):
    def list_scopes(self) -> List[str]:
        ...

    def list_pending(self, scope: str, limit: int) -> List[Job]:
        ...

    def list_failed(self, scope: str, below_attempts: int) -> List[Job]:
        ...

    def update_status(
        self,
        scope: str,
        job_id: str,
        status: str,
        attempts: int,
        error: Optional[str] = None,
    ) -> None:
        ...


class SqlQueueStore:
    def __init__(self, session_factory: sessionmaker, default_max_attempts: int = 3) -> None:
        self._session_factory = session_factory
        self._default_max_attempts = default_max_attempts

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(str(e)) from e
        finally:
            db.close()

    # -------------------------------------------------
    # Queries
    # -------------------------------------------------

    def list_scopes(self) -> List[str]:
        with self._session() as db:
            rows = db.query(QueueJob.scope).distinct().order_by(QueueJob.scope.asc()).all()
            return [r.scope for r in rows]

    def list_pending(self, scope: str, limit: int) -> List[Job]:
        with self._session() as db:
            rows = (
                db.query(QueueJob)
                .filter(QueueJob.scope == scope, QueueJob.status == "pending")
                .order_by(QueueJob.created_at.asc(), QueueJob.id.asc())
                .limit(limit)
                .all()
            )
            return [Job.from_row(r) for r in rows]

    def list_failed(self, scope: str, below_attempts: int) -> List[Job]:
        with self._session() as db:
            rows = (
                db.query(QueueJob)
                .filter(
                    QueueJob.scope == scope,
                    QueueJob.status == "failed",
                    QueueJob.attempts < below_attempts,
                )
                .order_by(QueueJob.created_at.asc(), QueueJob.id.asc())
                .all()
            )
            return [Job.from_row(r) for r in rows]

    def get(self, scope: str, job_id: str) -> Optional[Job]:
        with self._session() as db:
            row = (
                db.query(QueueJob)
                .filter(QueueJob.scope == scope, QueueJob.id == job_id)
                .one_or_none()
            )
            return Job.from_row(row) if row else None

    def counts(self, scope: Optional[str] = None) -> dict:
        with self._session() as db:
            q = db.query(QueueJob.status, func.count(QueueJob.id))
            if scope is not None:
                q = q.filter(QueueJob.scope == scope)
            out = {s: 0 for s in JOB_STATUSES}
            for status, n in q.group_by(QueueJob.status).all():
                out[status] = int(n)
            return out

    # -------------------------------------------------
    # Commands
    # -------------------------------------------------

    def update_status(
        self,
        scope: str,
        job_id: str,
        status: str,
        attempts: int,
        error: Optional[str] = None,
    ) -> None:
        """
        Write status + attempts (+ error). completed_at is stamped the
        first time a job reaches "completed" and never moved afterwards.
        """
        if status not in JOB_STATUSES:
            raise ValueError(f"Unknown job status: {status!r}")

        with self._session() as db:
            row = (
                db.query(QueueJob)
                .filter(QueueJob.scope == scope, QueueJob.id == job_id)
                .one_or_none()
            )
            if row is None:
                raise StoreError(f"Job {scope}/{job_id} not found")

            unchanged = (
                row.status == status
                and row.attempts == attempts
                and (error is None or row.error_message == error)
            )
            if unchanged:
                return

            now = datetime.now(timezone.utc)
            row.status = status
            row.attempts = attempts
            if error is not None:
                row.error_message = error
            if status == "completed" and row.completed_at is None:
                row.completed_at = now
            row.updated_at = now

    def enqueue(
        self,
        scope: str,
        recipient: Optional[str],
        text: Optional[str],
        *,
        max_attempts: Optional[int] = None,
        message_type: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Job:
        with self._session() as db:
            row = QueueJob(
                scope=scope,
                recipient=recipient,
                text=text,
                message_type=message_type,
                status="pending",
                attempts=0,
                max_attempts=max_attempts if max_attempts is not None else self._default_max_attempts,
            )
            if created_at is not None:
                row.created_at = created_at
                row.updated_at = created_at
            db.add(row)
            db.flush()
            db.refresh(row)
            return Job.from_row(row)

    def reset_failed(
        self,
        scope: Optional[str] = None,
        *,
        reset_attempts: bool = True,
        include_processing: bool = False,
    ) -> int:
        """
        Operator reset: every failed job back to pending (optionally
        zeroing attempts). Returns the number of jobs touched.

        include_processing also picks up jobs left in processing when the
        bridge could not record a send result. Only use it while the bridge
        is stopped; such a job may already have been delivered.
        """
        statuses = ("failed", "processing") if include_processing else ("failed",)
        with self._session() as db:
            q = db.query(QueueJob).filter(QueueJob.status.in_(statuses))
            if scope is not None:
                q = q.filter(QueueJob.scope == scope)

            now = datetime.now(timezone.utc)
            total = 0
            for row in q.all():
                row.status = "pending"
                if reset_attempts:
                    row.attempts = 0
                row.updated_at = now
                total += 1
                logger.info("Reset %s/%s to pending", row.scope, row.id)
            return total
