"""
File: wa_relay/services/bridge.py

Project: WhatsApp Notification Relay

Purpose:
Queue -> relay bridge. Drains every scope's pending jobs through the relay
server, one at a time, behind the readiness gate.

Per tick:
- probe relay readiness; on a not-ready -> ready edge, reconcile failed jobs
- for each scope, fetch up to batch_size pending jobs (oldest first)
- for each job: probe, validate, claim (processing, attempts+1), send,
  then completed / pending (retry) / failed (ceiling reached)

Retry policy:
- a job whose send failed is retried on a later tick until
  attempts >= max_attempts, then it is terminally failed
- retry_delay is the minimum wait between attempts of the same job
- relay not ready / unreachable -> job skipped, attempts NOT counted
- missing recipient or text     -> failed immediately, never sent
- relay rejected the request (400) -> failed at once, never retried

IMPORTANT:
- Jobs are processed sequentially; the transport is a single,
  rate-sensitive resource
- The bridge never calls the transport directly, only the relay server
- Store errors are logged and the tick carries on with the next job/scope
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from wa_relay.config import Settings
from wa_relay.errors import StoreError
from wa_relay.services.queue_store import Job, QueueStore
from wa_relay.services.relay_client import RelayClient

logger = logging.getLogger("bridge")

MISSING_FIELDS_ERROR = "Missing required fields"
REJECTED_PREFIX = "Rejected by relay: "


# ------------------------------------------------------------------
# Retry policy
# ------------------------------------------------------------------
@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    retry_delay_ms: int = 5000
    reset_ceiling: int = 5

    @property
    def retry_delay(self) -> timedelta:
        """
        Minimum wait, measured from updated_at, before a job with attempts > 0
        is sent again. Two consequences:
        - jobs put back to pending by reconciliation have a fresh updated_at,
          so they are deferred to a later tick rather than drained in the
          tick that reset them
        - with POLL_INTERVAL_SECONDS below RETRY_DELAY_MS a failed job skips
          one or more ticks before its next attempt
        """
        return timedelta(milliseconds=max(self.retry_delay_ms, 0))

    def ceiling_for(self, job: Job) -> int:
        return job.max_attempts if job.max_attempts and job.max_attempts > 0 else self.max_attempts


class JobOutcome(str, Enum):
    SKIPPED = "skipped"
    DEFERRED = "deferred"
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    INVALID = "invalid"
    REJECTED = "rejected"
    STORE_ERROR = "store_error"


@dataclass
class TickReport:
    ready: bool = False
    reconciled: int = 0
    scopes: int = 0
    outcomes: dict = field(default_factory=dict)

    def count(self, outcome: JobOutcome) -> None:
        self.outcomes[outcome.value] = self.outcomes.get(outcome.value, 0) + 1


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Bridge:
    def __init__(
        self,
        store: QueueStore,
        relay: RelayClient,
        *,
        policy: Optional[RetryPolicy] = None,
        batch_size: int = 10,
        poll_interval: float = 10.0,
        inter_job_delay: float = 1.0,
        clock: Optional[Callable[[], datetime]] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self._store = store
        self._relay = relay
        self._policy = policy or RetryPolicy()
        self._batch_size = batch_size
        self._poll_interval = poll_interval
        self._inter_job_delay = inter_job_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._stop = stop_event or threading.Event()

        # edge detector for reconciliation
        self._last_ready = False
        self._tick_in_progress = False

    @classmethod
    def from_settings(cls, settings: Settings, store: QueueStore, relay: RelayClient) -> "Bridge":
        return cls(
            store,
            relay,
            policy=RetryPolicy(
                max_attempts=settings.max_retries,
                retry_delay_ms=settings.retry_delay_ms,
                reset_ceiling=settings.reset_ceiling,
            ),
            batch_size=settings.batch_size,
            poll_interval=settings.poll_interval_seconds,
            inter_job_delay=settings.inter_job_delay_seconds,
        )

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    # ------------------------------------------------------------------
    # Public job entry
    # ------------------------------------------------------------------
    def run_tick(self) -> TickReport:
        """
        One polling cycle. Never raises for store or relay problems.
        """
        report = TickReport()
        if self._tick_in_progress:
            logger.warning("Previous tick still running, skipping")
            return report

        self._tick_in_progress = True
        try:
            ready = self._relay.is_ready()
            report.ready = ready

            if ready and not self._last_ready:
                logger.info("Relay is now ready, reconciling failed jobs")
                report.reconciled = self.reconcile()
            self._last_ready = ready

            if not ready:
                logger.info("Relay not ready, leaving queue untouched this tick")
                return report

            scopes = self._list_scopes()
            report.scopes = len(scopes)
            for scope in scopes:
                if self._stop.is_set():
                    break
                self._drain_scope(scope, report)

            if report.outcomes:
                logger.info("Tick done: %s", report.outcomes)
            return report
        finally:
            self._tick_in_progress = False

    def reconcile(self) -> int:
        """
        Put failed jobs with attempts below the reset ceiling back to
        pending. attempts is preserved. Jobs missing their required fields
        and jobs the relay rejected stay failed.
        """
        total = 0
        for scope in self._list_scopes():
            try:
                failed = self._store.list_failed(scope, self._policy.reset_ceiling)
            except StoreError as e:
                logger.error("Could not list failed jobs for %s: %s", scope, e)
                continue

            for job in failed:
                if not job.recipient or not job.text:
                    continue
                if (job.error_message or "").startswith(REJECTED_PREFIX):
                    continue
                try:
                    self._store.update_status(scope, job.id, "pending", job.attempts)
                    total += 1
                except StoreError as e:
                    logger.error("Could not reset job %s/%s: %s", scope, job.id, e)

        if total:
            logger.info("Reset %d failed job(s) to pending", total)
        return total

    def process_job(self, job: Job) -> JobOutcome:
        scope = job.scope

        # ---- Gate: relay must be ready (unreachable == not ready) ----
        if not self._relay.is_ready():
            logger.info("Relay not ready, skipping job %s/%s (will retry next cycle)", scope, job.id)
            return JobOutcome.SKIPPED

        # ---- Validation: never sent, never retried ----
        if not job.recipient or not job.text:
            logger.warning(
                "Job %s/%s missing required fields (recipient=%s, text=%s)",
                scope, job.id, bool(job.recipient), bool(job.text),
            )
            try:
                self._store.update_status(scope, job.id, "failed", job.attempts, MISSING_FIELDS_ERROR)
            except StoreError as e:
                logger.error("Could not mark job %s/%s failed: %s", scope, job.id, e)
                return JobOutcome.STORE_ERROR
            return JobOutcome.INVALID

        # ---- Backoff between attempts of the same job ----
        if job.attempts > 0 and self._policy.retry_delay:
            last = _as_utc(job.updated_at)
            if last is not None and self._clock() - last < self._policy.retry_delay:
                logger.debug("Job %s/%s still in retry delay", scope, job.id)
                return JobOutcome.DEFERRED

        attempts = job.attempts + 1
        ceiling = self._policy.ceiling_for(job)

        # ---- Claim ----
        try:
            self._store.update_status(scope, job.id, "processing", attempts)
        except StoreError as e:
            logger.error("Could not claim job %s/%s: %s", scope, job.id, e)
            return JobOutcome.STORE_ERROR

        logger.info("Processing job %s/%s for %s (attempt %d/%d)", scope, job.id, job.recipient, attempts, ceiling)

        # ---- Send ----
        result = self._relay.send_message(job.recipient, job.text)

        try:
            if result.ok:
                self._store.update_status(scope, job.id, "completed", attempts)
                logger.info("Job %s/%s sent", scope, job.id)
                return JobOutcome.COMPLETED

            if not result.retryable:
                error = f"{REJECTED_PREFIX}{result.error}"
                self._store.update_status(scope, job.id, "failed", attempts, error)
                logger.warning("Job %s/%s rejected by relay, not retrying: %s", scope, job.id, result.error)
                return JobOutcome.REJECTED

            if attempts >= ceiling:
                self._store.update_status(scope, job.id, "failed", attempts, result.error)
                logger.warning("Job %s/%s failed permanently after %d attempts: %s", scope, job.id, attempts, result.error)
                return JobOutcome.FAILED

            self._store.update_status(scope, job.id, "pending", attempts, result.error)
            logger.info("Job %s/%s will be retried (%d/%d): %s", scope, job.id, attempts, ceiling, result.error)
            return JobOutcome.RETRY
        except StoreError as e:
            logger.error(
                "Could not record result for job %s/%s, left in processing "
                "(recover with reset-failed --include-processing): %s",
                scope, job.id, e,
            )
            return JobOutcome.STORE_ERROR

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def startup_check(self, attempts: int = 3, delay: float = 3.0) -> bool:
        for attempt in range(1, attempts + 1):
            logger.info("Connection attempt %d/%d to %s", attempt, attempts, self._relay.base_url)
            if self._relay.is_ready():
                logger.info("Relay is ready and connected")
                return True
            if attempt < attempts and self._stop.wait(delay):
                return False

        logger.warning("Relay not ready after %d attempts; continuing, jobs will wait in the queue", attempts)
        return False

    def run_forever(self) -> None:
        logger.info("Bridge polling every %.1fs (batch=%d)", self._poll_interval, self._batch_size)
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self.run_tick()
            except Exception:
                # keep polling
                logger.exception("Error in main processing loop")
            elapsed = time.monotonic() - started
            self._stop.wait(max(0.0, self._poll_interval - elapsed))
        logger.info("Bridge stopped")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _list_scopes(self) -> list:
        try:
            return self._store.list_scopes()
        except StoreError as e:
            logger.error("Could not list scopes: %s", e)
            return []

    def _drain_scope(self, scope: str, report: TickReport) -> None:
        try:
            jobs = self._store.list_pending(scope, self._batch_size)
        except StoreError as e:
            logger.error("Could not fetch pending jobs for %s: %s", scope, e)
            report.count(JobOutcome.STORE_ERROR)
            return

        if not jobs:
            return

        logger.info("Found %d pending job(s) for %s", len(jobs), scope)
        for index, job in enumerate(jobs):
            if self._stop.is_set():
                return
            outcome = self.process_job(job)
            report.count(outcome)

            sent = outcome in (JobOutcome.COMPLETED, JobOutcome.RETRY, JobOutcome.FAILED, JobOutcome.REJECTED)
            if sent and index < len(jobs) - 1 and self._inter_job_delay > 0:
                self._stop.wait(self._inter_job_delay)
