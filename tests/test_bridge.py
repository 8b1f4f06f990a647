from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from wa_relay.errors import StoreError
from wa_relay.main import create_app
from wa_relay.services.bridge import MISSING_FIELDS_ERROR, REJECTED_PREFIX, Bridge, JobOutcome, RetryPolicy
from wa_relay.services.relay_client import RelayClient
from wa_relay.services.relay_service import RelayServer
from wa_relay.transport.dry_run import DryRunTransport


def _bridge(store, relay, **kw):
    policy = kw.pop("policy", RetryPolicy(max_attempts=3, retry_delay_ms=0, reset_ceiling=5))
    return Bridge(store, relay, policy=policy, batch_size=kw.pop("batch_size", 10), inter_job_delay=0, **kw)


# -------------------------------------------------------------------
# Happy path
# -------------------------------------------------------------------
def test_successful_send_completes_job(store, relay_client):
    job = store.enqueue("admin-1", "0771234567", "Hi")

    report = _bridge(store, relay_client).run_tick()

    done = store.get("admin-1", job.id)
    assert done.status == "completed"
    assert done.attempts == 1
    assert done.completed_at is not None
    assert relay_client.sent == [("0771234567", "Hi")]
    assert report.outcomes == {"completed": 1}


def test_jobs_sent_oldest_first_across_scopes(store, relay_client):
    t0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
    store.enqueue("b", "2", "b-first", created_at=t0)
    store.enqueue("a", "1", "a-second", created_at=t0 + timedelta(seconds=2))
    store.enqueue("a", "1", "a-first", created_at=t0 + timedelta(seconds=1))

    _bridge(store, relay_client).run_tick()

    assert [m for _, m in relay_client.sent] == ["a-first", "a-second", "b-first"]


def test_batch_size_limits_jobs_per_scope(store, relay_client):
    for i in range(5):
        store.enqueue("s", "1", f"m{i}")

    _bridge(store, relay_client, batch_size=2).run_tick()

    assert len(relay_client.sent) == 2
    assert store.counts("s")["pending"] == 3


# -------------------------------------------------------------------
# Retry policy
# -------------------------------------------------------------------
def test_failure_goes_back_to_pending_with_error(store, relay_client):
    job = store.enqueue("s", "1", "x")
    relay_client.results = ["network down"]

    outcome = _bridge(store, relay_client).run_tick().outcomes

    row = store.get("s", job.id)
    assert outcome == {"retry": 1}
    assert row.status == "pending"
    assert row.attempts == 1
    assert row.error_message == "network down"


def test_three_failures_end_in_failed(store, relay_client):
    job = store.enqueue("s", "0771234567", "x", max_attempts=3)
    relay_client.results = ["err 1", "err 2", "err 3"]
    bridge = _bridge(store, relay_client)

    seen = []
    for _ in range(4):
        bridge.run_tick()
        seen.append(store.get("s", job.id).attempts)

    row = store.get("s", job.id)
    assert row.status == "failed"
    assert row.attempts == 3
    assert row.error_message == "err 3"
    assert seen == sorted(seen)
    assert len(relay_client.sent) == 3


def test_job_max_attempts_overrides_default(store, relay_client):
    job = store.enqueue("s", "1", "x", max_attempts=1)
    relay_client.results = ["nope"]

    _bridge(store, relay_client).run_tick()

    row = store.get("s", job.id)
    assert row.status == "failed"
    assert row.attempts == 1


def test_retry_delay_defers_recent_failures(store, relay_client):
    now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    clock = {"now": now}
    job = store.enqueue("s", "1", "x")
    relay_client.results = ["first failure"]

    bridge = _bridge(
        store,
        relay_client,
        policy=RetryPolicy(max_attempts=3, retry_delay_ms=5000, reset_ceiling=5),
        clock=lambda: clock["now"],
    )
    bridge.run_tick()
    row = store.get("s", job.id)
    assert row.attempts == 1

    # updated_at is real wall-clock time; pin the fake clock right after it
    updated = row.updated_at.replace(tzinfo=timezone.utc)
    clock["now"] = updated + timedelta(seconds=1)
    assert bridge.process_job(store.get("s", job.id)) is JobOutcome.DEFERRED
    assert store.get("s", job.id).attempts == 1

    clock["now"] = updated + timedelta(seconds=6)
    assert bridge.process_job(store.get("s", job.id)) is JobOutcome.COMPLETED


# -------------------------------------------------------------------
# Validation
# -------------------------------------------------------------------
@pytest.mark.parametrize("recipient,text", [(None, "hi"), ("0771234567", None), ("", ""), ("", "hi")])
def test_missing_fields_fail_immediately(store, relay_client, recipient, text):
    job = store.enqueue("s", recipient, text)
    bridge = _bridge(store, relay_client)

    bridge.run_tick()
    bridge.run_tick()

    row = store.get("s", job.id)
    assert row.status == "failed"
    assert row.attempts == 0
    assert row.error_message == MISSING_FIELDS_ERROR
    assert relay_client.sent == []


def test_missing_fields_not_reconciled(store, relay_client):
    job = store.enqueue("s", None, "hi")
    relay_client.ready = False
    bridge = _bridge(store, relay_client)
    bridge.run_tick()
    relay_client.ready = True
    bridge.run_tick()
    assert store.get("s", job.id).status == "failed"

    relay_client.ready = False
    bridge.run_tick()
    relay_client.ready = True
    report = bridge.run_tick()

    assert report.reconciled == 0
    assert store.get("s", job.id).status == "failed"


# -------------------------------------------------------------------
# Rejected by the relay
# -------------------------------------------------------------------
def test_rejected_recipient_fails_without_retry(store, relay_client):
    job = store.enqueue("s", "n/a", "Hi", max_attempts=3)
    relay_client.results = [("Invalid phone number: 'n/a'", 400)]
    bridge = _bridge(store, relay_client)

    report = bridge.run_tick()
    bridge.run_tick()

    row = store.get("s", job.id)
    assert report.outcomes == {"rejected": 1}
    assert row.status == "failed"
    assert row.attempts == 1
    assert row.error_message == REJECTED_PREFIX + "Invalid phone number: 'n/a'"
    assert len(relay_client.sent) == 1


def test_rejected_job_not_reconciled(store, relay_client):
    job = store.enqueue("s", "n/a", "Hi")
    relay_client.results = [("Invalid phone number", 400)]
    bridge = _bridge(store, relay_client)
    bridge.run_tick()

    relay_client.ready = False
    bridge.run_tick()
    relay_client.ready = True
    report = bridge.run_tick()

    assert report.reconciled == 0
    assert store.get("s", job.id).status == "failed"
    assert len(relay_client.sent) == 1


def test_relay_unavailable_at_send_is_retried(store, relay_client):
    job = store.enqueue("s", "0771234567", "Hi")
    relay_client.results = [("WhatsApp is not connected", 503)]

    assert _bridge(store, relay_client).run_tick().outcomes == {"retry": 1}
    assert store.get("s", job.id).status == "pending"


def test_invalid_number_rejected_end_to_end(store):
    server = RelayServer(DryRunTransport(), country_code="94", local_length=9)
    server.connect()
    client = RelayClient("http://testserver", session=TestClient(create_app(server)))
    job = store.enqueue("s", "n/a", "Hi", max_attempts=3)

    try:
        report = _bridge(store, client).run_tick()
    finally:
        server.shutdown()

    row = store.get("s", job.id)
    assert report.outcomes == {"rejected": 1}
    assert row.status == "failed"
    assert row.attempts == 1
    assert "Invalid phone number" in row.error_message


# -------------------------------------------------------------------
# Readiness gate
# -------------------------------------------------------------------
def test_not_ready_tick_touches_nothing(store, relay_client):
    job = store.enqueue("s", "1", "x")
    bad = store.enqueue("s", None, None)
    relay_client.ready = False

    report = _bridge(store, relay_client).run_tick()

    assert report.ready is False
    assert store.get("s", job.id) == job
    assert store.get("s", bad.id) == bad
    assert relay_client.sent == []


def test_unreachable_relay_treated_as_not_ready(store, relay_client):
    job = store.enqueue("s", "1", "x")
    relay_client.ready = None

    _bridge(store, relay_client).run_tick()

    row = store.get("s", job.id)
    assert row.status == "pending"
    assert row.attempts == 0


def test_ready_on_third_tick(store, relay_client):
    job = store.enqueue("s", "0771234567", "Hi")
    bridge = _bridge(store, relay_client)

    relay_client.ready = False
    bridge.run_tick()
    assert store.get("s", job.id).attempts == 0
    bridge.run_tick()
    assert store.get("s", job.id).attempts == 0
    assert store.get("s", job.id).status == "pending"

    relay_client.ready = True
    bridge.run_tick()
    row = store.get("s", job.id)
    assert row.status == "completed"
    assert row.attempts == 1


def test_gate_closing_mid_tick_skips_rest(store, relay_client):
    first = store.enqueue("s", "1", "a", created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
    second = store.enqueue("s", "1", "b", created_at=datetime(2025, 1, 2, tzinfo=timezone.utc))
    bridge = _bridge(store, relay_client)

    original_send = relay_client.send_message

    def send_then_drop(number, message):
        result = original_send(number, message)
        relay_client.ready = False
        return result

    relay_client.send_message = send_then_drop
    report = bridge.run_tick()

    assert store.get("s", first.id).status == "completed"
    assert store.get("s", second.id).status == "pending"
    assert store.get("s", second.id).attempts == 0
    assert report.outcomes == {"completed": 1, "skipped": 1}


# -------------------------------------------------------------------
# Reconciliation
# -------------------------------------------------------------------
def _failed(store, scope, attempts):
    job = store.enqueue(scope, "1", "x")
    store.update_status(scope, job.id, "failed", attempts, "old error")
    return job


def test_reconcile_on_not_ready_to_ready_edge(store, relay_client):
    below = _failed(store, "s1", 3)
    other_scope = _failed(store, "s2", 4)
    at_ceiling = _failed(store, "s1", 5)
    relay_client.ready = False
    relay_client.results = ["still broken", "still broken"]
    bridge = _bridge(store, relay_client, policy=RetryPolicy(max_attempts=10, retry_delay_ms=0, reset_ceiling=5))

    assert bridge.run_tick().reconciled == 0
    assert store.get("s1", below.id).status == "failed"

    relay_client.ready = True
    report = bridge.run_tick()

    assert report.reconciled == 2
    assert store.get("s1", at_ceiling.id).status == "failed"
    # reset jobs were drained in the same tick and kept their attempt history
    assert store.get("s1", below.id).attempts == 4
    assert store.get("s2", other_scope.id).attempts == 5


def test_reconcile_fires_once_per_edge(store, relay_client):
    job = _failed(store, "s", 1)
    relay_client.ready = False
    bridge = _bridge(store, relay_client)
    bridge.run_tick()

    relay_client.ready = True
    assert bridge.run_tick().reconciled == 1
    assert store.get("s", job.id).status == "completed"

    again = _failed(store, "s", 1)
    assert bridge.run_tick().reconciled == 0
    assert store.get("s", again.id).status == "failed"

    relay_client.ready = False
    bridge.run_tick()
    relay_client.ready = True
    assert bridge.run_tick().reconciled == 1


def test_first_ready_tick_counts_as_edge(store, relay_client):
    _failed(store, "s", 2)
    assert _bridge(store, relay_client).run_tick().reconciled == 1


# -------------------------------------------------------------------
# Store errors
# -------------------------------------------------------------------
def test_store_error_in_one_scope_does_not_stop_tick(store, relay_client):
    ok = store.enqueue("good", "1", "x")
    store.enqueue("bad", "1", "y")

    original = store.list_pending

    def flaky(scope, limit):
        if scope == "bad":
            raise StoreError("connection reset")
        return original(scope, limit)

    store.list_pending = flaky
    report = _bridge(store, relay_client).run_tick()

    assert store.get("good", ok.id).status == "completed"
    assert report.outcomes == {"store_error": 1, "completed": 1}


def test_stop_prevents_further_jobs(store, relay_client):
    store.enqueue("s", "1", "a")
    store.enqueue("s", "1", "b")
    bridge = _bridge(store, relay_client)

    original_send = relay_client.send_message

    def send_and_stop(number, message):
        bridge.stop()
        return original_send(number, message)

    relay_client.send_message = send_and_stop
    bridge.run_tick()

    assert len(relay_client.sent) == 1
    assert store.counts("s") == {"pending": 1, "processing": 0, "completed": 1, "failed": 0}


def test_startup_check(relay_client):
    relay_client.ready = False
    bridge = Bridge(None, relay_client)
    assert bridge.startup_check(attempts=2, delay=0) is False
    assert relay_client.probes == 2

    relay_client.ready = True
    assert bridge.startup_check(attempts=3, delay=0) is True


def test_unrecorded_result_leaves_job_recoverable(store, relay_client):
    job = store.enqueue("s", "1", "x")
    original = store.update_status

    def flaky(scope, job_id, status, attempts, error=None):
        if status == "completed":
            raise StoreError("disk full")
        return original(scope, job_id, status, attempts, error)

    store.update_status = flaky
    report = _bridge(store, relay_client).run_tick()

    assert report.outcomes == {"store_error": 1}
    assert store.get("s", job.id).status == "processing"
    assert store.reset_failed(reset_attempts=False) == 0
    assert store.reset_failed(reset_attempts=False, include_processing=True) == 1
    row = store.get("s", job.id)
    assert row.status == "pending"
    assert row.attempts == 1


# -------------------------------------------------------------------
# Retry delay
# -------------------------------------------------------------------
def test_reconciled_jobs_wait_out_retry_delay(store, relay_client):
    job = _failed(store, "s", 1)
    clock = {"now": None}
    bridge = _bridge(
        store,
        relay_client,
        policy=RetryPolicy(max_attempts=3, retry_delay_ms=5000, reset_ceiling=5),
        clock=lambda: clock["now"] or datetime.now(timezone.utc),
    )

    report = bridge.run_tick()
    assert report.reconciled == 1
    assert report.outcomes == {"deferred": 1}
    assert store.get("s", job.id).status == "pending"

    clock["now"] = datetime.now(timezone.utc) + timedelta(seconds=10)
    assert bridge.run_tick().outcomes == {"completed": 1}
    assert relay_client.sent == [("1", "x")]
