from typing import List, Optional

import pytest

from wa_relay.db import init_db, make_engine, make_session_factory
from wa_relay.services.queue_store import SqlQueueStore
from wa_relay.services.relay_client import RelaySendResult


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return SqlQueueStore(session_factory, default_max_attempts=3)


class FakeRelayClient:
    """
    Stands in for the relay server over HTTP.

    - ready: what /health reports (None == unreachable)
    - results: queued send outcomes; True == success, str == error message,
      (error, status_code) == error with that HTTP status
    """

    base_url = "http://relay.test"

    def __init__(self, ready: Optional[bool] = True) -> None:
        self.ready = ready
        self.results: List = []
        self.sent: List[tuple] = []
        self.probes = 0

    def health(self):
        if self.ready is None:
            return None
        return {"status": "online", "whatsapp_ready": self.ready}

    def is_ready(self) -> bool:
        self.probes += 1
        return self.ready is True

    def send_message(self, number, message):
        self.sent.append((number, message))
        outcome = self.results.pop(0) if self.results else True
        if outcome is True:
            return RelaySendResult(ok=True, status_code=200, error=None, response_json={"success": True})
        error, status_code = outcome if isinstance(outcome, tuple) else (outcome, 500)
        return RelaySendResult(ok=False, status_code=status_code, error=error, response_json={"success": False})

    def close(self):
        pass


@pytest.fixture
def relay_client():
    return FakeRelayClient()
