"""
wa_relay/transport/session.py

TransportSession: the single live-connection state of a relay server
process.

Connection events are reduced by one function (apply). Everyone else
reads derived state (connected / has_qr / state); nobody subscribes to
raw transport events.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from wa_relay.transport.gateway import ConnectionEvent


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    qr: Optional[str]
    last_reason: Optional[str]
    changed_at: datetime

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    @property
    def has_qr(self) -> bool:
        return self.qr is not None


def reduce(snapshot: SessionSnapshot, event: ConnectionEvent, detail: Optional[str] = None) -> SessionSnapshot:
    now = datetime.now(timezone.utc)

    if event is ConnectionEvent.QR:
        # A fresh QR means we are mid-pairing: not connected yet.
        return SessionSnapshot(SessionState.CONNECTING, detail, snapshot.last_reason, now)

    if event is ConnectionEvent.CONNECTING:
        return SessionSnapshot(SessionState.CONNECTING, snapshot.qr, snapshot.last_reason, now)

    if event is ConnectionEvent.CONNECTED:
        return SessionSnapshot(SessionState.CONNECTED, None, None, now)

    if event is ConnectionEvent.DISCONNECTED:
        return SessionSnapshot(SessionState.DISCONNECTED, snapshot.qr, detail, now)

    if event is ConnectionEvent.LOGGED_OUT:
        return SessionSnapshot(SessionState.LOGGED_OUT, None, detail, now)

    raise ValueError(f"Unknown connection event: {event!r}")


class TransportSession:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot = SessionSnapshot(
            state=SessionState.DISCONNECTED,
            qr=None,
            last_reason=None,
            changed_at=datetime.now(timezone.utc),
        )

    def apply(self, event: ConnectionEvent, detail: Optional[str] = None) -> SessionSnapshot:
        with self._lock:
            self._snapshot = reduce(self._snapshot, ConnectionEvent(event), detail)
            return self._snapshot

    @property
    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def connected(self) -> bool:
        return self.snapshot.connected

    @property
    def has_qr(self) -> bool:
        return self.snapshot.has_qr

    @property
    def state(self) -> SessionState:
        return self.snapshot.state
