"""
wa_relay/transport/gateway.py

Transport abstraction for outbound delivery.

Defines the TransportClient interface the relay server owns, the
strongly-typed SendResult it returns, and the finite set of connection
events a transport may report.

Guardrails:
- Only the relay server calls a transport. The bridge never does.
- Transports report connection changes through the listener they were
  given; they never keep their own "ready" flag for others to read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Protocol


class SendStatus(str, Enum):
    DRY_RUN = "dry_run"
    SENT = "sent"
    FAILED = "failed"


class ConnectionEvent(str, Enum):
    QR = "qr"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    LOGGED_OUT = "logged_out"


# listener(event, detail) - detail is a QR payload or a reason string
EventListener = Callable[[ConnectionEvent, Optional[str]], None]


@dataclass(frozen=True)
class SendResult:
    """
    Result of a delivery attempt (or simulated attempt).
    """
    status: SendStatus
    provider_message_id: Optional[str]
    detail: str
    created_at_utc: datetime

    @property
    def ok(self) -> bool:
        return self.status in (SendStatus.SENT, SendStatus.DRY_RUN)

    @staticmethod
    def now(status: SendStatus, detail: str, provider_message_id: Optional[str] = None) -> "SendResult":
        return SendResult(
            status=status,
            provider_message_id=provider_message_id,
            detail=detail,
            created_at_utc=datetime.now(timezone.utc),
        )


class TransportClient(Protocol):
    """
    A single outbound chat channel.
    """
    address_suffix: str

    def set_listener(self, listener: EventListener) -> None:
        ...

    def connect(self) -> None:
        """
        Start (or restart) the connection. Outcome is reported via the listener.
        """
        ...

    def send(self, jid: str, text: str) -> SendResult:
        """
        Deliver a text message. Raises TransportFailure when the attempt fails.
        """
        ...

    def is_ready(self) -> bool:
        ...

    def close(self) -> None:
        ...
