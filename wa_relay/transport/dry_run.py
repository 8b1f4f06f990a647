"""
WhatsApp Notification Relay
Dry-run transport

This transport never sends anything.
It reports itself connected as soon as connect() is called and returns
a receipt that indicates a simulated send.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from .gateway import ConnectionEvent, EventListener, SendResult, SendStatus

logger = logging.getLogger("transport.dry_run")


class DryRunTransport:
    address_suffix = "@s.whatsapp.net"

    def __init__(self) -> None:
        self._listener: Optional[EventListener] = None
        self._ready = False

    def set_listener(self, listener: EventListener) -> None:
        self._listener = listener

    def _emit(self, event: ConnectionEvent, detail: Optional[str] = None) -> None:
        if self._listener is not None:
            self._listener(event, detail)

    def connect(self) -> None:
        self._emit(ConnectionEvent.CONNECTING)
        self._ready = True
        self._emit(ConnectionEvent.CONNECTED)

    def send(self, jid: str, text: str) -> SendResult:
        # No side effects. Never calls external services.
        detail = f"DRY_RUN: outbound delivery simulated (not sent). to={jid} chars={len(text)}"
        logger.info(detail)
        return SendResult.now(
            status=SendStatus.DRY_RUN,
            detail=detail,
            provider_message_id=f"dry-run-{uuid.uuid4().hex[:12]}",
        )

    def is_ready(self) -> bool:
        return self._ready

    def close(self) -> None:
        if self._ready:
            self._ready = False
            self._emit(ConnectionEvent.DISCONNECTED, "closed")
