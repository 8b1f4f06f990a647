"""
File: wa_relay/services/relay_service.py

Project: WhatsApp Notification Relay

Purpose:
Authoritative owner of the transport connection. Responsible for:
- connecting the transport and reducing its connection events into the
  TransportSession
- the readiness-gated send path used by every HTTP send endpoint
- recipient normalisation into transport addresses
- session side effects: back up on connect, invalidate on logout,
  reconnect after a drop

Design rules:
- Only this service mutates the transport or the session
- Readiness comes from connection events only (session.connected)
- A failed send never takes the process down; it becomes TransportFailure
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from wa_relay.errors import TransportFailure, TransportNotReady, ValidationError
from wa_relay.phone import normalize_recipient
from wa_relay.services.session_sync import SessionSync
from wa_relay.transport.gateway import ConnectionEvent, SendResult, TransportClient
from wa_relay.transport.session import SessionSnapshot, TransportSession

logger = logging.getLogger("relay_service")

_LOG_LIMIT = 500


class RelayServer:
    def __init__(
        self,
        transport: TransportClient,
        *,
        country_code: str = "94",
        local_length: int = 9,
        session_sync: Optional[SessionSync] = None,
        reconnect_delay: float = 3.0,
    ) -> None:
        self._transport = transport
        self._country_code = country_code
        self._local_length = local_length
        self._session_sync = session_sync
        self._reconnect_delay = reconnect_delay

        self.session = TransportSession()
        self._closing = False
        self._reconnect_timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._message_log: Deque[Dict[str, Any]] = deque(maxlen=_LOG_LIMIT)

        self._transport.set_listener(self.handle_event)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def connect(self) -> None:
        """
        Restore the mirrored session (if any) and connect the transport.
        Blocks until the transport has reported its outcome.
        """
        if self._closing:
            return
        if self._session_sync and not self._session_sync.has_local_session():
            if self._session_sync.has_remote_session():
                logger.info("Restoring session from remote mirror")
                self._session_sync.download()
            else:
                logger.info("No remote session found, will create new one")

        try:
            self._transport.connect()
        except Exception as e:
            logger.exception("Transport connect failed")
            self.handle_event(ConnectionEvent.DISCONNECTED, str(e))

    def start(self) -> threading.Thread:
        t = threading.Thread(target=self.connect, name="transport-connect", daemon=True)
        t.start()
        return t

    def shutdown(self) -> None:
        logger.info("Shutting down transport")
        self._closing = True
        with self._timer_lock:
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
                self._reconnect_timer = None
        # let an in-flight send finish (bounded by the transport timeout)
        with self._send_lock:
            try:
                self._transport.close()
            except Exception:
                logger.exception("Error while closing transport")
        self.session.apply(ConnectionEvent.DISCONNECTED, "shutdown")

    # ------------------------------------------------------------------
    # Connection events
    # ------------------------------------------------------------------
    def handle_event(self, event: ConnectionEvent, detail: Optional[str] = None) -> SessionSnapshot:
        event = ConnectionEvent(event)
        snapshot = self.session.apply(event, detail)

        if event is ConnectionEvent.QR:
            logger.info("QR code received, scan it with WhatsApp (Linked Devices)")

        elif event is ConnectionEvent.CONNECTING:
            logger.info("Connecting to WhatsApp...")

        elif event is ConnectionEvent.CONNECTED:
            logger.info("WhatsApp connected, ready to send messages")
            if self._session_sync:
                self._session_sync.upload()

        elif event is ConnectionEvent.LOGGED_OUT:
            logger.warning("Logged out (%s), clearing session", detail or "no reason")
            if self._session_sync:
                self._session_sync.invalidate()

        elif event is ConnectionEvent.DISCONNECTED:
            logger.warning("Connection closed: %s", detail or "no reason")
            self._schedule_reconnect()

        return snapshot

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        with self._timer_lock:
            if self._reconnect_timer is not None and self._reconnect_timer.is_alive():
                return
            logger.info("Reconnecting in %.1fs", self._reconnect_delay)
            self._reconnect_timer = threading.Timer(self._reconnect_delay, self.connect)
            self._reconnect_timer.daemon = True
            self._reconnect_timer.start()

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------
    def is_ready(self) -> bool:
        return self.session.connected

    def health(self) -> Dict[str, Any]:
        ready = self.is_ready()
        return {
            "status": "online",
            "whatsapp_ready": ready,
            "message": "WhatsApp is connected and ready" if ready else "WhatsApp is not connected",
            "timestamp": _now_iso(),
        }

    def status(self) -> Dict[str, Any]:
        snapshot = self.session.snapshot
        return {
            "connected": snapshot.connected,
            "has_qr": snapshot.has_qr,
            "state": snapshot.state.value,
            "timestamp": _now_iso(),
        }

    # ------------------------------------------------------------------
    # Send path
    # ------------------------------------------------------------------
    def to_jid(self, recipient: str) -> str:
        return normalize_recipient(
            recipient,
            country_code=self._country_code,
            local_length=self._local_length,
            address_suffix=self._transport.address_suffix,
        )

    def send(self, recipient: Optional[str], text: Optional[str]) -> Dict[str, Any]:
        """
        Readiness gate -> validation -> normalisation -> transport send.

        Raises TransportNotReady, ValidationError or TransportFailure.
        """
        if not self.is_ready():
            raise TransportNotReady("WhatsApp is not connected. Please scan QR code first.")

        if not recipient or not text:
            raise ValidationError("Missing required fields: number and message")

        jid = self.to_jid(recipient)
        logger.info("Sending message to %s (%s)", recipient, jid)

        with self._send_lock:
            try:
                result: SendResult = self._transport.send(jid, text)
            except TransportFailure as e:
                self._record(recipient, jid, "failed", error=str(e))
                logger.error("Error sending message to %s: %s", jid, e)
                raise
            except Exception as e:
                self._record(recipient, jid, "failed", error=str(e))
                logger.exception("Unexpected transport error sending to %s", jid)
                raise TransportFailure(str(e) or "Failed to send message") from e

        self._record(recipient, jid, "sent", provider_message_id=result.provider_message_id)
        logger.info("Message sent successfully to %s", recipient)

        return {
            "success": True,
            "message": "Message sent successfully",
            "recipient": recipient,
            "jid": jid,
            "provider_message_id": result.provider_message_id,
            "delivery_status": result.status.value,
            "timestamp": _now_iso(),
        }

    # ------------------------------------------------------------------
    # Message log
    # ------------------------------------------------------------------
    def _record(self, recipient: str, jid: str, status: str, **extra: Any) -> None:
        entry = {"recipient": recipient, "jid": jid, "status": status, "timestamp": _now_iso()}
        entry.update(extra)
        self._message_log.append(entry)

    def recent_messages(self, limit: int = 50) -> List[Dict[str, Any]]:
        items = list(self._message_log)
        return list(reversed(items[-limit:])) if limit > 0 else []

    def message_stats(self) -> Dict[str, int]:
        today = datetime.now(timezone.utc).date().isoformat()
        sent = failed = 0
        for entry in self._message_log:
            if not entry["timestamp"].startswith(today):
                continue
            if entry["status"] == "sent":
                sent += 1
            elif entry["status"] == "failed":
                failed += 1
        return {"total_messages": len(self._message_log), "sent_today": sent, "failed_today": failed}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
