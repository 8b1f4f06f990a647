"""
File: wa_relay/transport/meta.py

Project: WhatsApp Notification Relay

Purpose:
Meta WhatsApp Cloud API transport.
Supports:
- Credential check (treated as "connecting" -> "connected")
- Session messages (free text)

Connection mapping:
- 2xx on the phone-number lookup  -> connected
- 401 anywhere                    -> logged_out (token revoked / expired)
- anything else / network error   -> disconnected
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from wa_relay.errors import TransportFailure
from wa_relay.transport.gateway import ConnectionEvent, EventListener, SendResult, SendStatus
from wa_relay.transport.settings import MetaWhatsAppSettings

logger = logging.getLogger("transport.meta")


def _json_or_raw(resp: requests.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        data = {"raw_text": resp.text}
    if not isinstance(data, dict):
        data = {"raw": data}
    return data


def _error_message(data: Dict[str, Any], status_code: int) -> str:
    err = data.get("error")
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    return f"HTTP {status_code}"


class MetaTransport:
    # Cloud API takes bare MSISDNs
    address_suffix = ""

    def __init__(
        self,
        settings: MetaWhatsAppSettings,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._timeout = timeout
        self._listener: Optional[EventListener] = None
        self._ready = False

    def set_listener(self, listener: EventListener) -> None:
        self._listener = listener

    def _emit(self, event: ConnectionEvent, detail: Optional[str] = None) -> None:
        if event is ConnectionEvent.CONNECTED:
            self._ready = True
        elif event in (ConnectionEvent.DISCONNECTED, ConnectionEvent.LOGGED_OUT):
            self._ready = False
        if self._listener is not None:
            self._listener(event, detail)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.access_token}",
            "Content-Type": "application/json",
        }

    # ---------------------------------------------------------
    # CONNECT (credential check)
    # ---------------------------------------------------------
    def connect(self) -> None:
        self._emit(ConnectionEvent.CONNECTING)
        try:
            resp = self._session.get(
                self._settings.phone_number_url,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            self._emit(ConnectionEvent.DISCONNECTED, str(e))
            return

        if 200 <= resp.status_code < 300:
            data = _json_or_raw(resp)
            logger.info("Cloud API number verified: %s", data.get("display_phone_number", "?"))
            self._emit(ConnectionEvent.CONNECTED)
        elif resp.status_code == 401:
            self._emit(ConnectionEvent.LOGGED_OUT, _error_message(_json_or_raw(resp), 401))
        else:
            self._emit(ConnectionEvent.DISCONNECTED, _error_message(_json_or_raw(resp), resp.status_code))

    # ---------------------------------------------------------
    # SESSION MESSAGE
    # ---------------------------------------------------------
    def send(self, jid: str, text: str) -> SendResult:
        if not text:
            raise TransportFailure("Session message text cannot be empty")

        payload = {
            "messaging_product": "whatsapp",
            "to": jid,
            "type": "text",
            "text": {"body": text},
        }

        try:
            resp = self._session.post(
                self._settings.messages_url,
                json=payload,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            raise TransportFailure(f"Send timed out: {e}") from e
        except requests.RequestException as e:
            self._emit(ConnectionEvent.DISCONNECTED, str(e))
            raise TransportFailure(str(e)) from e

        data = _json_or_raw(resp)

        if resp.status_code == 401:
            message = _error_message(data, 401)
            self._emit(ConnectionEvent.LOGGED_OUT, message)
            raise TransportFailure(message)

        if not 200 <= resp.status_code < 300:
            raise TransportFailure(_error_message(data, resp.status_code))

        provider_id = None
        messages = data.get("messages")
        if isinstance(messages, list) and messages:
            provider_id = messages[0].get("id")

        return SendResult.now(
            status=SendStatus.SENT,
            detail=f"Cloud API accepted message to={jid}",
            provider_message_id=provider_id,
        )

    def is_ready(self) -> bool:
        return self._ready

    def close(self) -> None:
        was_ready = self._ready
        self._session.close()
        if was_ready:
            self._emit(ConnectionEvent.DISCONNECTED, "closed")
