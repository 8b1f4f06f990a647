"""
File: wa_relay/services/relay_client.py

Project: WhatsApp Notification Relay

Purpose:
HTTP client the bridge uses to talk to the relay server.
- GET  /health        -> readiness probe
- POST /send-message  -> send one message

The bridge never touches the transport directly; this is its only view
of the relay server.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger("relay_client")

REJECTED_STATUS_CODES = (400, 422)


@dataclass(frozen=True)
class RelaySendResult:
    ok: bool
    status_code: int
    error: Optional[str]
    response_json: Dict[str, Any]

    @property
    def retryable(self) -> bool:
        # 400/422: the relay rejected the request itself (bad recipient or body)
        return self.status_code not in REJECTED_STATUS_CODES


class RelayClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        probe_timeout: float = 3.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._probe_timeout = probe_timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", "wa-relay-bridge/1.0")

    @property
    def base_url(self) -> str:
        return self._base_url

    # ---------------------------------------------------------
    # READINESS
    # ---------------------------------------------------------
    def health(self) -> Optional[Dict[str, Any]]:
        """
        Returns the /health body, or None when the relay cannot be reached
        or answers with something that is not a JSON object.
        """
        try:
            resp = self._session.get(f"{self._base_url}/health", timeout=self._probe_timeout)
        except requests.RequestException as e:
            logger.debug("Relay health probe failed: %s", e)
            return None

        if not 200 <= resp.status_code < 300:
            logger.debug("Relay health probe returned HTTP %d", resp.status_code)
            return None

        try:
            data = resp.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def is_ready(self) -> bool:
        data = self.health()
        return bool(data and data.get("whatsapp_ready") is True)

    # ---------------------------------------------------------
    # SEND
    # ---------------------------------------------------------
    def send_message(self, number: str, message: str) -> RelaySendResult:
        try:
            resp = self._session.post(
                f"{self._base_url}/send-message",
                json={"number": number, "message": message},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            return RelaySendResult(ok=False, status_code=0, error=str(e), response_json={})

        try:
            data = resp.json()
        except ValueError:
            data = {"raw_text": resp.text}
        if not isinstance(data, dict):
            data = {"raw": data}

        if resp.status_code == 200 and data.get("success", True) is not False:
            return RelaySendResult(ok=True, status_code=200, error=None, response_json=data)

        error = data.get("error") or f"HTTP {resp.status_code}"
        return RelaySendResult(ok=False, status_code=resp.status_code, error=str(error), response_json=data)

    def close(self) -> None:
        self._session.close()
