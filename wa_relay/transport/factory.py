"""
File: wa_relay/transport/factory.py

Project: WhatsApp Notification Relay

Purpose:
- Provide a single place to construct the transport client

Design rules:
- No business logic here
- Only construction / wiring
"""

from __future__ import annotations

from wa_relay.config import Settings
from wa_relay.transport.dry_run import DryRunTransport
from wa_relay.transport.gateway import TransportClient
from wa_relay.transport.meta import MetaTransport
from wa_relay.transport.settings import load_meta_settings

TRANSPORT_MODES = ("dry_run", "meta")


def build_transport(settings: Settings) -> TransportClient:
    mode = settings.transport_mode

    if mode == "dry_run":
        return DryRunTransport()

    if mode == "meta":
        return MetaTransport(
            settings=load_meta_settings(),
            timeout=settings.send_timeout_seconds,
        )

    raise RuntimeError(
        f"Unknown TRANSPORT_MODE {mode!r}. Expected one of: {', '.join(TRANSPORT_MODES)}"
    )
