"""
Meta WhatsApp Cloud API credentials for the `meta` transport.

Read only when TRANSPORT_MODE=meta:
- META_WA_ACCESS_TOKEN      (required)
- META_WA_PHONE_NUMBER_ID   (required)
- META_WA_API_VERSION       (optional, v20.0)
- META_WA_GRAPH_URL         (optional, https://graph.facebook.com; point it
                             at a local stub to rehearse without Meta)
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from wa_relay.config import _require_env

DEFAULT_GRAPH_URL = "https://graph.facebook.com"
DEFAULT_API_VERSION = "v20.0"


@dataclass(frozen=True)
class MetaWhatsAppSettings:
    access_token: str
    phone_number_id: str
    api_version: str = DEFAULT_API_VERSION
    graph_url: str = DEFAULT_GRAPH_URL

    @property
    def base_url(self) -> str:
        return f"{self.graph_url.rstrip('/')}/{self.api_version}"

    # GET here doubles as the credential check on connect
    @property
    def phone_number_url(self) -> str:
        return f"{self.base_url}/{self.phone_number_id}"

    @property
    def messages_url(self) -> str:
        return f"{self.phone_number_url}/messages"


def load_meta_settings() -> MetaWhatsAppSettings:
    version = os.getenv("META_WA_API_VERSION", "").strip() or DEFAULT_API_VERSION
    if not version.startswith("v"):
        version = f"v{version}"
    return MetaWhatsAppSettings(
        access_token=_require_env("META_WA_ACCESS_TOKEN"),
        phone_number_id=_require_env("META_WA_PHONE_NUMBER_ID"),
        api_version=version,
        graph_url=os.getenv("META_WA_GRAPH_URL", "").strip() or DEFAULT_GRAPH_URL,
    )
