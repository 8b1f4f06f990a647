"""
Setup diagnostics.

Each check returns a CheckResult; the CLI prints them and exits 1 when any
required check failed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from wa_relay.config import Settings
from wa_relay.db import make_engine, test_db_connection
from wa_relay.services.relay_client import RelayClient
from wa_relay.transport.factory import TRANSPORT_MODES


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    required: bool = True


def check_transport_config(settings: Settings) -> CheckResult:
    if settings.transport_mode not in TRANSPORT_MODES:
        return CheckResult("transport", False, f"unknown TRANSPORT_MODE {settings.transport_mode!r}")
    if settings.transport_mode == "meta":
        missing = [n for n in ("META_WA_ACCESS_TOKEN", "META_WA_PHONE_NUMBER_ID") if not os.getenv(n, "").strip()]
        if missing:
            return CheckResult("transport", False, f"missing {', '.join(missing)}")
    return CheckResult("transport", True, f"mode={settings.transport_mode}")


def check_phone_config(settings: Settings) -> CheckResult:
    if not settings.country_code.isdigit():
        return CheckResult("phone", False, f"COUNTRY_CODE must be digits, got {settings.country_code!r}")
    if settings.local_number_length <= 0:
        return CheckResult("phone", False, "LOCAL_NUMBER_LENGTH must be positive")
    return CheckResult(
        "phone", True, f"country_code={settings.country_code} local_length={settings.local_number_length}"
    )


def check_database(settings: Settings) -> CheckResult:
    if not settings.database_url:
        return CheckResult("database", False, "DATABASE_URL is not set")
    try:
        test_db_connection(make_engine(settings.database_url))
    except Exception as e:
        return CheckResult("database", False, str(e))
    return CheckResult("database", True, "reachable")


def check_relay(settings: Settings, client: Optional[RelayClient] = None, required: bool = False) -> CheckResult:
    client = client or RelayClient(settings.relay_url, probe_timeout=settings.probe_timeout_seconds)
    data = client.health()
    if data is None:
        return CheckResult("relay", False, f"cannot reach {settings.relay_url}/health", required=required)
    if data.get("whatsapp_ready") is not True:
        return CheckResult("relay", False, "relay online but WhatsApp not ready", required=required)
    return CheckResult("relay", True, "online and ready", required=required)


def check_session_folder(settings: Settings) -> CheckResult:
    path = Path(settings.session_path)
    if path.is_dir() and any(p.is_file() for p in path.iterdir()):
        return CheckResult("session", True, f"local session found at {path}", required=False)
    return CheckResult("session", False, f"no local session at {path} (pairing will be needed)", required=False)


def run_checks(settings: Settings, *, require_relay: bool = False) -> List[CheckResult]:
    checks: List[Callable[[], CheckResult]] = [
        lambda: check_transport_config(settings),
        lambda: check_phone_config(settings),
        lambda: check_database(settings),
        lambda: check_relay(settings, required=require_relay),
        lambda: check_session_folder(settings),
    ]
    return [check() for check in checks]


def all_passed(results: List[CheckResult]) -> bool:
    return all(r.ok for r in results if r.required)
