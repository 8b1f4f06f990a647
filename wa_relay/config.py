"""
wa_relay/config.py
Application configuration
Environment-driven (PM2 / Render / shell compatible)

Nothing is read at import time. Entry points call load_settings();
tests build Settings(...) directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise RuntimeError(
            f"Missing required environment variable: {name}. "
            f"Set it in your .env / PM2 ecosystem / shell before running."
        )
    return value


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}")


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # ---- Relay server ----
    host: str = "0.0.0.0"
    port: int = 3000
    transport_mode: str = "dry_run"
    reconnect_delay_seconds: float = 3.0
    send_timeout_seconds: float = 10.0

    # ---- Phone normalisation ----
    country_code: str = "94"
    local_number_length: int = 9

    # ---- Queue store ----
    database_url: Optional[str] = None

    # ---- Bridge ----
    relay_url: str = "http://localhost:3000"
    batch_size: int = 10
    max_retries: int = 3
    retry_delay_ms: int = 5000
    reset_ceiling: int = 5
    poll_interval_seconds: float = 10.0
    inter_job_delay_seconds: float = 1.0
    http_timeout_seconds: float = 10.0
    probe_timeout_seconds: float = 3.0

    # ---- Session persistence ----
    session_path: str = "./auth_info"
    session_remote_key: str = "whatsappSessions/main"
    session_mirror_enabled: bool = False

    log_level: str = "INFO"

    def require_database_url(self) -> str:
        if not self.database_url:
            raise RuntimeError("DATABASE_URL is not set")
        return self.database_url


def load_settings() -> Settings:
    return Settings(
        host=os.getenv("HOST", "0.0.0.0").strip(),
        port=_int_env("PORT", 3000),
        transport_mode=os.getenv("TRANSPORT_MODE", "dry_run").strip().lower(),
        reconnect_delay_seconds=_float_env("RECONNECT_DELAY_SECONDS", 3.0),
        send_timeout_seconds=_float_env("SEND_TIMEOUT_SECONDS", 10.0),
        country_code=os.getenv("COUNTRY_CODE", "94").strip(),
        local_number_length=_int_env("LOCAL_NUMBER_LENGTH", 9),
        database_url=os.getenv("DATABASE_URL") or None,
        relay_url=os.getenv("RELAY_URL", "http://localhost:3000").strip().rstrip("/"),
        batch_size=_int_env("BATCH_SIZE", 10),
        max_retries=_int_env("MAX_RETRIES", 3),
        retry_delay_ms=_int_env("RETRY_DELAY_MS", 5000),
        reset_ceiling=_int_env("RESET_CEILING", 5),
        poll_interval_seconds=_float_env("POLL_INTERVAL_SECONDS", 10.0),
        inter_job_delay_seconds=_float_env("INTER_JOB_DELAY_SECONDS", 1.0),
        http_timeout_seconds=_float_env("HTTP_TIMEOUT_SECONDS", 10.0),
        probe_timeout_seconds=_float_env("PROBE_TIMEOUT_SECONDS", 3.0),
        session_path=os.getenv("SESSION_PATH", "./auth_info").strip(),
        session_remote_key=os.getenv("SESSION_REMOTE_KEY", "whatsappSessions/main").strip(),
        session_mirror_enabled=_bool_env("SESSION_MIRROR_ENABLED", False),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )
