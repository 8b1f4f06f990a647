"""
File: wa_relay/main.py

Project: WhatsApp Notification Relay

Purpose:
Relay server application factory.
Responsible only for:
- FastAPI app creation
- Router registration
- Wiring the RelayServer (transport owner) and optional DB engine
- Transport connect on startup / clean release on shutdown

Design principles:
- No business logic in this file
- No queue access: the relay server never reads the job queue
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from wa_relay.config import Settings
from wa_relay.db import init_db, make_engine, make_session_factory
from wa_relay.health import router as health_router
from wa_relay.routes import router as send_router
from wa_relay.services.relay_service import RelayServer
from wa_relay.services.session_sync import SessionSync
from wa_relay.transport.factory import build_transport


def build_relay_server(settings: Settings, engine: Optional[Engine] = None) -> RelayServer:
    session_factory = None
    if settings.session_mirror_enabled and engine is not None:
        session_factory = make_session_factory(engine)

    return RelayServer(
        build_transport(settings),
        country_code=settings.country_code,
        local_length=settings.local_number_length,
        session_sync=SessionSync(
            settings.session_path,
            session_factory=session_factory,
            session_key=settings.session_remote_key,
        ),
        reconnect_delay=settings.reconnect_delay_seconds,
    )


def create_app(
    relay: Optional[RelayServer] = None,
    *,
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
) -> FastAPI:
    if relay is None:
        settings = settings or Settings()
        if engine is None and settings.database_url:
            engine = make_engine(settings.database_url)
            init_db(engine)
        relay = build_relay_server(settings, engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        relay.start()
        try:
            yield
        finally:
            relay.shutdown()

    app = FastAPI(title="WhatsApp Notification Relay", lifespan=lifespan)
    app.state.relay = relay
    app.state.engine = engine

    # -------------------------------------------------------------------
    # Health / status (GET /health, /health/db, /status)
    # -------------------------------------------------------------------
    app.include_router(health_router)

    # -------------------------------------------------------------------
    # Send (POST /send-message, /send, /notify/*)
    # -------------------------------------------------------------------
    app.include_router(send_router)

    return app
