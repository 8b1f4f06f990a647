"""
WhatsApp Notification Relay
Database module (single-file)

Provides:
- SQLAlchemy engine + sessionmaker construction from a URL
- test_db_connection() for health checks / diagnostics

The URL is passed in by the caller (see config.Settings.database_url)
so importing this module never requires DATABASE_URL to be set.
"""

from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from wa_relay.models import Base


def make_engine(database_url: str) -> Engine:
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory DB.
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def test_db_connection(engine: Engine) -> None:
    """
    Raises if the database cannot be reached.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
