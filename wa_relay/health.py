"""
Health and status endpoints
Used by the bridge (readiness probe) + ops

All of these are side-effect free and always answer 200.
"""

from fastapi import APIRouter, Request

from wa_relay.db import test_db_connection

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(request: Request):
    return request.app.state.relay.health()


@router.get("/health/db")
def db_health_check(request: Request):
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return {"database": "not_configured"}
    try:
        test_db_connection(engine)
        return {"database": "healthy"}
    except Exception as e:
        return {"database": "unhealthy", "error": str(e)}


@router.get("/status")
def status_check(request: Request):
    return request.app.state.relay.status()
