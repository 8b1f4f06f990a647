"""
File: wa_relay/routes.py

Project: WhatsApp Notification Relay

Purpose:
Send endpoints of the relay server.

Endpoints:
- POST /send-message        {number|phone|recipient, message|text}
- POST /send                (alias of /send-message)
- POST /notify/attendance   {studentName, parentPhone, status, date}
- POST /notify/payment      {studentName, parentPhone, amount, status, month}
- GET  /logs                recent send log (in-memory)

Status codes (all send endpoints):
- 200 {success: true, ...}
- 400 missing / malformed fields
- 503 WhatsApp not connected
- 500 transport failure

Design rules:
- No transport access here: everything goes through RelayServer.send
- Readiness is checked before the body is validated
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from wa_relay.errors import TransportFailure, TransportNotReady, ValidationError
from wa_relay.notifications import attendance_message, payment_message
from wa_relay.services.relay_service import RelayServer

router = APIRouter(tags=["send"])
logger = logging.getLogger("routes")


def get_relay(request: Request) -> RelayServer:
    return request.app.state.relay


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except Exception:
        return {}
    return payload if isinstance(payload, dict) else {}


def _first(payload: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _fail(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def _deliver(relay: RelayServer, recipient: Optional[str], text: Optional[str]) -> JSONResponse:
    try:
        return JSONResponse(status_code=200, content=relay.send(recipient, text))
    except TransportNotReady as e:
        return _fail(503, str(e))
    except ValidationError as e:
        return _fail(400, str(e))
    except TransportFailure as e:
        return _fail(500, str(e) or "Failed to send message")


# -------------------------------------------------------------------
# Send
# -------------------------------------------------------------------
@router.post("/send-message")
@router.post("/send")
async def send_message(request: Request, relay: RelayServer = Depends(get_relay)):
    payload = await _json_body(request)
    recipient = _first(payload, "number", "phone", "recipient")
    text = _first(payload, "message", "text")
    return _deliver(relay, recipient, text)


# -------------------------------------------------------------------
# Templated notifications
# -------------------------------------------------------------------
@router.post("/notify/attendance")
async def notify_attendance(request: Request, relay: RelayServer = Depends(get_relay)):
    if not relay.is_ready():
        return _fail(503, "WhatsApp is not connected. Please scan QR code first.")
    payload = await _json_body(request)
    try:
        text = attendance_message(payload)
    except ValidationError as e:
        return _fail(400, str(e))
    return _deliver(relay, _first(payload, "parentPhone"), text)


@router.post("/notify/payment")
async def notify_payment(request: Request, relay: RelayServer = Depends(get_relay)):
    if not relay.is_ready():
        return _fail(503, "WhatsApp is not connected. Please scan QR code first.")
    payload = await _json_body(request)
    try:
        text = payment_message(payload)
    except ValidationError as e:
        return _fail(400, str(e))
    return _deliver(relay, _first(payload, "parentPhone"), text)


# -------------------------------------------------------------------
# Send log (read-only)
# -------------------------------------------------------------------
@router.get("/logs")
def message_logs(limit: int = 50, relay: RelayServer = Depends(get_relay)):
    stats = relay.message_stats()
    return {
        "total_messages": stats["total_messages"],
        "recent_messages": relay.recent_messages(limit),
        "stats": {"sent_today": stats["sent_today"], "failed_today": stats["failed_today"]},
    }
