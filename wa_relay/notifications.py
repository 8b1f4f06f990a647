"""
Notification templates.

Plain text bodies for the /notify/* wrappers. No logic beyond formatting.
"""

from __future__ import annotations

from typing import Any, Mapping

from wa_relay.errors import ValidationError

BRAND_NAME = "EduTrack"

ATTENDANCE_FIELDS = ("studentName", "parentPhone", "status", "date")
PAYMENT_FIELDS = ("studentName", "parentPhone", "amount", "status", "month")


def _require(payload: Mapping[str, Any], fields: tuple) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def attendance_message(payload: Mapping[str, Any]) -> str:
    _require(payload, ATTENDANCE_FIELDS)
    return (
        f"📚 {BRAND_NAME} Attendance Notification\n\n"
        f"Student: {payload['studentName']}\n"
        f"Status: {payload['status']}\n"
        f"Date: {payload['date']}\n\n"
        f"Thank you for choosing {BRAND_NAME}."
    )


def payment_message(payload: Mapping[str, Any]) -> str:
    _require(payload, PAYMENT_FIELDS)
    return (
        f"💰 {BRAND_NAME} Payment Notification\n\n"
        f"Student: {payload['studentName']}\n"
        f"Amount: Rs. {payload['amount']}\n"
        f"Status: {payload['status']}\n"
        f"Month: {payload['month']}\n\n"
        "Thank you for your payment!"
    )
