"""Browser-safe shapes for calls and provider executions."""

import math
from datetime import datetime
from typing import Any

from voiceops.db.models import CallDB
from voiceops.services.call_outcome import CONNECTED_MIN_SECONDS
from voiceops.services.redaction import encode_for_transport


def display_cost(duration_seconds: int | float | None) -> str | None:
    """Billed minutes, rounded up, instead of the real cost."""
    if not duration_seconds or duration_seconds <= 0:
        return None
    return f"{math.ceil(duration_seconds / 60)} min"


def determine_outcome(status: str | None, sentiment: str | None = None, connected: bool = False) -> str:
    if status == "completed" and connected:
        if sentiment == "positive":
            return "interested"
        if sentiment == "negative":
            return "not_interested"
        return "contacted"
    if status == "completed":
        return "no_contact"
    if status == "failed":
        return "failed"
    if status == "no_answer":
        return "no_answer"
    return "pending"


def _iso(value: datetime | str | None) -> str | None:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def sanitize_call(call: CallDB) -> dict[str, Any]:
    """Call row as shown to any dashboard user."""
    return {
        "call_id": call.id,
        "status": call.status,
        "duration": call.duration_seconds,
        "summary": encode_for_transport(call.summary),
        "outcome": determine_outcome(call.status, call.sentiment, call.connected),
        "display_cost": display_cost(call.duration_seconds),
        "timestamps": {
            "started_at": _iso(call.started_at),
            "ended_at": _iso(call.ended_at),
            "created_at": _iso(call.created_at),
        },
        "sentiment": call.sentiment,
        "connected": call.connected,
        "has_recording": bool(call.recording_url),
        "has_transcript": bool(call.transcript),
    }


def execution_duration(execution: dict[str, Any]) -> int | None:
    telephony = execution.get("telephony_data") or {}
    if telephony.get("duration"):
        try:
            return round(float(telephony["duration"])) or None
        except (TypeError, ValueError):
            return None
    conversation_time = execution.get("conversation_time", execution.get("conversation_duration"))
    if conversation_time is not None:
        return round(conversation_time)
    return None


def sanitize_execution(execution: dict[str, Any]) -> dict[str, Any]:
    """Provider execution stripped to what a dashboard may see."""
    telephony = execution.get("telephony_data") or {}
    duration = execution_duration(execution)
    status = execution.get("status")
    connected = bool(duration and duration >= CONNECTED_MIN_SECONDS)
    return {
        "execution_id": execution.get("id"),
        "status": status,
        "duration": duration,
        "summary": encode_for_transport(execution.get("summary")),
        "outcome": determine_outcome(status, None, connected),
        "display_cost": display_cost(duration),
        "timestamps": {
            "started_at": execution.get("started_at"),
            "ended_at": execution.get("ended_at"),
        },
        "transcript": encode_for_transport(execution.get("transcript")),
        "has_recording": bool(telephony.get("recording_url")),
    }
