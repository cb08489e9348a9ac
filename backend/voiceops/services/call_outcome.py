"""Provider call-status webhook handling."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.db.models import CallDB, CampaignLeadDB
from voiceops.models.lead import LeadStage
from voiceops.services.call_queue import apply_call_outcome
from voiceops.services.queue_stats import publish_queue_stats

logger = structlog.get_logger(__name__)

# Provider status -> local call status
STATUS_MAP = {
    "queued": "queued",
    "initiated": "initiated",
    "ringing": "ringing",
    "in_progress": "in_progress",
    "call_disconnected": "disconnected",
    "completed": "completed",
    "busy": "busy",
    "no_answer": "no_answer",
    "canceled": "canceled",
    "stopped": "canceled",
    "failed": "failed",
    "error": "failed",
    "balance_low": "failed",
}

# Provider statuses that end a call
FINAL_STATUSES = frozenset(
    {"completed", "busy", "no_answer", "canceled", "stopped", "failed", "error", "balance_low"}
)

# A call counts as connected once it lasted this long
CONNECTED_MIN_SECONDS = 45

HIGH_INTEREST_KEYWORDS = (
    "interested", "yes please", "tell me more", "want to", "schedule",
    "book", "sign up", "buy", "purchase", "sounds good", "perfect",
)
LOW_INTEREST_KEYWORDS = (
    "not interested", "no thanks", "don't call", "remove me", "stop calling",
    "already have", "not looking", "no need", "don't want",
)
PARTIAL_INTEREST_KEYWORDS = (
    "maybe", "not sure", "think about", "call back", "later", "send info",
    "email me", "need to discuss", "check with", "let me think",
)


def normalize_status(status: str | None) -> str:
    return (status or "").strip().lower().replace("-", "_")


def payload_duration(payload: dict[str, Any]) -> int:
    """Call length in seconds, from telephony data or conversation time."""
    telephony = payload.get("telephony_data") or {}
    duration = telephony.get("duration") or payload.get("conversation_time") or 0
    try:
        return int(float(duration))
    except (TypeError, ValueError):
        return 0


def is_connected(status: str, duration: int) -> bool:
    return duration >= CONNECTED_MIN_SECONDS and status in ("completed", "call_disconnected")


def classify_interest(transcript: str | None, extracted: dict[str, Any] | None) -> tuple[LeadStage | None, str]:
    """
    Lead stage and sentiment suggested by a finished conversation.

    Provider-extracted interest wins over transcript keywords. Returns
    ``(None, "neutral")`` when nothing points either way.
    """
    stage: LeadStage | None = None
    sentiment = "neutral"

    # Negative phrases contain positive words ("not interested"), check them first
    lowered = (transcript or "").lower()
    if any(keyword in lowered for keyword in LOW_INTEREST_KEYWORDS):
        stage, sentiment = LeadStage.NOT_INTERESTED, "negative"
    elif any(keyword in lowered for keyword in HIGH_INTEREST_KEYWORDS):
        stage, sentiment = LeadStage.INTERESTED, "positive"
    elif any(keyword in lowered for keyword in PARTIAL_INTEREST_KEYWORDS):
        stage = LeadStage.PARTIALLY_INTERESTED

    level = str((extracted or {}).get("interest_level", "")).lower()
    if level in ("high", "interested", "very interested"):
        stage, sentiment = LeadStage.INTERESTED, "positive"
    elif level in ("low", "not interested", "none"):
        stage, sentiment = LeadStage.NOT_INTERESTED, "negative"
    elif level in ("medium", "partial", "maybe"):
        stage, sentiment = LeadStage.PARTIALLY_INTERESTED, "neutral"

    return stage, sentiment


def summarize(payload: dict[str, Any], status: str, connected: bool) -> str | None:
    extracted = payload.get("extracted_data") or {}
    if extracted.get("summary"):
        return str(extracted["summary"])
    transcript = payload.get("transcript")
    if transcript:
        return transcript[:300] + ("..." if len(transcript) > 300 else "")
    if connected:
        return None
    if status == "no_answer":
        return "No answer - call was not picked up"
    if status == "busy":
        return "Line busy - could not connect"
    if payload.get("answered_by_voice_mail"):
        return "Reached voicemail"
    return f"Call ended - {status or 'disconnected'}"


@dataclass
class WebhookResult:
    """What a status webhook changed."""

    call_id: str | None
    status: str | None = None
    connected: bool = False
    duration: int = 0
    queue_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "call_id": self.call_id,
            "status": self.status,
            "connected": self.connected,
            "duration": self.duration,
            "queue_status": self.queue_status,
        }


async def find_call(session: AsyncSession, payload: dict[str, Any]) -> CallDB | None:
    """Locate the local call for a webhook: internal id first, then provider ids."""
    context = payload.get("context_details") or {}
    recipient = context.get("recipient_data") or {}
    internal_id = recipient.get("call_id")
    if internal_id:
        call = await session.get(CallDB, str(internal_id))
        if call is not None:
            return call

    candidates = [str(payload["id"])] if payload.get("id") is not None else []
    provider_call_id = (payload.get("telephony_data") or {}).get("provider_call_id")
    if provider_call_id:
        candidates.append(str(provider_call_id))

    for external_id in candidates:
        result = await session.execute(select(CallDB).where(CallDB.external_call_id == external_id))
        call = result.scalars().first()
        if call is not None:
            return call
    return None


async def process_status_webhook(session: AsyncSession, payload: dict[str, Any]) -> WebhookResult:
    """
    Apply a provider call-status update.

    Updates the call row, and once the call has ended, its campaign lead and
    queue row. Unknown calls are acknowledged without changes.
    """
    call = await find_call(session, payload)
    if call is None:
        logger.info("webhook_call_not_found", execution_id=payload.get("id"))
        return WebhookResult(call_id=None)

    status = normalize_status(payload.get("status"))
    duration = payload_duration(payload)
    connected = is_connected(status, duration)
    final = status in FINAL_STATUSES
    now = datetime.now(timezone.utc)

    if payload.get("id") is not None and not call.external_call_id:
        call.external_call_id = str(payload["id"])

    call.status = STATUS_MAP.get(status, status or call.status)
    metadata = dict(call.call_metadata or {})
    metadata.update(
        {
            "provider_status": payload.get("status"),
            "error_message": payload.get("error_message"),
            "answered_by_voicemail": payload.get("answered_by_voice_mail"),
            "extracted_data": payload.get("extracted_data"),
            "last_webhook_at": now.isoformat(),
        }
    )
    if payload.get("total_cost") is not None:
        metadata["cost"] = payload.get("total_cost")
    call.call_metadata = metadata

    if status == "in_progress" and call.started_at is None:
        call.started_at = now

    result = WebhookResult(call_id=call.id, status=call.status, connected=connected, duration=duration)

    if final:
        telephony = payload.get("telephony_data") or {}
        call.duration_seconds = duration
        call.ended_at = now
        call.connected = connected
        if telephony.get("recording_url"):
            call.recording_url = telephony["recording_url"]
        if payload.get("transcript"):
            call.transcript = payload["transcript"]

        stage, sentiment = classify_interest(call.transcript, payload.get("extracted_data"))
        call.sentiment = sentiment
        call.summary = summarize(payload, status, connected)

        if metadata.get("source") == "campaign_bulk" and call.lead_id:
            lead = await session.get(CampaignLeadDB, call.lead_id)
            if lead is not None:
                lead.call_id = call.id
                lead.call_status = "connected" if connected else "not_connected"
                lead.stage = stage or LeadStage.CONTACTED

        queue_item_id = metadata.get("queue_item_id")
        if queue_item_id:
            row = await apply_call_outcome(session, str(queue_item_id), connected)
            if row is not None:
                result.queue_status = row.status.value

    await session.commit()
    logger.info(
        "call_status_applied",
        call_id=call.id,
        status=call.status,
        connected=connected,
        duration=duration,
    )

    campaign_id = metadata.get("campaign_id")
    if final and campaign_id:
        await publish_queue_stats(session, str(campaign_id))
    return result
