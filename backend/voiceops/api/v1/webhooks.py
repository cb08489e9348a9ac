"""Voice provider webhook endpoints."""

import hmac
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.config import get_settings
from voiceops.db.session import get_session
from voiceops.schemas.queue import CallStatusWebhook
from voiceops.services.call_outcome import process_status_webhook


async def verify_webhook_secret(
    x_webhook_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Check the shared secret header when one is configured."""
    settings = get_settings()
    if not settings.voice_webhook_secret:
        return

    if not x_webhook_secret or not hmac.compare_digest(
        x_webhook_secret, settings.voice_webhook_secret
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


router = APIRouter(
    prefix="/webhooks/voice",
    tags=["webhooks"],
    dependencies=[Depends(verify_webhook_secret)],
)


@router.post("/status")
async def call_status_webhook(
    payload: CallStatusWebhook,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> dict[str, Any]:
    """
    Handle provider call status updates.

    Statuses seen from the provider:
    - queued / initiated / ringing: call is being placed
    - in-progress: call is connected
    - completed / call-disconnected: call ended normally
    - busy / no-answer: nobody picked up
    - failed / error / balance-low: provider could not place the call
    - canceled / stopped: call was stopped before it ended

    Final statuses close or reschedule the call's queue row.
    """
    result = await process_status_webhook(session, payload.model_dump())
    return result.to_dict()
