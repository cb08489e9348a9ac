"""Dashboard WebSocket handler."""

import json
import uuid
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.api.v1.auth import user_from_token
from voiceops.db.session import get_session
from voiceops.models.queue import QueueOperationError
from voiceops.services.call_queue import get_campaign_for_user
from voiceops.services.queue_stats import queue_snapshot
from voiceops.websocket.connection_manager import (
    EventType,
    WebSocketMessage,
    manager,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


def _error(message: str) -> WebSocketMessage:
    return WebSocketMessage(event=EventType.ERROR, data={"message": message})


async def _snapshot_message(
    session: AsyncSession,
    campaign_id: str,
    event: EventType,
) -> WebSocketMessage:
    snapshot = await queue_snapshot(session, campaign_id)
    return WebSocketMessage(
        event=event,
        data={**snapshot, "seq": manager.current_seq(campaign_id)},
    )


async def handle_dashboard_message(
    connection_id: str,
    user: dict[str, Any],
    message: dict[str, Any],
    session: AsyncSession,
) -> WebSocketMessage | None:
    """
    Handle incoming message from dashboard.

    Returns a message to send back, or None.
    """
    action = message.get("action")

    if action == "ping":
        return WebSocketMessage(event=EventType.PONG, data={})

    if action not in ("subscribe_queue", "unsubscribe_queue", "resync"):
        return _error(f"Unknown action: {action}")

    campaign_id = message.get("campaign_id")
    if not isinstance(campaign_id, str) or not campaign_id:
        return _error("campaign_id is required")

    if action == "unsubscribe_queue":
        manager.unsubscribe(connection_id, campaign_id)
        return WebSocketMessage(event=EventType.UNSUBSCRIBED, data={"campaign_id": campaign_id})

    try:
        await get_campaign_for_user(session, campaign_id, user)
    except QueueOperationError as e:
        return _error(e.message)

    if action == "subscribe_queue":
        manager.subscribe(connection_id, campaign_id)
        return await _snapshot_message(session, campaign_id, EventType.SUBSCRIBED)

    # resync: full snapshot stamped with the current seq
    return await _snapshot_message(session, campaign_id, EventType.QUEUE_STATS_UPDATED)


@router.websocket("/ws/dashboard")
async def dashboard_websocket(
    websocket: WebSocket,
    session: Annotated[AsyncSession, Depends(get_session)],
    token: str | None = Query(None),
) -> None:
    """
    WebSocket endpoint for dashboard.

    Handles:
    - Queue stats subscription per campaign (pushed on every change)
    - Resync after a sequence gap or a reconnect

    Query params:
        token: JWT access token for authentication
    """
    user = await user_from_token(session, token)
    if not user:
        await websocket.close(code=4001, reason="Unauthorized")
        return

    connection_id = f"dashboard-{user['id']}-{uuid.uuid4().hex[:8]}"

    try:
        await manager.connect(
            websocket=websocket,
            connection_id=connection_id,
            metadata={"username": user["username"], "role": user["role"]},
        )

        while True:
            try:
                data = await websocket.receive_text()
                message = json.loads(data)
                if not isinstance(message, dict):
                    raise ValueError("message must be an object")

                response = await handle_dashboard_message(connection_id, user, message, session)
                if response:
                    await websocket.send_text(response.to_json())

            except ValueError:
                await websocket.send_text(_error("Invalid JSON").to_json())

    except WebSocketDisconnect:
        logger.debug("dashboard_disconnected", connection_id=connection_id)
    finally:
        await manager.disconnect(connection_id, websocket)
