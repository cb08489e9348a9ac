"""Campaign call queue API endpoints."""

from typing import Annotated, Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.api.v1.auth import get_current_user, require_roles
from voiceops.api.v1.campaigns import load_campaign
from voiceops.db.models import QueueItemDB
from voiceops.db.session import get_session
from voiceops.models.queue import QueueOperationError, QueueStatus
from voiceops.models.user import UserRole
from voiceops.schemas.queue import (
    CancelResponse,
    DispatchResponse,
    EnqueueRequest,
    EnqueueResponse,
    QueueItemResponse,
    QueueStatsResponse,
    RetryResponse,
)
from voiceops.services.call_queue import cancel_queue, enqueue_leads, list_queue_items, retry_failed
from voiceops.services.dependencies import get_dispatcher
from voiceops.services.dispatcher import CampaignDispatcher
from voiceops.services.queue_stats import queue_snapshot

router = APIRouter(prefix="/campaigns/{campaign_id}/queue", tags=["queue"])

QueueOperator = Annotated[
    dict[str, Any],
    Depends(
        require_roles(
            UserRole.ADMIN, UserRole.CLIENT, UserRole.LEAD_MANAGER, UserRole.TELECALLER
        )
    ),
]


def _raise_queue_error(error: QueueOperationError) -> NoReturn:
    raise HTTPException(status_code=error.status_code, detail=error.message) from error


def _item_to_response(row: QueueItemDB) -> QueueItemResponse:
    return QueueItemResponse(
        id=row.id,
        lead_id=row.lead_id,
        priority=row.priority,
        status=row.status.value,
        error_message=row.error_message,
        attempt_count=row.attempt_count,
        call_id=row.call_id,
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
        next_retry_at=row.next_retry_at,
    )


@router.post("", response_model=EnqueueResponse, status_code=status.HTTP_201_CREATED)
async def enqueue(
    campaign_id: str,
    request: EnqueueRequest,
    current_user: QueueOperator,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> EnqueueResponse:
    """
    Queue leads for calling.

    Leads already waiting or in a call are skipped. Earlier selections get a
    higher priority.
    """
    campaign = await load_campaign(session, campaign_id, current_user)
    try:
        result = await enqueue_leads(session, campaign, request.lead_ids)
    except QueueOperationError as e:
        _raise_queue_error(e)
    return EnqueueResponse(**result.to_dict())


@router.get("", response_model=list[QueueItemResponse])
async def list_queue(
    campaign_id: str,
    current_user: Annotated[dict[str, Any], Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_session)],
    status_filter: Annotated[QueueStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[QueueItemResponse]:
    """List queue rows, newest first."""
    await load_campaign(session, campaign_id, current_user)
    rows = await list_queue_items(session, campaign_id, status_filter, limit, offset)
    return [_item_to_response(row) for row in rows]


@router.post("/process", response_model=DispatchResponse)
async def process_queue(
    campaign_id: str,
    current_user: QueueOperator,
    session: Annotated[AsyncSession, Depends(get_session)],
    dispatcher: Annotated[CampaignDispatcher, Depends(get_dispatcher)],
) -> DispatchResponse:
    """Dispatch one batch of due rows."""
    await load_campaign(session, campaign_id, current_user)
    try:
        result = await dispatcher.process_campaign(session, campaign_id)
    except QueueOperationError as e:
        _raise_queue_error(e)
    return DispatchResponse(**result.to_dict())


@router.post("/retry", response_model=RetryResponse)
async def retry_queue(
    campaign_id: str,
    current_user: QueueOperator,
    session: Annotated[AsyncSession, Depends(get_session)],
    dispatcher: Annotated[CampaignDispatcher, Depends(get_dispatcher)],
) -> RetryResponse:
    """Requeue failed rows and dispatch right away."""
    campaign = await load_campaign(session, campaign_id, current_user)
    try:
        reset = await retry_failed(session, campaign)
        result = await dispatcher.process_campaign(session, campaign_id)
    except QueueOperationError as e:
        _raise_queue_error(e)
    return RetryResponse(reset=reset, dispatch=DispatchResponse(**result.to_dict()))


@router.post("/cancel", response_model=CancelResponse)
async def cancel(
    campaign_id: str,
    current_user: QueueOperator,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CancelResponse:
    """Cancel every row that has not started. Running calls continue."""
    await load_campaign(session, campaign_id, current_user)
    cancelled = await cancel_queue(session, campaign_id)
    return CancelResponse(cancelled=cancelled)


@router.get("/stats", response_model=QueueStatsResponse)
async def queue_stats(
    campaign_id: str,
    current_user: Annotated[dict[str, Any], Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> QueueStatsResponse:
    """Current row counts and progress."""
    await load_campaign(session, campaign_id, current_user)
    snapshot = await queue_snapshot(session, campaign_id)
    return QueueStatsResponse(**snapshot)
