"""Campaign API endpoints."""

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.api.v1.auth import get_current_user, require_roles
from voiceops.db.models import CampaignDB, CampaignLeadDB, VoiceAgentDB
from voiceops.db.session import get_session
from voiceops.models.campaign import CampaignStatus, InvalidCampaignStateError, next_campaign_status
from voiceops.models.queue import QueueOperationError
from voiceops.models.user import UserRole, role_of, tenant_id_for
from voiceops.schemas.campaign import (
    CampaignCreate,
    CampaignResponse,
    CampaignUpdate,
    LeadCreate,
    LeadResponse,
)
from voiceops.services.call_queue import get_campaign_for_user
from voiceops.services.redaction import policy_for_role

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])

CampaignManager = Annotated[
    dict[str, Any], Depends(require_roles(UserRole.ADMIN, UserRole.CLIENT))
]
LeadEditor = Annotated[
    dict[str, Any],
    Depends(require_roles(UserRole.ADMIN, UserRole.CLIENT, UserRole.LEAD_MANAGER)),
]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _campaign_to_response(campaign: CampaignDB, lead_count: int) -> CampaignResponse:
    """Convert Campaign DB model to response schema."""
    return CampaignResponse(
        id=campaign.id,
        client_id=campaign.client_id,
        agent_id=campaign.agent_id,
        name=campaign.name,
        description=campaign.description,
        status=campaign.status.value,
        concurrency_level=campaign.concurrency_level,
        max_attempts=campaign.max_attempts,
        retry_delay_minutes=campaign.retry_delay_minutes,
        has_caller_id=bool(campaign.caller_id),
        contacted_leads=campaign.contacted_leads,
        lead_count=lead_count,
        created_at=campaign.created_at,
        updated_at=campaign.updated_at,
        started_at=campaign.started_at,
        completed_at=campaign.completed_at,
    )


def _lead_to_response(lead: CampaignLeadDB, viewer: dict[str, Any]) -> LeadResponse:
    """Convert lead DB model to response schema, redacted for the viewer."""
    policy = policy_for_role(viewer.get("role"))
    return LeadResponse(
        id=lead.id,
        campaign_id=lead.campaign_id,
        phone_number=policy.redact_field("phone_number", lead.phone_number),
        name=policy.redact_field("name", lead.name) if lead.name else None,
        email=policy.redact_field("email", lead.email) if lead.email else None,
        stage=lead.stage.value,
        call_status=lead.call_status,
        created_at=lead.created_at,
    )


async def load_campaign(
    session: AsyncSession, campaign_id: str, user: dict[str, Any]
) -> CampaignDB:
    """Campaign visible to the user, or the matching HTTP error."""
    try:
        return await get_campaign_for_user(session, campaign_id, user)
    except QueueOperationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e


async def _get_lead_count(session: AsyncSession, campaign_id: str) -> int:
    result = await session.execute(
        select(func.count(CampaignLeadDB.id)).where(CampaignLeadDB.campaign_id == campaign_id)
    )
    return int(result.scalar_one())


async def _check_agent(session: AsyncSession, agent_id: str, client_id: str) -> None:
    agent = await session.get(VoiceAgentDB, agent_id)
    if agent is None or (agent.client_id and agent.client_id != client_id):
        raise HTTPException(status_code=400, detail="Agent not found for this client")


async def _transition(
    session: AsyncSession, campaign: CampaignDB, action: str
) -> CampaignResponse:
    try:
        new_status = next_campaign_status(campaign.status, action)
    except InvalidCampaignStateError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    now = _utc_now()
    campaign.status = new_status
    campaign.updated_at = now
    if new_status == CampaignStatus.RUNNING and campaign.started_at is None:
        campaign.started_at = now
    if new_status == CampaignStatus.STOPPED:
        campaign.completed_at = now
    await session.commit()
    await session.refresh(campaign)

    logger.info("campaign_status_changed", campaign_id=campaign.id, action=action, status=new_status.value)
    lead_count = await _get_lead_count(session, campaign.id)
    return _campaign_to_response(campaign, lead_count=lead_count)


@router.post("", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    campaign_data: CampaignCreate,
    current_user: CampaignManager,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CampaignResponse:
    """Create a new campaign."""
    if role_of(current_user) == UserRole.CLIENT:
        client_id = current_user["id"]
    elif campaign_data.client_id:
        client_id = campaign_data.client_id
    else:
        raise HTTPException(status_code=400, detail="client_id is required")

    if campaign_data.agent_id:
        await _check_agent(session, campaign_data.agent_id, client_id)

    now = _utc_now()
    campaign = CampaignDB(
        id=str(uuid.uuid4()),
        client_id=client_id,
        agent_id=campaign_data.agent_id,
        name=campaign_data.name,
        description=campaign_data.description,
        status=CampaignStatus.DRAFT,
        concurrency_level=campaign_data.concurrency_level,
        max_attempts=campaign_data.max_attempts,
        retry_delay_minutes=campaign_data.retry_delay_minutes,
        caller_id=campaign_data.caller_id,
        contacted_leads=0,
        created_at=now,
        updated_at=now,
    )
    session.add(campaign)
    await session.commit()
    await session.refresh(campaign)

    logger.info("campaign_created", campaign_id=campaign.id, client_id=client_id)
    return _campaign_to_response(campaign, lead_count=0)


@router.get("", response_model=list[CampaignResponse])
async def list_campaigns(
    current_user: Annotated[dict[str, Any], Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[CampaignResponse]:
    """List campaigns visible to the user."""
    stmt = (
        select(CampaignDB, func.count(CampaignLeadDB.id))
        .outerjoin(CampaignLeadDB, CampaignLeadDB.campaign_id == CampaignDB.id)
        .group_by(CampaignDB.id)
        .order_by(CampaignDB.created_at.desc())
    )
    tenant_id = tenant_id_for(current_user)
    if tenant_id is not None:
        stmt = stmt.where(CampaignDB.client_id == tenant_id)
    result = await session.execute(stmt)
    return [_campaign_to_response(campaign, int(count)) for campaign, count in result.all()]


@router.get("/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(
    campaign_id: str,
    current_user: Annotated[dict[str, Any], Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CampaignResponse:
    """Get campaign by ID."""
    campaign = await load_campaign(session, campaign_id, current_user)
    lead_count = await _get_lead_count(session, campaign_id)
    return _campaign_to_response(campaign, lead_count)


@router.patch("/{campaign_id}", response_model=CampaignResponse)
async def update_campaign(
    campaign_id: str,
    update: CampaignUpdate,
    current_user: CampaignManager,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CampaignResponse:
    """Update campaign settings."""
    campaign = await load_campaign(session, campaign_id, current_user)
    if campaign.status in (CampaignStatus.STOPPED, CampaignStatus.COMPLETED):
        raise HTTPException(
            status_code=400,
            detail=f"Cannot update campaign in {campaign.status.value} status",
        )

    changes = update.model_dump(exclude_unset=True)
    if changes.get("agent_id"):
        await _check_agent(session, changes["agent_id"], campaign.client_id)
    for field_name, value in changes.items():
        setattr(campaign, field_name, value)
    campaign.updated_at = _utc_now()
    await session.commit()
    await session.refresh(campaign)

    lead_count = await _get_lead_count(session, campaign_id)
    return _campaign_to_response(campaign, lead_count)


@router.post("/{campaign_id}/start", response_model=CampaignResponse)
async def start_campaign(
    campaign_id: str,
    current_user: CampaignManager,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CampaignResponse:
    """Start a campaign."""
    campaign = await load_campaign(session, campaign_id, current_user)
    if campaign.status == CampaignStatus.DRAFT and await _get_lead_count(session, campaign_id) == 0:
        raise HTTPException(
            status_code=400,
            detail="Cannot start campaign in draft status: no leads in campaign",
        )
    return await _transition(session, campaign, "start")


@router.post("/{campaign_id}/pause", response_model=CampaignResponse)
async def pause_campaign(
    campaign_id: str,
    current_user: CampaignManager,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CampaignResponse:
    """Pause a running campaign. The dispatcher skips paused campaigns."""
    campaign = await load_campaign(session, campaign_id, current_user)
    return await _transition(session, campaign, "pause")


@router.post("/{campaign_id}/resume", response_model=CampaignResponse)
async def resume_campaign(
    campaign_id: str,
    current_user: CampaignManager,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CampaignResponse:
    """Resume a paused campaign."""
    campaign = await load_campaign(session, campaign_id, current_user)
    return await _transition(session, campaign, "resume")


@router.post("/{campaign_id}/stop", response_model=CampaignResponse)
async def stop_campaign(
    campaign_id: str,
    current_user: CampaignManager,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CampaignResponse:
    """Stop a campaign."""
    campaign = await load_campaign(session, campaign_id, current_user)
    return await _transition(session, campaign, "stop")


@router.post(
    "/{campaign_id}/leads", response_model=LeadResponse, status_code=status.HTTP_201_CREATED
)
async def add_lead(
    campaign_id: str,
    lead_data: LeadCreate,
    current_user: LeadEditor,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> LeadResponse:
    """Add a lead to a campaign."""
    campaign = await load_campaign(session, campaign_id, current_user)

    if campaign.status in [CampaignStatus.STOPPED, CampaignStatus.COMPLETED]:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot add lead to campaign in {campaign.status.value} status",
        )

    existing = await session.execute(
        select(CampaignLeadDB.id).where(
            CampaignLeadDB.campaign_id == campaign_id,
            CampaignLeadDB.phone_number == lead_data.phone_number,
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Phone number already exists in campaign")

    now = _utc_now()
    lead = CampaignLeadDB(
        id=str(uuid.uuid4()),
        campaign_id=campaign_id,
        client_id=campaign.client_id,
        phone_number=lead_data.phone_number,
        name=lead_data.name,
        email=lead_data.email,
        notes=lead_data.notes,
        created_at=now,
        updated_at=now,
    )
    campaign.updated_at = now
    session.add(lead)
    await session.commit()
    await session.refresh(lead)

    return _lead_to_response(lead, current_user)


@router.get("/{campaign_id}/leads", response_model=list[LeadResponse])
async def list_leads(
    campaign_id: str,
    current_user: Annotated[dict[str, Any], Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[LeadResponse]:
    """List all leads in a campaign."""
    await load_campaign(session, campaign_id, current_user)

    result = await session.execute(
        select(CampaignLeadDB)
        .where(CampaignLeadDB.campaign_id == campaign_id)
        .order_by(CampaignLeadDB.created_at)
    )
    leads = result.scalars().all()
    return [_lead_to_response(lead, current_user) for lead in leads]
