"""Voice provider proxy: sanitized call data, recordings and agent management."""

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.api.v1.auth import get_optional_user
from voiceops.api.v1.proxy.registry import ActionContext, ActionRegistry
from voiceops.config import get_settings
from voiceops.db.models import CallDB, CampaignDB, CampaignLeadDB, ClientCreditDB, VoiceAgentDB
from voiceops.db.session import get_session
from voiceops.models.user import UserRole, can_access_tenant, tenant_id_for
from voiceops.schemas.proxy import (
    AgentConfigRequest,
    MakeCallRequest,
    RecordingUrlResponse,
    StopCallRequest,
    TodayStatsResponse,
)
from voiceops.services.auth_service import verify_recording_token
from voiceops.services.call_sanitizer import sanitize_call, sanitize_execution
from voiceops.services.dependencies import get_voice_provider
from voiceops.services.recordings import resolve_recording_url, signed_recording_url
from voiceops.services.redaction import encode_for_transport, policy_for_role
from voiceops.services.voice_protocol import CallRequest, VoiceProviderError, VoiceProviderProtocol

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["voice-proxy"])

registry = ActionRegistry("voice-proxy")

CALL_VIEWERS = (
    UserRole.ADMIN,
    UserRole.ENGINEER,
    UserRole.CLIENT,
    UserRole.MONITORING,
    UserRole.LEAD_MANAGER,
)
AGENT_MANAGERS = (UserRole.ADMIN, UserRole.ENGINEER)

MAX_CALLS = 100


def _provider(context: ActionContext) -> VoiceProviderProtocol:
    if context.provider is None:
        raise RuntimeError("voice-proxy actions need a voice provider")
    return context.provider


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="start_date must be an ISO date") from e
    return parsed.astimezone(UTC) if parsed.tzinfo else parsed.replace(tzinfo=UTC)


async def _load_call(context: ActionContext, call_id: str) -> CallDB:
    call = await context.session.get(CallDB, call_id)
    if call is None:
        raise HTTPException(status_code=404, detail="Call not found")
    if not can_access_tenant(context.user, call.client_id):
        raise HTTPException(status_code=403, detail="Forbidden")
    return call


@registry.action("get-calls", *CALL_VIEWERS)
async def get_calls(context: ActionContext) -> list[dict[str, Any]]:
    client_id = context.param("client_id", required=False)
    start_date = _parse_date(context.param("start_date", required=False))
    status_filter = context.param("status", required=False)

    tenant_id = tenant_id_for(context.user)
    if client_id and tenant_id is not None and client_id != tenant_id:
        raise HTTPException(status_code=403, detail="Forbidden")

    stmt = select(CallDB).order_by(CallDB.created_at.desc()).limit(MAX_CALLS)
    if tenant_id is not None:
        stmt = stmt.where(CallDB.client_id == tenant_id)
    elif client_id:
        stmt = stmt.where(CallDB.client_id == client_id)
    if start_date is not None:
        stmt = stmt.where(CallDB.created_at >= start_date)
    if status_filter and status_filter != "all":
        stmt = stmt.where(CallDB.status == status_filter)

    result = await context.session.execute(stmt)
    return [sanitize_call(call) for call in result.scalars().all()]


@registry.action("get-call", *CALL_VIEWERS)
async def get_call(context: ActionContext) -> dict[str, Any]:
    call_id = context.param("call_id")
    call = await _load_call(context, call_id)

    recording_url = None
    if call.recording_url or call.external_call_id:
        recording_url, _ = signed_recording_url(context.request, call.id)

    return {
        **sanitize_call(call),
        "transcript": encode_for_transport(call.transcript),
        "recording_url": recording_url,
    }


@registry.action("get-execution", *AGENT_MANAGERS)
async def get_execution(context: ActionContext) -> dict[str, Any]:
    execution_id = context.param("execution_id")
    raw = await _provider(context).get_execution(execution_id)
    sanitized = sanitize_execution(raw)

    if (raw.get("telephony_data") or {}).get("recording_url"):
        result = await context.session.execute(
            select(CallDB.id).where(CallDB.external_call_id == execution_id)
        )
        call_id = result.scalars().first()
        if call_id:
            sanitized["recording_url"], _ = signed_recording_url(context.request, call_id)
    return sanitized


@registry.action("get-execution-logs", *AGENT_MANAGERS)
async def get_execution_logs(context: ActionContext) -> dict[str, Any]:
    execution_id = context.param("execution_id")
    logs = await _provider(context).get_execution_logs(execution_id)
    return {"execution_id": execution_id, "logs": logs}


@registry.action("get-recording-url", *CALL_VIEWERS)
async def get_recording_url(context: ActionContext) -> RecordingUrlResponse:
    call_id = context.param("call_id")
    call = await _load_call(context, call_id)
    if not call.recording_url and not call.external_call_id:
        raise HTTPException(status_code=404, detail="No recording available")

    url, expires_in = signed_recording_url(context.request, call.id)
    return RecordingUrlResponse(url=url, expires_in=expires_in)


@registry.action("stream-recording", public=True)
async def stream_recording(context: ActionContext) -> Response:
    token = context.request.query_params.get("token")
    if not token:
        raise HTTPException(status_code=401, detail="Token required")

    record_id = verify_recording_token(token)
    if record_id is None:
        raise HTTPException(status_code=401, detail="Token expired or invalid")

    provider = _provider(context)
    url = await resolve_recording_url(context.session, provider, record_id)
    if not url:
        raise HTTPException(status_code=404, detail="Recording not found")

    recording = await provider.fetch_recording(url)
    return Response(
        content=recording.content,
        media_type=recording.content_type,
        headers={"Cache-Control": "private, max-age=300"},
    )


@registry.action("get-today-stats", UserRole.ADMIN)
async def get_today_stats(context: ActionContext) -> TodayStatsResponse:
    midnight = datetime.now(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    result = await context.session.execute(
        select(CallDB.status, CallDB.connected, CallDB.duration_seconds).where(
            CallDB.created_at >= midnight
        )
    )
    rows = result.all()

    total = len(rows)
    connected = sum(1 for row in rows if row.connected)
    total_duration = sum(row.duration_seconds or 0 for row in rows)
    return TodayStatsResponse(
        total=total,
        completed=sum(1 for row in rows if row.status == "completed"),
        connected=connected,
        failed=sum(1 for row in rows if row.status == "failed"),
        in_progress=sum(1 for row in rows if row.status in ("initiated", "queued", "in_progress")),
        connection_rate=round(connected / total * 100) if total else 0,
        avg_duration=round(total_duration / total) if total else 0,
    )


@registry.action("list-agents", *AGENT_MANAGERS)
async def list_agents(context: ActionContext) -> dict[str, Any]:
    agents = await _provider(context).list_agents()
    return {"agents": policy_for_role(context.user.get("role")).redact(agents)}


@registry.action("create-agent", *AGENT_MANAGERS)
async def create_agent(context: ActionContext) -> dict[str, Any]:
    body = await context.body(AgentConfigRequest)
    created = await _provider(context).create_agent(body.model_dump(exclude={"client_id"}))
    external_id = created.get("agent_id")
    if not external_id:
        raise HTTPException(status_code=502, detail="Voice provider returned no agent id")

    agent = VoiceAgentDB(
        id=str(uuid.uuid4()),
        external_agent_id=str(external_id),
        agent_name=str(body.agent_config.get("agent_name") or "Voice agent"),
        client_id=body.client_id,
        engineer_id=context.user["id"] if context.role == UserRole.ENGINEER else None,
    )
    context.session.add(agent)
    await context.session.commit()

    logger.info("agent_created", agent_id=agent.id, client_id=agent.client_id)
    return {"agent_id": agent.id, "external_agent_id": agent.external_agent_id, "status": "created"}


async def _local_agent(context: ActionContext, external_id: str) -> VoiceAgentDB | None:
    result = await context.session.execute(
        select(VoiceAgentDB).where(VoiceAgentDB.external_agent_id == external_id)
    )
    return result.scalars().first()


@registry.action("update-agent", *AGENT_MANAGERS)
async def update_agent(context: ActionContext) -> dict[str, Any]:
    agent_id = context.param("agent_id")
    body = await context.body(AgentConfigRequest)
    updated = await _provider(context).update_agent(agent_id, body.model_dump(exclude={"client_id"}))

    agent = await _local_agent(context, agent_id)
    if agent is not None and body.agent_config.get("agent_name"):
        agent.agent_name = str(body.agent_config["agent_name"])
        await context.session.commit()
    return updated


@registry.action("delete-agent", *AGENT_MANAGERS)
async def delete_agent(context: ActionContext) -> dict[str, Any]:
    agent_id = context.param("agent_id")
    deleted = await _provider(context).delete_agent(agent_id)

    agent = await _local_agent(context, agent_id)
    if agent is not None:
        agent.status = "deleted"
        await context.session.commit()
    return deleted


async def _has_credits(session: AsyncSession, client_id: str) -> bool:
    credit = await session.get(ClientCreditDB, client_id)
    return credit is not None and credit.balance > 0


@registry.action("make-call", UserRole.ADMIN, UserRole.CLIENT, UserRole.TELECALLER)
async def make_call(context: ActionContext) -> dict[str, Any]:
    body = await context.body(MakeCallRequest)
    session = context.session

    lead = await session.get(CampaignLeadDB, body.lead_id)
    if lead is None:
        raise HTTPException(status_code=404, detail="Lead not found")
    if not can_access_tenant(context.user, lead.client_id):
        raise HTTPException(status_code=403, detail="Forbidden")

    if not await _has_credits(session, lead.client_id):
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail="Insufficient credits")

    campaign = await session.get(CampaignDB, lead.campaign_id)
    agent_id = body.agent_id or (campaign.agent_id if campaign else None)
    agent = await session.get(VoiceAgentDB, agent_id) if agent_id else None
    if agent is None:
        raise HTTPException(status_code=400, detail="No agent assigned")
    if agent.client_id != lead.client_id:
        raise HTTPException(status_code=403, detail="Agent belongs to another client")

    caller_id = (campaign.caller_id if campaign else None) or get_settings().default_caller_id
    call = CallDB(
        id=str(uuid.uuid4()),
        client_id=lead.client_id,
        agent_id=agent.id,
        lead_id=lead.id,
        status="initiated",
        call_metadata={"source": "manual", "campaign_id": lead.campaign_id},
    )
    session.add(call)
    await session.commit()

    request = CallRequest(
        agent_id=agent.external_agent_id,
        recipient_phone_number=lead.phone_number,
        from_phone_number=caller_id,
        user_data={"lead_id": lead.id, "lead_name": lead.name or "Customer", "call_id": call.id},
    )
    try:
        placed = await _provider(context).initiate_call(request)
    except VoiceProviderError:
        call.status = "failed"
        call.ended_at = datetime.now(UTC)
        await session.commit()
        raise

    call.external_call_id = placed.execution_id
    call.status = "queued"
    call.started_at = datetime.now(UTC)
    lead.call_id = call.id
    lead.call_status = "in_progress"
    await session.commit()

    logger.info("manual_call_placed", call_id=call.id, lead_id=lead.id, user_id=context.user["id"])
    return {"success": True, "call_id": call.id, "status": call.status}


@registry.action("stop-call", UserRole.ADMIN, UserRole.ENGINEER, UserRole.CLIENT)
async def stop_call(context: ActionContext) -> dict[str, Any]:
    body = await context.body(StopCallRequest)
    call = await _load_call(context, body.call_id)
    if not call.external_call_id:
        raise HTTPException(status_code=400, detail="Call has not been placed")

    await _provider(context).stop_call(call.external_call_id)
    call.status = "canceled"
    call.ended_at = datetime.now(UTC)
    await context.session.commit()

    logger.info("call_stopped", call_id=call.id, user_id=context.user["id"])
    return {"success": True, "call_id": call.id, "status": call.status}


@router.api_route("/voice-proxy", methods=["GET", "POST", "PUT", "DELETE"], response_model=None)
async def voice_proxy(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[dict[str, Any] | None, Depends(get_optional_user)],
    provider: Annotated[VoiceProviderProtocol, Depends(get_voice_provider)],
) -> Any:
    """
    Single entry point for voice data, selected by ``?action=``.

    Provider URLs, costs and internal ids never reach the caller; recordings
    are served through short-lived signed links.
    """
    if not get_settings().voice_configured:
        logger.error("voice_provider_not_configured")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not configured")

    action = request.query_params.get("action")
    context = ActionContext(request=request, session=session, user=user, provider=provider)
    try:
        return await registry.dispatch(action, context)
    except VoiceProviderError as e:
        logger.warning(
            "voice_proxy_upstream_error",
            action=action,
            status_code=e.status_code,
            body=e.body[:500],
        )
        code = e.status_code if 400 <= e.status_code < 600 else status.HTTP_502_BAD_GATEWAY
        raise HTTPException(status_code=code, detail="Voice provider request failed") from e

