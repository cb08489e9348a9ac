"""Secure data proxy: masked reads of profiles, calls, tasks and demo calls."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.api.v1.auth import get_optional_user
from voiceops.api.v1.proxy.registry import ActionContext, ActionRegistry
from voiceops.db.models import CallDB, DemoCallDB, ProfileDB, TaskDB, UserRoleDB
from voiceops.db.session import get_session
from voiceops.models.user import UserRole, tenant_id_for
from voiceops.services.recordings import signed_recording_url
from voiceops.services.redaction import policy_for_role, to_display_profile

router = APIRouter(tags=["secure-data-proxy"])

registry = ActionRegistry("secure-data-proxy")

MAX_ROWS = 500


def _profile_to_dict(profile: ProfileDB) -> dict[str, Any]:
    return {
        "id": profile.id,
        "username": profile.username,
        "role": profile.role.role.value if profile.role else None,
        "client_id": profile.client_id,
        "is_active": profile.is_active,
        "full_name": profile.full_name,
        "email": profile.email,
        "phone": profile.phone,
        "created_at": profile.created_at,
    }


async def _profiles(context: ActionContext, role: UserRole | None = None) -> list[dict[str, Any]]:
    stmt = select(ProfileDB).order_by(ProfileDB.created_at.desc())
    if role is not None:
        stmt = stmt.join(UserRoleDB, UserRoleDB.user_id == ProfileDB.id).where(UserRoleDB.role == role)
    result = await context.session.execute(stmt)
    policy = policy_for_role(context.user.get("role"))
    return [to_display_profile(_profile_to_dict(profile), policy) for profile in result.scalars().all()]


def _limit(context: ActionContext) -> int:
    raw = context.param("limit", required=False)
    if not raw:
        return 100
    try:
        value = int(raw)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="limit must be an integer") from e
    return max(1, min(value, MAX_ROWS))


@registry.action("profiles", UserRole.ADMIN)
async def profiles(context: ActionContext) -> list[dict[str, Any]]:
    return await _profiles(context)


@registry.action("clients", UserRole.ADMIN, UserRole.ENGINEER)
async def clients(context: ActionContext) -> list[dict[str, Any]]:
    return await _profiles(context, UserRole.CLIENT)


@registry.action("engineers", UserRole.ADMIN)
async def engineers(context: ActionContext) -> list[dict[str, Any]]:
    return await _profiles(context, UserRole.ENGINEER)


@registry.action("calls", UserRole.ADMIN, UserRole.CLIENT, UserRole.MONITORING, UserRole.LEAD_MANAGER)
async def calls(context: ActionContext) -> list[dict[str, Any]]:
    client_id = context.param("client_id", required=False)
    tenant_id = tenant_id_for(context.user)
    if client_id and tenant_id is not None and client_id != tenant_id:
        raise HTTPException(status_code=403, detail="Forbidden")

    stmt = select(CallDB).order_by(CallDB.created_at.desc()).limit(_limit(context))
    if tenant_id is not None:
        stmt = stmt.where(CallDB.client_id == tenant_id)
    elif client_id:
        stmt = stmt.where(CallDB.client_id == client_id)
    result = await context.session.execute(stmt)

    rows = [
        {
            "id": call.id,
            "agent_id": call.agent_id,
            "agent_name": call.agent.agent_name if call.agent else None,
            "client_id": call.client_id,
            "lead_id": call.lead_id,
            "status": call.status,
            "connected": call.connected,
            "duration_seconds": call.duration_seconds,
            "sentiment": call.sentiment,
            "summary": call.summary,
            "transcript": call.transcript,
            "has_recording": bool(call.recording_url),
            "external_call_id": call.external_call_id,
            "started_at": call.started_at,
            "ended_at": call.ended_at,
            "created_at": call.created_at,
        }
        for call in result.scalars().all()
    ]
    return policy_for_role(context.user.get("role")).redact(rows)


def _assigned_to(context: ActionContext) -> str | None:
    """Engineers only see their own work; admins may filter by assignee."""
    if context.role == UserRole.ENGINEER:
        return context.user["id"]
    return context.param("assigned_to", required=False)


@registry.action("tasks", UserRole.ADMIN, UserRole.ENGINEER)
async def tasks(context: ActionContext) -> list[dict[str, Any]]:
    stmt = select(TaskDB).order_by(TaskDB.created_at.desc())
    assigned_to = _assigned_to(context)
    if assigned_to:
        stmt = stmt.where(TaskDB.assigned_to == assigned_to)
    status_filter = context.param("status", required=False)
    if status_filter:
        stmt = stmt.where(TaskDB.status == status_filter)
    result = await context.session.execute(stmt)

    rows = [
        {
            "id": task.id,
            "title": task.title,
            "description": task.description,
            "status": task.status,
            "assigned_to": task.assigned_to,
            "agent_id": task.agent_id,
            "selected_demo_call_id": task.selected_demo_call_id,
            "admin_notes": task.admin_notes,
            "created_at": task.created_at,
            "agent": (
                {
                    "agent_name": task.agent.agent_name,
                    "external_agent_id": task.agent.external_agent_id,
                }
                if task.agent
                else None
            ),
        }
        for task in result.scalars().all()
    ]
    return policy_for_role(context.user.get("role")).redact(rows)


@registry.action("demo_calls", UserRole.ADMIN, UserRole.ENGINEER)
async def demo_calls(context: ActionContext) -> list[dict[str, Any]]:
    stmt = (
        select(DemoCallDB)
        .join(TaskDB, TaskDB.id == DemoCallDB.task_id)
        .order_by(DemoCallDB.created_at.desc())
    )
    assigned_to = _assigned_to(context)
    if assigned_to:
        stmt = stmt.where(TaskDB.assigned_to == assigned_to)
    status_filter = context.param("status", required=False)
    if status_filter:
        stmt = stmt.where(DemoCallDB.status == status_filter)
    result = await context.session.execute(stmt)

    rows = []
    for demo_call in result.scalars().all():
        has_recording = bool(demo_call.recording_url or demo_call.uploaded_audio_url)
        rows.append(
            {
                "id": demo_call.id,
                "task_id": demo_call.task_id,
                "task_title": demo_call.task.title,
                "is_selected": demo_call.task.selected_demo_call_id == demo_call.id,
                "agent_id": demo_call.agent_id,
                "phone_number": demo_call.phone_number,
                "status": demo_call.status,
                "duration_seconds": demo_call.duration_seconds,
                "transcript": demo_call.transcript,
                "external_call_id": demo_call.external_call_id,
                "has_recording": has_recording,
                "recording_url": (
                    signed_recording_url(context.request, demo_call.id)[0] if has_recording else None
                ),
                "started_at": demo_call.started_at,
                "ended_at": demo_call.ended_at,
                "created_at": demo_call.created_at,
            }
        )
    return policy_for_role(context.user.get("role")).redact(rows)


@router.get("/secure-data-proxy", response_model=None)
async def secure_data_proxy(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[dict[str, Any] | None, Depends(get_optional_user)],
) -> Any:
    """
    Masked reads selected by ``?action=``.

    Phone numbers, emails and provider ids are masked, free text is
    transport-encoded, and profile rows only carry display fields.
    """
    context = ActionContext(request=request, session=session, user=user)
    return await registry.dispatch(request.query_params.get("action"), context)
