"""Recording lookup and signed recording links."""

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.config import get_settings
from voiceops.db.models import CallDB, DemoCallDB
from voiceops.services.auth_service import create_recording_token
from voiceops.services.voice_protocol import VoiceProviderError, VoiceProviderProtocol

logger = structlog.get_logger(__name__)


def signed_recording_url(request: Request, record_id: str) -> tuple[str, int]:
    """Short-lived proxy URL for a recording, and its lifetime in seconds."""
    settings = get_settings()
    ttl = settings.recording_token_ttl_seconds
    token = create_recording_token(record_id, ttl)
    base = settings.public_base_url.rstrip("/") + "/" if settings.public_base_url else str(request.base_url)
    return f"{base}api/v1/voice-proxy?action=stream-recording&token={token}", ttl


async def _execution_recording(provider: VoiceProviderProtocol, execution_id: str) -> str | None:
    try:
        execution = await provider.get_execution(execution_id)
    except VoiceProviderError as exc:
        logger.info("recording_execution_unavailable", status_code=exc.status_code)
        return None
    return (execution.get("telephony_data") or {}).get("recording_url")


async def resolve_recording_url(
    session: AsyncSession,
    provider: VoiceProviderProtocol,
    record_id: str,
) -> str | None:
    """
    Real recording URL for a call or demo call id.

    Looks at the local call row, then the provider execution behind it, then
    the demo call of the same id (stored recording, uploaded audio, provider
    execution). The URL never leaves the server.
    """
    call = await session.get(CallDB, record_id)
    if call is not None:
        if call.recording_url:
            return call.recording_url
        if call.external_call_id:
            url = await _execution_recording(provider, call.external_call_id)
            if url:
                return url

    demo_call = await session.get(DemoCallDB, record_id)
    if demo_call is not None:
        url = demo_call.recording_url or demo_call.uploaded_audio_url
        if url:
            return url
        if demo_call.external_call_id:
            return await _execution_recording(provider, demo_call.external_call_id)

    return None
