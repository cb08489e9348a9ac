"""Service dependencies for FastAPI dependency injection."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from voiceops.config import get_settings
from voiceops.services.dispatcher import CampaignDispatcher
from voiceops.services.voice_client import VoiceClient
from voiceops.services.voice_mock import MockVoiceProvider
from voiceops.services.voice_protocol import VoiceProviderProtocol


@lru_cache
def get_voice_provider() -> VoiceProviderProtocol:
    """
    Get voice provider instance.

    Returns MockVoiceProvider in development or VoiceClient in production,
    based on the VOICE_USE_MOCK setting.
    """
    settings = get_settings()

    if settings.voice_use_mock:
        return MockVoiceProvider()
    else:
        return VoiceClient()


def get_dispatcher(
    provider: Annotated[VoiceProviderProtocol, Depends(get_voice_provider)],
) -> CampaignDispatcher:
    """Campaign dispatcher bound to the configured voice provider."""
    return CampaignDispatcher(provider)
