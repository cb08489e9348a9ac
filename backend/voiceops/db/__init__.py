"""Database package exports."""

from voiceops.db.base import Base
from voiceops.db.models import (
    CallDB,
    CampaignDB,
    CampaignLeadDB,
    ClientCreditDB,
    DemoCallDB,
    ProfileDB,
    QueueItemDB,
    TaskDB,
    UserRoleDB,
    VoiceAgentDB,
)

__all__ = [
    "Base",
    "CallDB",
    "CampaignDB",
    "CampaignLeadDB",
    "ClientCreditDB",
    "DemoCallDB",
    "ProfileDB",
    "QueueItemDB",
    "TaskDB",
    "UserRoleDB",
    "VoiceAgentDB",
]
