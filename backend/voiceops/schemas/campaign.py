"""Campaign schemas."""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field, field_validator

from voiceops.config import get_settings
from voiceops.models.lead import validate_phone_number

PhoneNumber = Annotated[str, AfterValidator(validate_phone_number)]


class CampaignCreate(BaseModel):
    """Campaign creation request. Unset limits come from the queue settings."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    agent_id: str | None = None
    # Required when an admin creates a campaign on behalf of a client
    client_id: str | None = None
    concurrency_level: int = Field(
        default_factory=lambda: get_settings().default_concurrency_level, ge=1, le=100
    )
    max_attempts: int = Field(default_factory=lambda: get_settings().default_max_attempts, ge=1, le=20)
    retry_delay_minutes: int = Field(
        default_factory=lambda: get_settings().default_retry_delay_minutes, ge=0, le=1440
    )
    caller_id: PhoneNumber | None = None


class CampaignUpdate(BaseModel):
    """Partial campaign settings update. Only agent_id and caller_id may be cleared."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    agent_id: str | None = None
    concurrency_level: int | None = Field(default=None, ge=1, le=100)
    max_attempts: int | None = Field(default=None, ge=1, le=20)
    retry_delay_minutes: int | None = Field(default=None, ge=0, le=1440)
    caller_id: PhoneNumber | None = None

    @field_validator("name", "description", "concurrency_level", "max_attempts", "retry_delay_minutes")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field may not be null")
        return value


class CampaignResponse(BaseModel):
    """Campaign response."""

    id: str
    client_id: str
    agent_id: str | None
    name: str
    description: str
    status: str
    concurrency_level: int
    max_attempts: int
    retry_delay_minutes: int
    has_caller_id: bool
    contacted_leads: int
    lead_count: int
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    completed_at: datetime | None


class LeadCreate(BaseModel):
    """Lead creation request."""

    phone_number: PhoneNumber
    name: str | None = None
    email: str | None = None
    notes: str | None = None


class LeadResponse(BaseModel):
    """Lead response with contact fields redacted for the viewer."""

    id: str
    campaign_id: str
    phone_number: str
    name: str | None
    email: str | None
    stage: str
    call_status: str | None
    created_at: datetime
