"""Proxy request schemas."""

from typing import Any

from pydantic import BaseModel, Field


class MakeCallRequest(BaseModel):
    """Manual single call to a lead."""

    lead_id: str
    agent_id: str | None = None  # defaults to the lead's campaign agent


class StopCallRequest(BaseModel):
    call_id: str


class AgentConfigRequest(BaseModel):
    """Provider agent configuration, forwarded as is."""

    agent_config: dict[str, Any] = Field(default_factory=dict)
    agent_prompts: dict[str, Any] = Field(default_factory=dict)
    client_id: str | None = None  # local owner, create-agent only


class RecordingUrlResponse(BaseModel):
    url: str
    expires_in: int


class TodayStatsResponse(BaseModel):
    total: int
    completed: int
    connected: int
    failed: int
    in_progress: int
    connection_rate: int
    avg_duration: int
