"""Call queue schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EnqueueRequest(BaseModel):
    """Leads to queue, in selection order."""

    lead_ids: list[str] = Field(default_factory=list, max_length=5000)


class EnqueueResponse(BaseModel):
    queued: int
    skipped: int
    item_ids: list[str]


class QueueItemResponse(BaseModel):
    """Queue row."""

    id: str
    lead_id: str
    priority: int
    status: str
    error_message: str | None
    attempt_count: int
    call_id: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    next_retry_at: datetime | None


class QueueStatsResponse(BaseModel):
    """Per-status row counts for a campaign."""

    campaign_id: str
    pending: int
    in_progress: int
    completed: int
    failed: int
    retry_pending: int
    max_retries_reached: int
    cancelled: int
    total: int
    progress: float
    is_active: bool


class DispatchItemResponse(BaseModel):
    queue_item_id: str
    success: bool
    call_id: str | None = None
    execution_id: str | None = None
    error: str | None = None


class DispatchResponse(BaseModel):
    """Result of one dispatch invocation."""

    processed: int
    successful: int
    failed: int
    active_calls: int
    max_concurrency: int
    message: str
    paused: bool = False
    results: list[DispatchItemResponse] = Field(default_factory=list)


class RetryResponse(BaseModel):
    reset: int
    dispatch: DispatchResponse


class CancelResponse(BaseModel):
    cancelled: int


class CallStatusWebhook(BaseModel):
    """Provider call-status payload. Unknown fields are kept."""

    model_config = {"extra": "allow"}

    id: str | int | None = None
    status: str | None = None
    conversation_time: float | None = None
    transcript: str | None = None
    telephony_data: dict[str, Any] | None = None
    context_details: dict[str, Any] | None = None
    extracted_data: dict[str, Any] | None = None
