"""Campaign dispatcher - turns due queue rows into provider calls."""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from voiceops.config import get_settings
from voiceops.db.models import CallDB, CampaignDB, QueueItemDB
from voiceops.models.campaign import NON_DISPATCHABLE_STATUSES
from voiceops.models.lead import LeadStage
from voiceops.models.queue import CampaignNotFoundError, QueueStatus
from voiceops.services.call_queue import apply_to_row, to_domain
from voiceops.services.queue_stats import publish_queue_stats
from voiceops.services.voice_protocol import (
    CallRequest,
    CallResult,
    VoiceProviderError,
    VoiceProviderProtocol,
)

logger = structlog.get_logger(__name__)


@dataclass
class DispatchItemResult:
    """Per-row outcome of one dispatch."""

    queue_item_id: str
    success: bool
    call_id: str | None = None
    execution_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "queue_item_id": self.queue_item_id,
            "success": self.success,
            "call_id": self.call_id,
            "execution_id": self.execution_id,
            "error": self.error,
        }


@dataclass
class DispatchResult:
    """Counts for a single dispatch invocation."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    active_calls: int = 0
    max_concurrency: int = 0
    message: str = ""
    paused: bool = False
    results: list[DispatchItemResult] = field(default_factory=list)

    def record(self, item: DispatchItemResult) -> None:
        self.results.append(item)
        self.processed += 1
        if item.success:
            self.successful += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "active_calls": self.active_calls,
            "max_concurrency": self.max_concurrency,
            "message": self.message,
            "paused": self.paused,
            "results": [item.to_dict() for item in self.results],
        }


@dataclass
class _PreparedCall:
    row: QueueItemDB
    call: CallDB
    request: CallRequest


class CampaignDispatcher:
    """
    Concurrency-limited campaign dispatcher.

    Each invocation handles at most ``concurrency_level - in_progress`` due
    rows:
    - each row is claimed with a conditional update, then its call record is
      created; rows another dispatch claimed first are skipped
    - calls are placed concurrently, never more than concurrency_level at once
    - outcomes are written back once every placement has returned

    Rows stay in_progress after a successful placement; the call-status
    webhook moves them on. Draining a large queue takes repeated invocations.
    """

    def __init__(
        self,
        provider: VoiceProviderProtocol,
        honor_priority: bool | None = None,
        default_caller_id: str | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            provider: Voice provider used to place calls
            honor_priority: Order due rows by priority before age
            default_caller_id: Caller id for campaigns without their own
        """
        settings = get_settings()
        self.provider = provider
        self.honor_priority = (
            settings.dispatch_honor_priority if honor_priority is None else honor_priority
        )
        self.default_caller_id = default_caller_id or settings.default_caller_id

    @staticmethod
    def calculate_available_slots(concurrency_level: int, active_calls: int) -> int:
        """
        Calculate how many new calls may start.

        Args:
            concurrency_level: Campaign's concurrent call ceiling
            active_calls: Rows already in_progress

        Returns:
            Number of rows to pick up, never negative
        """
        return max(0, concurrency_level - active_calls)

    async def count_active_calls(self, session: AsyncSession, campaign_id: str) -> int:
        result = await session.execute(
            select(func.count(QueueItemDB.id)).where(
                QueueItemDB.campaign_id == campaign_id,
                QueueItemDB.status == QueueStatus.IN_PROGRESS,
            )
        )
        return int(result.scalar_one())

    async def get_due_items(
        self,
        session: AsyncSession,
        campaign_id: str,
        limit: int,
    ) -> list[QueueItemDB]:
        """Pending rows plus retry_pending rows whose retry time has passed."""
        now = datetime.now(timezone.utc)
        stmt = select(QueueItemDB).where(
            QueueItemDB.campaign_id == campaign_id,
            or_(
                QueueItemDB.status == QueueStatus.PENDING,
                and_(
                    QueueItemDB.status == QueueStatus.RETRY_PENDING,
                    or_(
                        QueueItemDB.next_retry_at.is_(None),
                        QueueItemDB.next_retry_at <= now,
                    ),
                ),
            ),
        )
        if self.honor_priority:
            stmt = stmt.order_by(QueueItemDB.priority.desc(), QueueItemDB.created_at.asc())
        else:
            stmt = stmt.order_by(QueueItemDB.created_at.asc())
        result = await session.execute(stmt.limit(limit))
        return list(result.scalars().all())

    async def claim(self, session: AsyncSession, row: QueueItemDB, concurrency_level: int) -> bool:
        """
        Move a due row to in_progress in a single conditional UPDATE.

        The update only matches while the row is still pending or
        retry_pending and the campaign has fewer than ``concurrency_level``
        rows in progress. Returns False when an overlapping dispatch got the
        row or the last free slot first.
        """
        running = aliased(QueueItemDB)
        in_flight = (
            select(func.count(running.id))
            .where(
                running.campaign_id == row.campaign_id,
                running.status == QueueStatus.IN_PROGRESS,
            )
            .scalar_subquery()
        )
        stmt = (
            update(QueueItemDB)
            .where(
                QueueItemDB.id == row.id,
                QueueItemDB.status.in_([QueueStatus.PENDING, QueueStatus.RETRY_PENDING]),
                in_flight < concurrency_level,
            )
            .values(status=QueueStatus.IN_PROGRESS, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    def _fail_row(self, row: QueueItemDB, reason: str) -> DispatchItemResult:
        item = to_domain(row)
        item.fail(reason)
        apply_to_row(item, row)
        logger.info("queue_item_failed", queue_item_id=row.id, reason=reason)
        return DispatchItemResult(queue_item_id=row.id, success=False, error=reason)

    async def _place(
        self,
        semaphore: asyncio.Semaphore,
        request: CallRequest,
    ) -> CallResult | VoiceProviderError:
        async with semaphore:
            try:
                return await self.provider.initiate_call(request)
            except VoiceProviderError as exc:
                return exc

    async def process_campaign(self, session: AsyncSession, campaign_id: str) -> DispatchResult:
        """
        Dispatch one batch of due rows for a campaign.

        Raises:
            CampaignNotFoundError: If the campaign does not exist
        """
        campaign = await session.get(CampaignDB, campaign_id)
        if campaign is None:
            raise CampaignNotFoundError()

        result = DispatchResult(max_concurrency=campaign.concurrency_level)

        if campaign.status in NON_DISPATCHABLE_STATUSES:
            logger.info("dispatch_skipped", campaign_id=campaign_id, status=campaign.status.value)
            result.paused = True
            result.message = f"Campaign is {campaign.status.value}"
            return result

        result.active_calls = await self.count_active_calls(session, campaign_id)
        slots = self.calculate_available_slots(campaign.concurrency_level, result.active_calls)
        if slots <= 0:
            result.message = "Queue is at capacity"
            return result

        due_rows = await self.get_due_items(session, campaign_id, slots)
        if not due_rows:
            result.message = "No pending calls in queue"
            return result

        caller_id = campaign.caller_id or self.default_caller_id
        prepared: list[_PreparedCall] = []

        for row in due_rows:
            if not await self.claim(session, row, campaign.concurrency_level):
                logger.info("queue_item_claim_lost", queue_item_id=row.id, campaign_id=campaign_id)
                continue

            lead = row.lead
            agent = row.agent or campaign.agent
            if lead is None or agent is None:
                result.record(self._fail_row(row, "Missing lead or agent data"))
                continue
            if not caller_id:
                result.record(self._fail_row(row, "No caller ID phone number allocated"))
                continue

            item = to_domain(row)
            item.start()

            call = CallDB(
                id=str(uuid.uuid4()),
                client_id=row.client_id,
                agent_id=agent.id,
                lead_id=lead.id,
                status="initiated",
                call_metadata={
                    "source": "campaign_bulk",
                    "campaign_id": campaign_id,
                    "queue_item_id": row.id,
                    "attempt": item.attempt_count,
                },
            )
            session.add(call)
            item.call_id = call.id
            apply_to_row(item, row)

            prepared.append(
                _PreparedCall(
                    row=row,
                    call=call,
                    request=CallRequest(
                        agent_id=agent.external_agent_id,
                        recipient_phone_number=lead.phone_number,
                        from_phone_number=caller_id,
                        user_data={
                            "lead_id": lead.id,
                            "lead_name": lead.name or "Customer",
                            "call_id": call.id,
                            "queue_item_id": row.id,
                            "campaign_id": campaign_id,
                        },
                    ),
                )
            )

        # Claims and call records are committed before any provider traffic
        await session.commit()

        semaphore = asyncio.Semaphore(max(1, campaign.concurrency_level))
        outcomes = await asyncio.gather(
            *(self._place(semaphore, entry.request) for entry in prepared)
        )

        now = datetime.now(timezone.utc)
        for entry, outcome in zip(prepared, outcomes):
            row, call = entry.row, entry.call
            if isinstance(outcome, VoiceProviderError):
                call.status = "failed"
                call.ended_at = now
                result.record(self._fail_row(row, str(outcome)))
                continue

            call.external_call_id = outcome.execution_id
            call.status = "queued"
            call.started_at = now

            lead = row.lead
            if lead.call_id is None:
                campaign.contacted_leads += 1
            lead.stage = LeadStage.CONTACTED
            lead.call_id = call.id
            lead.call_status = "in_progress"

            result.record(
                DispatchItemResult(
                    queue_item_id=row.id,
                    success=True,
                    call_id=call.id,
                    execution_id=outcome.execution_id,
                )
            )

        await session.commit()

        result.active_calls = await self.count_active_calls(session, campaign_id)
        result.message = f"Processed {result.processed} calls"
        logger.info(
            "campaign_dispatched",
            campaign_id=campaign_id,
            processed=result.processed,
            successful=result.successful,
            failed=result.failed,
            active_calls=result.active_calls,
        )
        await publish_queue_stats(session, campaign_id)
        return result
