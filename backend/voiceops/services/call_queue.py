"""Campaign call queue: enqueue, cancel, retry and outcome application."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.db.models import CampaignDB, CampaignLeadDB, QueueItemDB
from voiceops.models.queue import (
    ACTIVE_STATUS_SQL,
    ACTIVE_STATUSES,
    AllLeadsAlreadyQueuedError,
    CampaignAccessError,
    CampaignNotFoundError,
    EnqueueFailedError,
    NoAgentAssignedError,
    NoFailedItemsError,
    NoLeadsSelectedError,
    QueueItem,
    QueueStatus,
    compute_priorities,
)
from voiceops.models.user import can_access_tenant
from voiceops.services.queue_stats import publish_queue_stats

logger = structlog.get_logger(__name__)

# Columns copied between QueueItemDB rows and QueueItem values
_ITEM_FIELDS = (
    "id",
    "campaign_id",
    "lead_id",
    "client_id",
    "agent_id",
    "priority",
    "status",
    "error_message",
    "attempt_count",
    "call_id",
    "created_at",
    "updated_at",
    "started_at",
    "completed_at",
    "last_attempt_at",
    "next_retry_at",
)


def to_domain(row: QueueItemDB) -> QueueItem:
    """Build the domain value for a queue row."""
    return QueueItem(**{name: getattr(row, name) for name in _ITEM_FIELDS})


def apply_to_row(item: QueueItem, row: QueueItemDB) -> None:
    """Write a domain value's state back onto its row."""
    for name in _ITEM_FIELDS:
        if name == "id":
            continue
        setattr(row, name, getattr(item, name))


@dataclass
class EnqueueResult:
    """Outcome of an enqueue request."""

    queued: int
    skipped: int
    item_ids: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"queued": self.queued, "skipped": self.skipped, "item_ids": self.item_ids}


async def get_campaign_for_user(
    session: AsyncSession,
    campaign_id: str,
    user: dict[str, Any],
) -> CampaignDB:
    """
    Load a campaign the user may work on.

    Raises:
        CampaignNotFoundError: If the campaign does not exist
        CampaignAccessError: If it belongs to another tenant
    """
    campaign = await session.get(CampaignDB, campaign_id)
    if campaign is None:
        raise CampaignNotFoundError()
    if not can_access_tenant(user, campaign.client_id):
        raise CampaignAccessError()
    return campaign


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise EnqueueFailedError(f"Unsupported database dialect: {dialect}")


async def enqueue_leads(
    session: AsyncSession,
    campaign: CampaignDB,
    lead_ids: list[str],
) -> EnqueueResult:
    """
    Queue the selected leads of a campaign.

    Leads that already have an active row are skipped. The insert ignores
    conflicts on the active-lead index, so a concurrent enqueue of the same
    lead cannot produce a second active row.

    Raises:
        NoLeadsSelectedError: Empty selection or no lead of this campaign
        NoAgentAssignedError: Campaign has no agent
        AllLeadsAlreadyQueuedError: Nothing left to insert
        EnqueueFailedError: Storage error
    """
    if not lead_ids:
        raise NoLeadsSelectedError()
    if not campaign.agent_id:
        raise NoAgentAssignedError()

    campaign_id = campaign.id
    priorities = compute_priorities(lead_ids)

    try:
        lead_result = await session.execute(
            select(CampaignLeadDB.id).where(
                CampaignLeadDB.campaign_id == campaign.id,
                CampaignLeadDB.id.in_(list(priorities)),
            )
        )
        valid_ids = set(lead_result.scalars().all())
        if not valid_ids:
            raise NoLeadsSelectedError()

        active_result = await session.execute(
            select(QueueItemDB.lead_id).where(
                QueueItemDB.campaign_id == campaign.id,
                QueueItemDB.lead_id.in_(list(valid_ids)),
                QueueItemDB.status.in_(list(ACTIVE_STATUSES)),
            )
        )
        active_ids = set(active_result.scalars().all())

        remaining = [
            lead_id
            for lead_id in priorities
            if lead_id in valid_ids and lead_id not in active_ids
        ]
        if not remaining:
            raise AllLeadsAlreadyQueuedError()

        now = datetime.now(timezone.utc)
        rows = [
            {
                "id": str(uuid.uuid4()),
                "campaign_id": campaign.id,
                "lead_id": lead_id,
                "client_id": campaign.client_id,
                "agent_id": campaign.agent_id,
                "priority": priorities[lead_id],
                "status": QueueStatus.PENDING,
                "error_message": None,
                "attempt_count": 0,
                "call_id": None,
                "created_at": now,
                "updated_at": now,
                "started_at": None,
                "completed_at": None,
                "last_attempt_at": None,
                "next_retry_at": None,
            }
            for lead_id in remaining
        ]

        table = QueueItemDB.__table__
        stmt = (
            _insert_for(session)(table)
            .values(rows)
            .on_conflict_do_nothing(
                index_elements=["campaign_id", "lead_id"],
                index_where=text(ACTIVE_STATUS_SQL),
            )
            .returning(table.c.id)
        )
        result = await session.execute(stmt)
        inserted = list(result.scalars().all())
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("enqueue_failed", campaign_id=campaign_id, error=str(exc))
        raise EnqueueFailedError(f"Failed to enqueue leads: {exc}") from exc

    if not inserted:
        raise AllLeadsAlreadyQueuedError()

    logger.info(
        "leads_enqueued",
        campaign_id=campaign.id,
        queued=len(inserted),
        skipped=len(priorities) - len(inserted),
    )
    await publish_queue_stats(session, campaign.id)

    return EnqueueResult(
        queued=len(inserted),
        skipped=len(priorities) - len(inserted),
        item_ids=inserted,
    )


async def list_queue_items(
    session: AsyncSession,
    campaign_id: str,
    status: QueueStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[QueueItemDB]:
    """Queue rows of a campaign, newest first."""
    stmt = select(QueueItemDB).where(QueueItemDB.campaign_id == campaign_id)
    if status is not None:
        stmt = stmt.where(QueueItemDB.status == status)
    stmt = stmt.order_by(QueueItemDB.created_at.desc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def cancel_queue(session: AsyncSession, campaign_id: str) -> int:
    """
    Soft-cancel every row that has not been started.

    In-progress calls keep running. Returns the number of cancelled rows.
    """
    now = datetime.now(timezone.utc)
    stmt = (
        update(QueueItemDB)
        .where(
            QueueItemDB.campaign_id == campaign_id,
            QueueItemDB.status.in_([QueueStatus.PENDING, QueueStatus.RETRY_PENDING]),
        )
        .values(status=QueueStatus.CANCELLED, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    cancelled = result.rowcount or 0
    logger.info("queue_cancelled", campaign_id=campaign_id, cancelled=cancelled)
    await publish_queue_stats(session, campaign_id)
    return cancelled


async def retry_failed(session: AsyncSession, campaign: CampaignDB) -> int:
    """
    Reset the campaign's failed rows to pending.

    A failed row whose lead already has an active row stays failed, as does
    every older failed row of a lead once one of them was reset.

    Raises:
        NoAgentAssignedError: Campaign has no agent
        NoFailedItemsError: Campaign has no failed rows
    """
    if not campaign.agent_id:
        raise NoAgentAssignedError()

    failed_result = await session.execute(
        select(QueueItemDB)
        .where(
            QueueItemDB.campaign_id == campaign.id,
            QueueItemDB.status == QueueStatus.FAILED,
        )
        .order_by(QueueItemDB.created_at.desc())
    )
    failed_rows = list(failed_result.scalars().all())
    if not failed_rows:
        raise NoFailedItemsError()

    active_result = await session.execute(
        select(QueueItemDB.lead_id).where(
            QueueItemDB.campaign_id == campaign.id,
            QueueItemDB.status.in_(list(ACTIVE_STATUSES)),
        )
    )
    occupied = set(active_result.scalars().all())

    reset = 0
    for row in failed_rows:
        if row.lead_id in occupied:
            continue
        item = to_domain(row)
        item.retry()
        apply_to_row(item, row)
        occupied.add(row.lead_id)
        reset += 1

    await session.commit()
    logger.info(
        "failed_items_reset",
        campaign_id=campaign.id,
        reset=reset,
        skipped=len(failed_rows) - reset,
    )
    await publish_queue_stats(session, campaign.id)
    return reset


async def apply_call_outcome(
    session: AsyncSession,
    queue_item_id: str,
    connected: bool,
) -> QueueItemDB | None:
    """
    Close or reschedule an in-progress row once its call has ended.

    Rows in any other status are left alone. Returns the updated row, or
    None when nothing changed. The caller commits.
    """
    row = await session.get(QueueItemDB, queue_item_id)
    if row is None:
        logger.warning("queue_item_missing", queue_item_id=queue_item_id)
        return None
    if row.status != QueueStatus.IN_PROGRESS:
        logger.info(
            "call_outcome_ignored",
            queue_item_id=queue_item_id,
            status=row.status.value,
        )
        return None

    item = to_domain(row)
    if connected:
        item.complete()
    else:
        campaign = await session.get(CampaignDB, row.campaign_id)
        max_attempts = campaign.max_attempts if campaign else 1
        retry_delay = campaign.retry_delay_minutes if campaign else 0
        item.record_unanswered(max_attempts, retry_delay)
    apply_to_row(item, row)

    logger.info(
        "call_outcome_applied",
        queue_item_id=queue_item_id,
        campaign_id=row.campaign_id,
        status=row.status.value,
        attempt_count=row.attempt_count,
    )
    return row
