"""Queue status aggregation and push delivery."""

from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.db.models import QueueItemDB
from voiceops.models.queue import QueueStats, QueueStatus
from voiceops.websocket.connection_manager import EventType, manager

logger = structlog.get_logger(__name__)


async def get_queue_stats(session: AsyncSession, campaign_id: str) -> QueueStats:
    """Count queue rows per status, always straight from the table."""
    stmt = (
        select(QueueItemDB.status, func.count(QueueItemDB.id))
        .where(QueueItemDB.campaign_id == campaign_id)
        .group_by(QueueItemDB.status)
    )
    result = await session.execute(stmt)

    stats = QueueStats()
    for status_value, count in result.all():
        status = status_value if isinstance(status_value, QueueStatus) else QueueStatus(status_value)
        stats.add(status, int(count))
    return stats


async def queue_snapshot(session: AsyncSession, campaign_id: str) -> dict[str, Any]:
    """Stats payload shared by the HTTP endpoint and the WebSocket topic."""
    stats = await get_queue_stats(session, campaign_id)
    return {"campaign_id": campaign_id, **stats.to_dict()}


async def publish_queue_stats(session: AsyncSession, campaign_id: str) -> dict[str, Any]:
    """Recompute the campaign's stats and push them to its subscribers."""
    snapshot = await queue_snapshot(session, campaign_id)
    delivered = await manager.publish_to_campaign(
        campaign_id, EventType.QUEUE_STATS_UPDATED, snapshot
    )
    logger.debug(
        "queue_stats_published",
        campaign_id=campaign_id,
        seq=manager.current_seq(campaign_id),
        subscribers=delivered,
    )
    return snapshot
