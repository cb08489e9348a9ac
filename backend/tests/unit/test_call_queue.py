"""Unit tests for enqueue, cancel and retry on the call queue."""

import uuid

import pytest
from sqlalchemy import Insert, insert, select, update

from voiceops.db.models import CampaignDB, QueueItemDB
from voiceops.models.queue import (
    ACTIVE_STATUSES,
    AllLeadsAlreadyQueuedError,
    CampaignAccessError,
    CampaignNotFoundError,
    NoAgentAssignedError,
    NoFailedItemsError,
    NoLeadsSelectedError,
    QueueStatus,
)
from voiceops.services.call_queue import (
    cancel_queue,
    enqueue_leads,
    get_campaign_for_user,
    list_queue_items,
    retry_failed,
)


async def rows_for(session, campaign_id: str) -> list[QueueItemDB]:
    result = await session.execute(
        select(QueueItemDB)
        .where(QueueItemDB.campaign_id == campaign_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def set_status(session, campaign_id: str, lead_id: str, status: QueueStatus) -> None:
    await session.execute(
        update(QueueItemDB)
        .where(QueueItemDB.campaign_id == campaign_id, QueueItemDB.lead_id == lead_id)
        .values(status=status)
    )
    await session.commit()


def queue_concurrently(session, fixture, lead_id: str, monkeypatch) -> str:
    """Insert an active row for the lead right before enqueue_leads inserts its own."""
    real_execute = session.execute
    raced_id = str(uuid.uuid4())
    raced = []

    async def execute(statement, *args, **kwargs):
        if isinstance(statement, Insert) and not raced:
            raced.append(lead_id)
            await real_execute(
                insert(QueueItemDB).values(
                    id=raced_id,
                    campaign_id=fixture.id,
                    lead_id=lead_id,
                    client_id=fixture.client_id,
                    priority=1,
                    status=QueueStatus.PENDING,
                    attempt_count=0,
                )
            )
        return await real_execute(statement, *args, **kwargs)

    monkeypatch.setattr(session, "execute", execute)
    return raced_id


class TestEnqueue:
    """Tests for enqueue_leads."""

    @pytest.mark.asyncio
    async def test_enqueue_assigns_priorities_in_selection_order(self, db_session, make_campaign):
        """選択順に優先度が付与される"""
        fixture = await make_campaign(leads=3)
        campaign = await db_session.get(CampaignDB, fixture.id)

        result = await enqueue_leads(db_session, campaign, fixture.lead_ids)

        assert result.queued == 3
        assert result.skipped == 0
        rows = {row.lead_id: row for row in await rows_for(db_session, fixture.id)}
        assert [rows[lead_id].priority for lead_id in fixture.lead_ids] == [3, 2, 1]
        for row in rows.values():
            assert row.status == QueueStatus.PENDING
            assert row.attempt_count == 0
            assert row.agent_id == campaign.agent_id
            assert row.client_id == fixture.client_id

    @pytest.mark.asyncio
    async def test_enqueue_skips_lead_with_active_row(self, db_session, make_campaign):
        """通話中のリードはスキップされ、他のリードは元の選択位置の優先度"""
        fixture = await make_campaign(leads=3)
        l1, l2, l3 = fixture.lead_ids
        campaign = await db_session.get(CampaignDB, fixture.id)

        await enqueue_leads(db_session, campaign, [l2])
        await set_status(db_session, fixture.id, l2, QueueStatus.IN_PROGRESS)

        result = await enqueue_leads(db_session, campaign, [l1, l2, l3])

        assert result.queued == 2
        assert result.skipped == 1
        pending = {
            row.lead_id: row.priority
            for row in await rows_for(db_session, fixture.id)
            if row.status == QueueStatus.PENDING
        }
        assert pending == {l1: 3, l3: 1}

    @pytest.mark.asyncio
    async def test_repeated_enqueue_never_duplicates_active_rows(self, db_session, make_campaign):
        """同じリードを何度追加してもアクティブ行は1つ"""
        fixture = await make_campaign(leads=4)
        campaign = await db_session.get(CampaignDB, fixture.id)

        await enqueue_leads(db_session, campaign, fixture.lead_ids[:2])
        await enqueue_leads(db_session, campaign, fixture.lead_ids[1:])
        with pytest.raises(AllLeadsAlreadyQueuedError):
            await enqueue_leads(db_session, campaign, list(reversed(fixture.lead_ids)))

        rows = await rows_for(db_session, fixture.id)
        active = [row.lead_id for row in rows if row.status in ACTIVE_STATUSES]
        assert sorted(active) == sorted(fixture.lead_ids)

    @pytest.mark.asyncio
    async def test_lead_can_be_requeued_after_terminal_row(self, db_session, make_campaign):
        """完了済みのリードは再度キューに追加できる"""
        fixture = await make_campaign(leads=1)
        lead_id = fixture.lead_ids[0]
        campaign = await db_session.get(CampaignDB, fixture.id)

        await enqueue_leads(db_session, campaign, [lead_id])
        await set_status(db_session, fixture.id, lead_id, QueueStatus.COMPLETED)
        result = await enqueue_leads(db_session, campaign, [lead_id])

        assert result.queued == 1
        statuses = sorted(row.status.value for row in await rows_for(db_session, fixture.id))
        assert statuses == ["completed", "pending"]

    @pytest.mark.asyncio
    async def test_empty_selection_is_rejected(self, db_session, make_campaign):
        fixture = await make_campaign(leads=1)
        campaign = await db_session.get(CampaignDB, fixture.id)
        with pytest.raises(NoLeadsSelectedError):
            await enqueue_leads(db_session, campaign, [])

    @pytest.mark.asyncio
    async def test_leads_of_other_campaign_are_rejected(self, db_session, make_campaign):
        """他キャンペーンのリードは受け付けない"""
        fixture = await make_campaign(leads=1)
        other = await make_campaign(leads=2)
        campaign = await db_session.get(CampaignDB, fixture.id)

        with pytest.raises(NoLeadsSelectedError):
            await enqueue_leads(db_session, campaign, other.lead_ids)
        assert await rows_for(db_session, fixture.id) == []

    @pytest.mark.asyncio
    async def test_campaign_without_agent_is_rejected(self, db_session, make_campaign):
        """エージェント未設定のキャンペーンはエラー"""
        fixture = await make_campaign(leads=2, agent_id=None)
        campaign = await db_session.get(CampaignDB, fixture.id)

        with pytest.raises(NoAgentAssignedError) as exc_info:
            await enqueue_leads(db_session, campaign, fixture.lead_ids)
        assert exc_info.value.status_code == 400
        assert await rows_for(db_session, fixture.id) == []

    @pytest.mark.asyncio
    async def test_all_leads_already_queued_is_a_conflict(self, db_session, make_campaign):
        fixture = await make_campaign(leads=2)
        campaign = await db_session.get(CampaignDB, fixture.id)
        await enqueue_leads(db_session, campaign, fixture.lead_ids)

        with pytest.raises(AllLeadsAlreadyQueuedError) as exc_info:
            await enqueue_leads(db_session, campaign, fixture.lead_ids)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_lead_queued_after_the_check_is_skipped(self, db_session, make_campaign, monkeypatch):
        """確認後に別の投入で入ったリードは挿入時にスキップされる"""
        fixture = await make_campaign(leads=2)
        raced, free = fixture.lead_ids
        campaign = await db_session.get(CampaignDB, fixture.id)
        raced_id = queue_concurrently(db_session, fixture, raced, monkeypatch)

        result = await enqueue_leads(db_session, campaign, fixture.lead_ids)

        assert result.queued == 1
        assert result.skipped == 1
        rows = await rows_for(db_session, fixture.id)
        assert sorted(row.lead_id for row in rows) == sorted([raced, free])
        assert [row.id for row in rows if row.lead_id == raced] == [raced_id]

    @pytest.mark.asyncio
    async def test_every_lead_queued_after_the_check_is_a_conflict(self, db_session, make_campaign, monkeypatch):
        fixture = await make_campaign(leads=1)
        campaign = await db_session.get(CampaignDB, fixture.id)
        raced_id = queue_concurrently(db_session, fixture, fixture.lead_ids[0], monkeypatch)

        with pytest.raises(AllLeadsAlreadyQueuedError):
            await enqueue_leads(db_session, campaign, fixture.lead_ids)

        rows = await rows_for(db_session, fixture.id)
        assert [(row.id, row.status) for row in rows] == [(raced_id, QueueStatus.PENDING)]


class TestCampaignAccess:
    """Tests for get_campaign_for_user."""

    @pytest.mark.asyncio
    async def test_owner_and_sub_users_can_load_campaign(self, db_session, make_campaign, seed):
        fixture = await make_campaign(leads=0)
        for user in (
            {"id": seed.client_a_id, "role": "client", "client_id": None},
            {"id": seed.telecaller_id, "role": "telecaller", "client_id": seed.client_a_id},
            {"id": seed.admin_id, "role": "admin", "client_id": None},
        ):
            campaign = await get_campaign_for_user(db_session, fixture.id, user)
            assert campaign.id == fixture.id

    @pytest.mark.asyncio
    async def test_other_tenant_is_forbidden(self, db_session, make_campaign, seed):
        """他テナントのキャンペーンは403"""
        fixture = await make_campaign(leads=0)
        user = {"id": seed.client_b_id, "role": "client", "client_id": None}
        with pytest.raises(CampaignAccessError) as exc_info:
            await get_campaign_for_user(db_session, fixture.id, user)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_campaign(self, db_session, seed):
        user = {"id": seed.admin_id, "role": "admin", "client_id": None}
        with pytest.raises(CampaignNotFoundError):
            await get_campaign_for_user(db_session, "no-such-campaign", user)


class TestCancel:
    """Tests for cancel_queue."""

    @pytest.mark.asyncio
    async def test_cancel_leaves_running_calls_alone(self, db_session, make_campaign):
        """通話中の行はキャンセルされない"""
        fixture = await make_campaign(leads=4)
        l1, l2, l3, l4 = fixture.lead_ids
        campaign = await db_session.get(CampaignDB, fixture.id)
        await enqueue_leads(db_session, campaign, fixture.lead_ids)
        await set_status(db_session, fixture.id, l2, QueueStatus.IN_PROGRESS)
        await set_status(db_session, fixture.id, l3, QueueStatus.RETRY_PENDING)
        await set_status(db_session, fixture.id, l4, QueueStatus.COMPLETED)

        cancelled = await cancel_queue(db_session, fixture.id)

        assert cancelled == 2
        statuses = {row.lead_id: row.status for row in await rows_for(db_session, fixture.id)}
        assert statuses == {
            l1: QueueStatus.CANCELLED,
            l2: QueueStatus.IN_PROGRESS,
            l3: QueueStatus.CANCELLED,
            l4: QueueStatus.COMPLETED,
        }

    @pytest.mark.asyncio
    async def test_cancel_empty_queue(self, db_session, make_campaign):
        fixture = await make_campaign(leads=1)
        assert await cancel_queue(db_session, fixture.id) == 0


class TestRetry:
    """Tests for retry_failed."""

    @pytest.mark.asyncio
    async def test_retry_resets_failed_rows(self, db_session, make_campaign):
        """FAILEDの行がPENDINGに戻る"""
        fixture = await make_campaign(leads=2)
        campaign = await db_session.get(CampaignDB, fixture.id)
        await enqueue_leads(db_session, campaign, fixture.lead_ids)
        await db_session.execute(
            update(QueueItemDB)
            .where(QueueItemDB.campaign_id == fixture.id)
            .values(status=QueueStatus.FAILED, error_message="Voice API error: 500 - boom")
        )
        await db_session.commit()

        reset = await retry_failed(db_session, campaign)

        assert reset == 2
        for row in await rows_for(db_session, fixture.id):
            assert row.status == QueueStatus.PENDING
            assert row.error_message is None
            assert row.completed_at is None

    @pytest.mark.asyncio
    async def test_retry_skips_lead_that_is_queued_again(self, db_session, make_campaign):
        """既にアクティブ行があるリードの失敗行は再試行しない"""
        fixture = await make_campaign(leads=1)
        lead_id = fixture.lead_ids[0]
        campaign = await db_session.get(CampaignDB, fixture.id)
        await enqueue_leads(db_session, campaign, [lead_id])
        await set_status(db_session, fixture.id, lead_id, QueueStatus.FAILED)
        await enqueue_leads(db_session, campaign, [lead_id])

        reset = await retry_failed(db_session, campaign)

        assert reset == 0
        statuses = sorted(row.status.value for row in await rows_for(db_session, fixture.id))
        assert statuses == ["failed", "pending"]

    @pytest.mark.asyncio
    async def test_retry_without_failed_rows(self, db_session, make_campaign):
        fixture = await make_campaign(leads=1)
        campaign = await db_session.get(CampaignDB, fixture.id)
        await enqueue_leads(db_session, campaign, fixture.lead_ids)

        with pytest.raises(NoFailedItemsError):
            await retry_failed(db_session, campaign)

    @pytest.mark.asyncio
    async def test_retry_requires_agent(self, db_session, make_campaign):
        fixture = await make_campaign(leads=1, agent_id=None)
        campaign = await db_session.get(CampaignDB, fixture.id)
        with pytest.raises(NoAgentAssignedError):
            await retry_failed(db_session, campaign)


class TestListQueueItems:
    @pytest.mark.asyncio
    async def test_filter_by_status(self, db_session, make_campaign):
        fixture = await make_campaign(leads=3)
        campaign = await db_session.get(CampaignDB, fixture.id)
        await enqueue_leads(db_session, campaign, fixture.lead_ids)
        await set_status(db_session, fixture.id, fixture.lead_ids[0], QueueStatus.COMPLETED)

        pending = await list_queue_items(db_session, fixture.id, QueueStatus.PENDING)
        everything = await list_queue_items(db_session, fixture.id)
        first_page = await list_queue_items(db_session, fixture.id, limit=2)

        assert len(pending) == 2
        assert len(everything) == 3
        assert len(first_page) == 2
