"""Unit tests for provider call-status webhooks and queue outcomes."""

import pytest
from sqlalchemy import select

from voiceops.config import get_settings
from voiceops.db.models import CallDB, CampaignDB, CampaignLeadDB, QueueItemDB
from voiceops.models.lead import LeadStage
from voiceops.models.queue import QueueStatus
from voiceops.services.call_outcome import (
    classify_interest,
    is_connected,
    normalize_status,
    payload_duration,
    process_status_webhook,
)
from voiceops.services.call_queue import enqueue_leads
from voiceops.services.dispatcher import CampaignDispatcher
from voiceops.services.voice_mock import MockVoiceProvider


async def dispatched_row(session, fixture) -> QueueItemDB:
    """Enqueue and dispatch the fixture's first lead, return its queue row."""
    campaign = await session.get(CampaignDB, fixture.id)
    await enqueue_leads(session, campaign, fixture.lead_ids[:1])
    await CampaignDispatcher(MockVoiceProvider()).process_campaign(session, fixture.id)
    result = await session.execute(
        select(QueueItemDB)
        .where(QueueItemDB.campaign_id == fixture.id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().one()


def status_payload(call: CallDB, status: str, duration: int = 0, **extra) -> dict:
    return {
        "id": call.external_call_id,
        "status": status,
        "conversation_time": duration,
        "telephony_data": {"duration": duration},
        "context_details": {"recipient_data": {"call_id": call.id}},
        **extra,
    }


async def reload(session, model, key):
    return await session.get(model, key, populate_existing=True)


class TestHelpers:
    """Tests for webhook parsing helpers."""

    def test_normalize_status(self):
        assert normalize_status("Call-Disconnected") == "call_disconnected"
        assert normalize_status(None) == ""

    def test_duration_prefers_telephony(self):
        assert payload_duration({"telephony_data": {"duration": "61.6"}, "conversation_time": 10}) == 61
        assert payload_duration({"conversation_time": 30}) == 30
        assert payload_duration({"telephony_data": {"duration": "n/a"}}) == 0

    @pytest.mark.parametrize(
        ("status", "duration", "expected"),
        [
            ("completed", 45, True),
            ("completed", 44, False),
            ("call_disconnected", 120, True),
            ("no_answer", 120, False),
        ],
    )
    def test_connection_threshold(self, status, duration, expected):
        """45秒以上で接続扱い"""
        assert is_connected(status, duration) is expected


class TestClassifyInterest:
    """Tests for interest classification."""

    def test_negative_phrase_wins_over_positive_word(self):
        """「not interested」は関心ありと判定しない"""
        stage, sentiment = classify_interest("Sorry, I am not interested.", None)
        assert stage == LeadStage.NOT_INTERESTED
        assert sentiment == "negative"

    def test_positive_transcript(self):
        stage, sentiment = classify_interest("Yes, tell me more about the plan", None)
        assert stage == LeadStage.INTERESTED
        assert sentiment == "positive"

    def test_partial_transcript(self):
        stage, sentiment = classify_interest("Maybe, call back next week", None)
        assert stage == LeadStage.PARTIALLY_INTERESTED
        assert sentiment == "neutral"

    def test_extracted_interest_overrides_transcript(self):
        """抽出データの関心度がトランスクリプトより優先"""
        stage, sentiment = classify_interest("not interested", {"interest_level": "High"})
        assert stage == LeadStage.INTERESTED
        assert sentiment == "positive"

    def test_nothing_to_go_on(self):
        assert classify_interest(None, None) == (None, "neutral")


class TestProcessStatusWebhook:
    """Tests for process_status_webhook."""

    @pytest.mark.asyncio
    async def test_connected_call_completes_row(self, db_session, make_campaign):
        """接続した通話で行がCOMPLETED"""
        fixture = await make_campaign(leads=1)
        row = await dispatched_row(db_session, fixture)
        call = await db_session.get(CallDB, row.call_id)

        result = await process_status_webhook(
            db_session,
            status_payload(
                call,
                "completed",
                duration=90,
                transcript="Yes I am interested, please book a demo",
                telephony_data={"duration": 90, "recording_url": "https://rec.example/1.mp3"},
            ),
        )

        assert result.connected is True
        assert result.queue_status == "completed"
        row = await reload(db_session, QueueItemDB, row.id)
        call = await reload(db_session, CallDB, call.id)
        lead = await reload(db_session, CampaignLeadDB, fixture.lead_ids[0])
        assert row.status == QueueStatus.COMPLETED
        assert call.status == "completed"
        assert call.connected is True
        assert call.duration_seconds == 90
        assert call.recording_url == "https://rec.example/1.mp3"
        assert call.sentiment == "positive"
        assert lead.call_status == "connected"
        assert lead.stage == LeadStage.INTERESTED

    @pytest.mark.asyncio
    async def test_short_call_schedules_retry(self, db_session, make_campaign):
        """短い通話は未接続として再試行"""
        fixture = await make_campaign(leads=1, max_attempts=3, retry_delay_minutes=10)
        row = await dispatched_row(db_session, fixture)
        call = await db_session.get(CallDB, row.call_id)

        result = await process_status_webhook(db_session, status_payload(call, "completed", duration=20))

        assert result.connected is False
        assert result.queue_status == "retry_pending"
        row = await reload(db_session, QueueItemDB, row.id)
        lead = await reload(db_session, CampaignLeadDB, fixture.lead_ids[0])
        assert row.status == QueueStatus.RETRY_PENDING
        assert row.next_retry_at is not None
        assert row.error_message == "No answer - retry 2/3 scheduled"
        assert lead.call_status == "not_connected"

    @pytest.mark.asyncio
    async def test_last_attempt_closes_row(self, db_session, make_campaign):
        """最大試行回数で未接続ならMAX_RETRIES_REACHED"""
        fixture = await make_campaign(leads=1, max_attempts=1)
        row = await dispatched_row(db_session, fixture)
        call = await db_session.get(CallDB, row.call_id)

        result = await process_status_webhook(db_session, status_payload(call, "no-answer"))

        assert result.queue_status == "max_retries_reached"
        row = await reload(db_session, QueueItemDB, row.id)
        call = await reload(db_session, CallDB, call.id)
        assert row.status == QueueStatus.MAX_RETRIES_REACHED
        assert call.status == "no_answer"
        assert call.summary == "No answer - call was not picked up"

    @pytest.mark.asyncio
    async def test_progress_updates_leave_queue_alone(self, db_session, make_campaign):
        """途中経過のステータスでは行を変更しない"""
        fixture = await make_campaign(leads=1)
        row = await dispatched_row(db_session, fixture)
        call = await db_session.get(CallDB, row.call_id)

        result = await process_status_webhook(db_session, status_payload(call, "in-progress"))

        assert result.queue_status is None
        assert result.status == "in_progress"
        row = await reload(db_session, QueueItemDB, row.id)
        call = await reload(db_session, CallDB, call.id)
        assert row.status == QueueStatus.IN_PROGRESS
        assert call.started_at is not None

    @pytest.mark.asyncio
    async def test_duplicate_final_webhook_is_ignored(self, db_session, make_campaign):
        """終端状態の行は重複Webhookで変化しない"""
        fixture = await make_campaign(leads=1)
        row = await dispatched_row(db_session, fixture)
        call = await db_session.get(CallDB, row.call_id)

        await process_status_webhook(db_session, status_payload(call, "completed", duration=60))
        second = await process_status_webhook(db_session, status_payload(call, "no-answer"))

        assert second.queue_status is None
        row = await reload(db_session, QueueItemDB, row.id)
        assert row.status == QueueStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_call_found_by_execution_id(self, db_session, make_campaign):
        """内部IDがなくても実行IDで通話を特定"""
        fixture = await make_campaign(leads=1)
        row = await dispatched_row(db_session, fixture)
        call = await db_session.get(CallDB, row.call_id)

        result = await process_status_webhook(
            db_session,
            {"id": call.external_call_id, "status": "completed", "conversation_time": 50},
        )

        assert result.call_id == call.id
        assert result.queue_status == "completed"

    @pytest.mark.asyncio
    async def test_unknown_call_is_acknowledged(self, db_session):
        result = await process_status_webhook(db_session, {"id": "exec-unknown", "status": "completed"})
        assert result.call_id is None
        assert result.to_dict()["success"] is True


class TestStatusWebhookEndpoint:
    """Tests for POST /webhooks/voice/status."""

    @pytest.mark.asyncio
    async def test_webhook_endpoint_applies_outcome(self, client, db_session, make_campaign):
        fixture = await make_campaign(leads=1)
        row = await dispatched_row(db_session, fixture)
        call = await db_session.get(CallDB, row.call_id)

        response = await client.post(
            "/webhooks/voice/status", json=status_payload(call, "completed", duration=75)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["call_id"] == call.id
        assert data["connected"] is True
        assert data["queue_status"] == "completed"

    @pytest.mark.asyncio
    async def test_secret_is_required_when_configured(self, client, monkeypatch):
        """シークレット設定時はヘッダーが必要"""
        monkeypatch.setattr(get_settings(), "voice_webhook_secret", "s3cret")

        missing = await client.post("/webhooks/voice/status", json={"id": "x", "status": "queued"})
        wrong = await client.post(
            "/webhooks/voice/status",
            json={"id": "x", "status": "queued"},
            headers={"X-Webhook-Secret": "nope"},
        )
        right = await client.post(
            "/webhooks/voice/status",
            json={"id": "x", "status": "queued"},
            headers={"X-Webhook-Secret": "s3cret"},
        )

        assert missing.status_code == 401
        assert missing.json() == {"detail": "Invalid webhook secret"}
        assert wrong.status_code == 401
        assert right.status_code == 200
