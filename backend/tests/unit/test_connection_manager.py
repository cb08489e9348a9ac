"""Unit tests for the WebSocket connection manager."""

import json

import pytest

from voiceops.websocket.connection_manager import ConnectionManager, EventType


class FakeWebSocket:
    """Records what the manager sends."""

    def __init__(self, broken: bool = False):
        self.accepted = False
        self.closed = False
        self.broken = broken
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        if self.broken and self.accepted and self.sent:
            raise RuntimeError("socket gone")
        self.sent.append(json.loads(text))

    async def close(self) -> None:
        self.closed = True


class TestConnect:
    """Tests for connect and disconnect."""

    @pytest.mark.asyncio
    async def test_connect_sends_connected_event(self):
        """接続時にconnectedイベントを送信"""
        manager = ConnectionManager()
        socket = FakeWebSocket()

        await manager.connect(socket, "dashboard-1")

        assert socket.accepted
        assert socket.sent[0]["event"] == "connected"
        assert socket.sent[0]["data"] == {"connection_id": "dashboard-1"}
        assert manager.connection_count == 1

    @pytest.mark.asyncio
    async def test_reconnect_replaces_subscriptions(self):
        manager = ConnectionManager()
        await manager.connect(FakeWebSocket(), "dashboard-1")
        manager.subscribe("dashboard-1", "campaign-1")

        await manager.connect(FakeWebSocket(), "dashboard-1")

        assert manager.connection_count == 1
        assert manager.subscribers_of("campaign-1") == []

    @pytest.mark.asyncio
    async def test_disconnect_drops_subscriptions(self):
        manager = ConnectionManager()
        socket = FakeWebSocket()
        await manager.connect(socket, "dashboard-1")
        manager.subscribe("dashboard-1", "campaign-1")

        await manager.disconnect("dashboard-1")

        assert socket.closed
        assert manager.connection_count == 0
        assert manager.subscribers_of("campaign-1") == []

    @pytest.mark.asyncio
    async def test_stale_socket_does_not_drop_its_replacement(self):
        """置き換えられた古いソケットの切断で新しい接続を消さない"""
        manager = ConnectionManager()
        old, new = FakeWebSocket(), FakeWebSocket()
        await manager.connect(old, "dashboard-1")
        await manager.connect(new, "dashboard-1")
        manager.subscribe("dashboard-1", "campaign-1")

        await manager.disconnect("dashboard-1", old)

        assert not new.closed
        assert manager.get_connection("dashboard-1").websocket is new
        assert manager.subscribers_of("campaign-1") == ["dashboard-1"]

        await manager.disconnect("dashboard-1", new)

        assert new.closed
        assert manager.connection_count == 0

    def test_subscribe_unknown_connection(self):
        with pytest.raises(KeyError):
            ConnectionManager().subscribe("nobody", "campaign-1")


class TestCampaignTopics:
    """Tests for per-campaign sequence numbering."""

    @pytest.mark.asyncio
    async def test_seq_increments_per_campaign(self):
        """シーケンス番号はキャンペーンごとに1ずつ増える"""
        manager = ConnectionManager()
        socket = FakeWebSocket()
        await manager.connect(socket, "dashboard-1")
        assert manager.subscribe("dashboard-1", "campaign-1") == 0

        await manager.publish_to_campaign("campaign-1", EventType.QUEUE_STATS_UPDATED, {"pending": 3})
        await manager.publish_to_campaign("campaign-2", EventType.QUEUE_STATS_UPDATED, {"pending": 1})
        await manager.publish_to_campaign("campaign-1", EventType.QUEUE_STATS_UPDATED, {"pending": 2})

        pushed = [message for message in socket.sent if message["event"] == "queue_stats_updated"]
        assert [message["data"]["seq"] for message in pushed] == [1, 2]
        assert [message["data"]["pending"] for message in pushed] == [3, 2]
        assert manager.current_seq("campaign-1") == 2
        assert manager.current_seq("campaign-2") == 1

    @pytest.mark.asyncio
    async def test_publish_without_subscribers_still_advances_seq(self):
        """購読者がいなくてもシーケンスは進む"""
        manager = ConnectionManager()

        delivered = await manager.publish_to_campaign("campaign-1", EventType.QUEUE_STATS_UPDATED, {})

        assert delivered == 0
        assert manager.current_seq("campaign-1") == 1

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_current_seq(self):
        manager = ConnectionManager()
        await manager.publish_to_campaign("campaign-1", EventType.QUEUE_STATS_UPDATED, {})
        await manager.connect(FakeWebSocket(), "dashboard-1")

        assert manager.subscribe("dashboard-1", "campaign-1") == 1

    @pytest.mark.asyncio
    async def test_only_subscribers_receive(self):
        manager = ConnectionManager()
        watching, idle = FakeWebSocket(), FakeWebSocket()
        await manager.connect(watching, "dashboard-1")
        await manager.connect(idle, "dashboard-2")
        manager.subscribe("dashboard-1", "campaign-1")

        delivered = await manager.publish_to_campaign("campaign-1", EventType.QUEUE_STATS_UPDATED, {})

        assert delivered == 1
        assert len(watching.sent) == 2
        assert len(idle.sent) == 1

    @pytest.mark.asyncio
    async def test_broken_socket_is_disconnected(self):
        """送信に失敗した接続は切断される"""
        manager = ConnectionManager()
        await manager.connect(FakeWebSocket(broken=True), "dashboard-1")
        manager.subscribe("dashboard-1", "campaign-1")

        delivered = await manager.publish_to_campaign("campaign-1", EventType.QUEUE_STATS_UPDATED, {})

        assert delivered == 0
        assert manager.get_connection("dashboard-1") is None
        assert manager.subscribers_of("campaign-1") == []

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        manager = ConnectionManager()
        socket = FakeWebSocket()
        await manager.connect(socket, "dashboard-1")
        manager.subscribe("dashboard-1", "campaign-1")
        manager.unsubscribe("dashboard-1", "campaign-1")

        await manager.publish_to_campaign("campaign-1", EventType.QUEUE_STATS_UPDATED, {})

        assert len(socket.sent) == 1
