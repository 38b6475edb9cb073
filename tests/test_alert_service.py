# tests/test_alert_service.py

import pytest
from datetime import timedelta

from tablewatch.config import KafkaProducerConfig
from tablewatch.errors import AlertNotFoundError, InvalidStatusTransitionError, StorageError
from tablewatch.messaging.kafka_producer import KafkaAlertProducer
from tablewatch.services.alert_service import AlertAggregator, AlertService, NotificationService
from tests.factories import NOW, FakeKafkaProducer, make_alert


class RecordingNotifier(NotificationService):
    def __init__(self, fail=False):
        self.fail = fail
        self.high_risk = []
        self.reviews = []

    async def send_high_risk_alert(self, alert):
        if self.fail:
            raise ConnectionError("pager down")
        self.high_risk.append(alert.id)

    async def send_review_request(self, alert, reviewer_id):
        self.reviews.append((alert.id, reviewer_id))


def producer_for(fake, **overrides):
    config = KafkaProducerConfig(retry_backoff_seconds=0.001, max_backoff_seconds=0.002, **overrides)
    return KafkaAlertProducer(config, producer=fake)


class TestCreateAlert:
    """Tests for alert creation and delivery."""

    @pytest.mark.asyncio
    async def test_medium_alert_is_persisted_and_published(self, alert_storage, fake_kafka):
        """✅ Medium alerts skip notification but are published."""
        notifier = RecordingNotifier()
        service = AlertService(alert_storage, notifier, producer_for(fake_kafka))

        delivery = await service.create_alert(make_alert(), risk_breakdown={"bot": 0.5})

        assert delivery.persisted and delivery.published
        assert delivery.notified is False
        assert notifier.high_risk == []
        assert await alert_storage.get_alert("alert_1")
        assert fake_kafka.sent[0]["value"]["risk_breakdown"] == {"bot": 0.5}

    @pytest.mark.asyncio
    async def test_high_alert_notifies(self, alert_storage):
        """✅ High and critical alerts reach the notifier."""
        notifier = RecordingNotifier()
        service = AlertService(alert_storage, notifier)

        delivery = await service.create_alert(make_alert(severity="critical", score=0.95))

        assert delivery.notified is True
        assert notifier.high_risk == ["alert_1"]
        assert delivery.published is False

    @pytest.mark.asyncio
    async def test_notification_failure_is_reported(self, alert_storage):
        """✅ A failing notifier does not undo persistence."""
        service = AlertService(alert_storage, RecordingNotifier(fail=True))

        delivery = await service.create_alert(make_alert(severity="high", score=0.8))

        assert delivery.persisted is True
        assert delivery.notified is False
        assert delivery.notification_error == "pager down"

    @pytest.mark.asyncio
    async def test_publish_failure_is_reported(self, alert_storage):
        """✅ Stored alert stays stored when the bus is down."""
        service = AlertService(alert_storage, producer=producer_for(FakeKafkaProducer(failures=10), max_retries=1))

        delivery = await service.create_alert(make_alert())

        assert delivery.persisted is True
        assert delivery.published is False
        assert "alert_1" in delivery.publish_error
        assert len(await alert_storage.get_player_alerts("p1")) == 1

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, alert_storage, fake_kafka):
        """✅ Duplicate ids fail loudly and nothing is published."""
        service = AlertService(alert_storage, producer=producer_for(fake_kafka))
        await service.create_alert(make_alert())

        with pytest.raises(StorageError):
            await service.create_alert(make_alert())
        assert len(fake_kafka.sent) == 1


class TestReview:
    """Tests for the review workflow."""

    @pytest.mark.asyncio
    async def test_review_pending_alert(self, alert_storage):
        """✅ Pending alerts move to a terminal status with reviewer and notes."""
        service = AlertService(alert_storage)
        await service.create_alert(make_alert())

        alert = await service.review_alert("alert_1", "rev1", "confirmed", "clear bot")

        assert alert.status == "confirmed"
        assert alert.reviewed_by == "rev1"
        assert alert.notes == "clear bot"
        assert alert.reviewed_at is not None
        assert await service.get_pending_alerts() == []

    @pytest.mark.asyncio
    async def test_terminal_alert_cannot_move(self, alert_storage):
        """✅ Reviewed alerts are final."""
        service = AlertService(alert_storage)
        await service.create_alert(make_alert())
        await service.review_alert("alert_1", "rev1", "dismissed")

        with pytest.raises(InvalidStatusTransitionError):
            await service.review_alert("alert_1", "rev2", "confirmed")

    @pytest.mark.asyncio
    async def test_back_to_pending_is_rejected(self, alert_storage):
        """✅ Pending is not a review outcome."""
        service = AlertService(alert_storage)
        await service.create_alert(make_alert())

        with pytest.raises(InvalidStatusTransitionError):
            await service.review_alert("alert_1", "rev1", "pending")

    @pytest.mark.asyncio
    async def test_unknown_alert(self, alert_storage):
        """✅ Reviewing a missing alert raises AlertNotFoundError."""
        with pytest.raises(AlertNotFoundError):
            await AlertService(alert_storage).review_alert("missing", "rev1", "reviewed")

    @pytest.mark.asyncio
    async def test_request_review(self, alert_storage):
        """✅ Review requests go through the notifier."""
        notifier = RecordingNotifier()
        service = AlertService(alert_storage, notifier)
        await service.create_alert(make_alert())

        await service.request_review("alert_1", "rev9")

        assert notifier.reviews == [("alert_1", "rev9")]

    @pytest.mark.asyncio
    async def test_player_alerts_newest_first(self, alert_storage):
        """✅ Player history is ordered newest first and limited."""
        service = AlertService(alert_storage)
        for i, minutes in enumerate([30, 10, 20]):
            await service.create_alert(make_alert(f"a{i}", minutes_ago=minutes))

        alerts = await service.get_player_alerts("p1", limit=2)
        assert [a.id for a in alerts] == ["a1", "a2"]


class TestAlertAggregator:
    """Tests for alert summaries."""

    @pytest.mark.asyncio
    async def test_summary(self, alert_storage):
        """✅ Counts by type, severity, agent and status."""
        await alert_storage.create_alert(make_alert("a1", alert_type="bot", severity="high", score=0.8))
        await alert_storage.create_alert(make_alert("a2", alert_type="collusion", player_id="p2", agent_id="agent2"))
        await alert_storage.create_alert(make_alert("a3", minutes_ago=3 * 24 * 60))
        await alert_storage.update_alert_status("a2", "dismissed", "rev1")

        stats = await AlertAggregator(alert_storage).aggregate_summary(NOW - timedelta(hours=24), NOW)

        assert stats.total_alerts == 2
        assert stats.by_type == {"bot": 1, "collusion": 1}
        assert stats.by_severity == {"high": 1, "medium": 1}
        assert stats.by_agent == {"agent1": 1, "agent2": 1}
        assert stats.pending_review == 1
        assert stats.dismissed == 1
        assert stats.top_risk_players[0].player_id == "p1"

    @pytest.mark.asyncio
    async def test_high_risk_players(self, alert_storage):
        """✅ Only players whose strongest alert reaches the floor, highest first."""
        await alert_storage.create_alert(make_alert("a1", player_id="p1", score=0.8))
        await alert_storage.create_alert(make_alert("a2", player_id="p1", score=0.3))
        await alert_storage.create_alert(make_alert("a3", player_id="p2", score=0.95))
        await alert_storage.create_alert(make_alert("a4", player_id="p3", score=0.5))

        players = await AlertAggregator(alert_storage).get_high_risk_players(NOW - timedelta(hours=1), NOW)

        assert [p.player_id for p in players] == ["p2", "p1"]
        assert players[1].alert_count == 2
        assert players[1].risk_score == pytest.approx(0.8)
