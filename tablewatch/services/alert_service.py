"""
Alert Service - Business logic layer
Persists, notifies and publishes alerts; aggregates them for reviewers
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..constants import SEVERITY_CRITICAL, SEVERITY_HIGH
from ..entities import AlertStats, AntiCheatAlert, RiskPlayerSummary
from ..errors import TableWatchError
from ..messaging.kafka_producer import KafkaAlertProducer
from ..repositories.interfaces import AlertStorage

logger = logging.getLogger(__name__)

NOTIFY_SEVERITIES = (SEVERITY_HIGH, SEVERITY_CRITICAL)


class AlertDelivery(BaseModel):
    """What happened to one alert on its way out"""
    alert_id: str
    persisted: bool = False
    notified: bool = False
    published: bool = False
    notification_error: Optional[str] = None
    publish_error: Optional[str] = None


class NotificationService(ABC):
    """Reviewer-facing notification channel"""

    @abstractmethod
    async def send_high_risk_alert(self, alert: AntiCheatAlert):
        pass

    @abstractmethod
    async def send_review_request(self, alert: AntiCheatAlert, reviewer_id: str):
        pass


class LoggingNotificationService(NotificationService):
    """Writes notifications to the log; default when no channel is wired"""

    async def send_high_risk_alert(self, alert: AntiCheatAlert):
        logger.warning(
            f"🚨 {alert.severity.upper()} {alert.alert_type} alert for {alert.player_id} "
            f"(score={alert.score:.2f}, id={alert.id})"
        )

    async def send_review_request(self, alert: AntiCheatAlert, reviewer_id: str):
        logger.info(f"Review requested from {reviewer_id} for alert {alert.id}")


class AlertService:
    """Service for alert business logic"""

    def __init__(
        self,
        storage: AlertStorage,
        notifier: Optional[NotificationService] = None,
        producer: Optional[KafkaAlertProducer] = None,
    ):
        self.storage = storage
        self.notifier = notifier or LoggingNotificationService()
        self.producer = producer

    async def create_alert(
        self, alert: AntiCheatAlert, risk_breakdown: Optional[Dict[str, float]] = None
    ) -> AlertDelivery:
        """
        Persist, notify on high/critical, then publish

        Persistence failures propagate. Notification and publish failures
        are reported on the returned AlertDelivery.
        """
        await self.storage.create_alert(alert)
        delivery = AlertDelivery(alert_id=alert.id, persisted=True)
        logger.info(f"✅ Alert created: {alert.id} ({alert.alert_type}/{alert.severity}) for {alert.player_id}")

        if alert.severity in NOTIFY_SEVERITIES:
            try:
                await self.notifier.send_high_risk_alert(alert)
                delivery.notified = True
            except Exception as e:
                logger.error(f"❌ Notification failed for {alert.id}: {e}")
                delivery.notification_error = str(e)

        await self.publish(alert, delivery, risk_breakdown)
        return delivery

    async def publish(
        self,
        alert: AntiCheatAlert,
        delivery: Optional[AlertDelivery] = None,
        risk_breakdown: Optional[Dict[str, float]] = None,
    ) -> AlertDelivery:
        """Publish an already persisted alert"""
        delivery = delivery or AlertDelivery(alert_id=alert.id, persisted=True)
        if self.producer is None:
            return delivery

        try:
            await self.producer.publish(alert, risk_breakdown)
            delivery.published = True
        except TableWatchError as e:
            logger.error(f"❌ Alert {alert.id} persisted but not published: {e}")
            delivery.publish_error = str(e)
        return delivery

    async def review_alert(
        self, alert_id: str, reviewer_id: str, status: str, notes: Optional[str] = None
    ) -> AntiCheatAlert:
        """Move a pending alert to reviewed/dismissed/confirmed"""
        alert = await self.storage.update_alert_status(alert_id, status, reviewer_id, notes)
        logger.info(f"Alert {alert_id} marked {status} by {reviewer_id}")
        return alert

    async def request_review(self, alert_id: str, reviewer_id: str):
        alert = await self.storage.get_alert(alert_id)
        await self.notifier.send_review_request(alert, reviewer_id)

    async def get_pending_alerts(self, limit: int = 100) -> List[AntiCheatAlert]:
        return await self.storage.get_pending_alerts(limit)

    async def get_player_alerts(self, player_id: str, limit: int = 100) -> List[AntiCheatAlert]:
        return await self.storage.get_player_alerts(player_id, limit)


class AlertAggregator:
    """Summaries over stored alerts"""

    def __init__(self, storage: AlertStorage):
        self.storage = storage

    async def aggregate_summary(self, start: datetime, end: datetime) -> AlertStats:
        return await self.storage.get_alert_stats(start, end)

    async def get_high_risk_players(
        self, start: datetime, end: datetime, min_score: float = 0.75, limit: int = 10
    ) -> List[RiskPlayerSummary]:
        """Players whose strongest alert in range reaches min_score, highest first"""
        alerts = await self.storage.get_alerts_by_time_range(start, end)

        players: Dict[str, RiskPlayerSummary] = {}
        for alert in alerts:
            summary = players.setdefault(
                alert.player_id,
                RiskPlayerSummary(player_id=alert.player_id, agent_id=alert.agent_id),
            )
            summary.alert_count += 1
            summary.risk_score = max(summary.risk_score, alert.score)
            if summary.last_alert_at is None or alert.created_at > summary.last_alert_at:
                summary.last_alert_at = alert.created_at

        ranked = sorted(
            (p for p in players.values() if p.risk_score >= min_score),
            key=lambda p: (p.risk_score, p.alert_count),
            reverse=True,
        )
        return ranked[:limit]
