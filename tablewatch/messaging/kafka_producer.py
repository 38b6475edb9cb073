"""
Kafka alert publisher
Sync mode waits for the broker ack; async mode enqueues onto a bounded queue drained in the background
"""
import asyncio
import contextlib
import json
import logging
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from kafka import KafkaAdminClient, KafkaProducer
from kafka.admin import NewTopic
from kafka.errors import KafkaError, TopicAlreadyExistsError
from pydantic import BaseModel

from ..config import KafkaProducerConfig
from ..constants import ALERT_HEADER_FIELDS
from ..entities import AlertMessage, AntiCheatAlert, utcnow
from ..errors import ProducerClosedError, ProducerModeError, PublishError, QueueFullError

logger = logging.getLogger(__name__)

ERROR_RETENTION = timedelta(hours=1)


class ProducerError(BaseModel):
    time: datetime
    error: str
    alert_id: Optional[str] = None
    player_id: Optional[str] = None


class ProducerStats(BaseModel):
    messages_sent: int = 0
    messages_failed: int = 0
    bytes_sent: int = 0
    last_message_time: Optional[datetime] = None
    queue_depth: int = 0


def _acks(value: str) -> Any:
    return value if value == "all" else int(value)


class KafkaAlertProducer:
    """Publishes AntiCheatAlerts keyed by player_id"""

    def __init__(self, config: Optional[KafkaProducerConfig] = None, producer: Optional[Any] = None):
        self.config = config or KafkaProducerConfig()
        self.topic = self.config.topic
        self._producer = producer if producer is not None else self._create_producer()

        self._stats_lock = threading.Lock()
        self._stats = ProducerStats()
        self._errors: deque = deque(maxlen=self.config.max_errors)

        self._queue: Optional[asyncio.Queue] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._closed = False

    def _create_producer(self) -> KafkaProducer:
        cfg = self.config
        logger.info(f"Connecting to Kafka: {cfg.brokers} (topic={cfg.topic}, async={cfg.async_mode})")

        return KafkaProducer(
            bootstrap_servers=cfg.brokers.split(','),
            key_serializer=lambda k: k.encode('utf-8'),
            value_serializer=lambda v: json.dumps(v).encode('utf-8'),
            acks=_acks(cfg.acks),
            enable_idempotence=cfg.acks == "all",
            retries=cfg.max_retries,
            max_in_flight_requests_per_connection=5,
            compression_type=cfg.compression,
            batch_size=cfg.batch_size,
            linger_ms=cfg.linger_ms,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    @staticmethod
    def build_headers(alert: AntiCheatAlert) -> List[tuple]:
        return [(name, str(getattr(alert, name) or "").encode('utf-8')) for name in ALERT_HEADER_FIELDS]

    def _send_blocking(self, message: AlertMessage, payload: Dict[str, Any], headers: List[tuple]):
        future = self._producer.send(self.topic, key=message.player_id, value=payload, headers=headers)
        future.get(timeout=self.config.send_timeout_seconds)

    async def _send_with_retry(self, message: AlertMessage, headers: List[tuple]):
        cfg = self.config
        payload = message.to_wire()
        size = len(json.dumps(payload).encode('utf-8'))

        attempt = 0
        while True:
            try:
                await asyncio.to_thread(self._send_blocking, message, payload, headers)
                self._record_success(size)
                return
            except KafkaError as e:
                attempt += 1
                if attempt > cfg.max_retries:
                    self._record_failure(e, message)
                    raise PublishError(f"failed to publish alert {message.id}: {e}") from e

                backoff = min(cfg.max_backoff_seconds, cfg.retry_backoff_seconds * 2 ** (attempt - 1))
                logger.warning(
                    f"⚠️ Publish of {message.id} failed (attempt {attempt}/{cfg.max_retries}): {e}. "
                    f"Retrying in {backoff:.2f}s"
                )
                await asyncio.sleep(backoff)

    async def publish_alert(self, alert: AntiCheatAlert, risk_breakdown: Optional[Dict[str, float]] = None):
        """Blocking publish; raises PublishError once retries are exhausted"""
        if self._closed:
            raise ProducerClosedError("producer is closed")
        if self.config.async_mode:
            raise ProducerModeError("producer is not configured for sync mode")

        message = AlertMessage.from_alert(alert, risk_breakdown)
        await self._send_with_retry(message, self.build_headers(alert))

    async def publish_alert_async(self, alert: AntiCheatAlert, risk_breakdown: Optional[Dict[str, float]] = None):
        """Fire-and-forget publish; raises QueueFullError instead of blocking"""
        if self._closed:
            raise ProducerClosedError("producer is closed")
        if not self.config.async_mode:
            raise ProducerModeError("producer is not configured for async mode")

        self._ensure_drain_task()
        message = AlertMessage.from_alert(alert, risk_breakdown)
        try:
            self._queue.put_nowait((message, self.build_headers(alert)))
        except asyncio.QueueFull:
            logger.warning(f"⚠️ Alert queue full, rejecting {alert.id}")
            raise QueueFullError(f"alert queue full ({self.config.queue_size})") from None

    async def publish(self, alert: AntiCheatAlert, risk_breakdown: Optional[Dict[str, float]] = None):
        """Publish in whichever mode the producer was configured for"""
        if self.config.async_mode:
            await self.publish_alert_async(alert, risk_breakdown)
        else:
            await self.publish_alert(alert, risk_breakdown)

    async def publish_batch(
        self,
        alerts: Sequence[AntiCheatAlert],
        risk_breakdowns: Optional[Sequence[Optional[Dict[str, float]]]] = None,
    ):
        risk_breakdowns = risk_breakdowns or []
        for index, alert in enumerate(alerts):
            breakdown = risk_breakdowns[index] if index < len(risk_breakdowns) else None
            try:
                await self.publish(alert, breakdown)
            except PublishError as e:
                raise PublishError(f"failed to publish alert {index}: {e}") from e

    # ------------------------------------------------------------------
    # Background drain
    # ------------------------------------------------------------------

    def _ensure_drain_task(self):
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.config.queue_size)
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())

    async def _drain(self):
        while True:
            message, headers = await self._queue.get()
            try:
                await self._send_with_retry(message, headers)
            except PublishError as e:
                logger.error(f"❌ {e}")
            except Exception as e:
                self._record_failure(e, message)
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _record_success(self, size: int):
        with self._stats_lock:
            self._stats.messages_sent += 1
            self._stats.bytes_sent += size
            self._stats.last_message_time = utcnow()

    def _record_failure(self, error: Exception, message: Optional[AlertMessage] = None):
        with self._stats_lock:
            self._stats.messages_failed += 1
            self._errors.append(ProducerError(
                time=utcnow(),
                error=str(error),
                alert_id=message.id if message else None,
                player_id=message.player_id if message else None,
            ))
        logger.error(f"❌ Kafka publish failed: {error}")

    def get_stats(self) -> ProducerStats:
        with self._stats_lock:
            snapshot = self._stats.model_copy()
        snapshot.queue_depth = self._queue.qsize() if self._queue is not None else 0
        return snapshot

    def get_errors(self) -> List[ProducerError]:
        """Errors from the last hour, oldest first"""
        cutoff = utcnow() - ERROR_RETENTION
        with self._stats_lock:
            return [e.model_copy() for e in self._errors if e.time > cutoff]

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self, drain_timeout: Optional[float] = 10.0):
        """Drain queued alerts, then close the underlying producer; idempotent"""
        if self._closed:
            return
        self._closed = True

        if self._queue is not None and self._drain_task is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"⚠️ {self._queue.qsize()} alerts still queued at shutdown")

        if self._drain_task is not None:
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task
            self._drain_task = None

        await asyncio.to_thread(self._producer.flush)
        await asyncio.to_thread(self._producer.close)
        logger.info("Kafka alert producer closed")


def ensure_topic(brokers: str, topic: str, partitions: int = 3, replication_factor: int = 1):
    """Create the alert topic if it does not already exist"""
    admin = KafkaAdminClient(bootstrap_servers=brokers.split(','))
    try:
        admin.create_topics([
            NewTopic(name=topic, num_partitions=partitions, replication_factor=replication_factor)
        ])
        logger.info(f"✅ Created topic {topic}")
    except TopicAlreadyExistsError:
        logger.info(f"Topic {topic} already exists")
    finally:
        admin.close()
