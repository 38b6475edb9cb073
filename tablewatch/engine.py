"""
Engine wiring
Builds the detector graph over in-memory stores; Kafka, Redis and MLflow are optional
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from kafka.errors import KafkaError

from .config import (
    BotDetectionConfig,
    CollusionDetectionConfig,
    FraudServiceConfig,
    MultiAccountConfig,
    RiskScoringConfig,
    ServiceSettings,
)
from .database.redis_client import RedisClient
from .detectors.bot_detector import BotDetector
from .detectors.collusion import (
    ChipFlowAnalyzer,
    CollusionDetector,
    DefaultSoftPlayScorer,
    PlayerInteractionGraph,
    SoftPlayScorer,
)
from .detectors.multi_account import MultiAccountDetector
from .detectors.rules import RuleBasedDetector, RuleEngine, default_rule_catalog
from .features import FeatureExtractor
from .messaging.kafka_producer import KafkaAlertProducer, ensure_topic
from .repositories.memory import (
    InMemoryAlertStorage,
    InMemoryFingerprintDatabase,
    InMemoryPlayerStatsStore,
    InMemorySessionStore,
    InMemoryTransferDatabase,
)
from .services.alert_service import AlertAggregator, AlertService
from .services.event_processor import EventProcessor
from .services.fraud_service import FraudService
from .services.risk_scorer import RiskScorer

logger = logging.getLogger(__name__)


def _soft_play_scorer(settings: ServiceSettings, config: CollusionDetectionConfig) -> SoftPlayScorer:
    if settings.soft_play_model_uri:
        from .ml.mlflow_soft_play import MLflowSoftPlayScorer
        return MLflowSoftPlayScorer(settings.soft_play_model_uri)
    return DefaultSoftPlayScorer(config)


class TableWatchEngine:
    """Every component of one running engine"""

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        producer: Optional[KafkaAlertProducer] = None,
        redis_cache: Optional[RedisClient] = None,
        soft_play_scorer: Optional[SoftPlayScorer] = None,
    ):
        self.settings = settings or ServiceSettings()
        settings = self.settings

        # Stores
        self.fingerprint_db = InMemoryFingerprintDatabase()
        self.session_store = InMemorySessionStore()
        self.transfer_db = InMemoryTransferDatabase()
        self.alert_storage = InMemoryAlertStorage()
        self.stats_store = InMemoryPlayerStatsStore()

        # Outbound
        if producer is None and settings.kafka_enabled:
            producer = KafkaAlertProducer(settings.kafka_config())
        self.producer = producer

        if redis_cache is None and settings.redis_cache_enabled:
            redis_cache = RedisClient()
        self.redis_cache = redis_cache

        # Detectors
        collusion_config = CollusionDetectionConfig()
        self.soft_play_scorer = soft_play_scorer or _soft_play_scorer(settings, collusion_config)

        self.feature_extractor = FeatureExtractor()
        self.bot_detector = BotDetector(BotDetectionConfig())
        self.graph = PlayerInteractionGraph()
        self.collusion_detector = CollusionDetector(
            self.graph,
            collusion_config,
            self.soft_play_scorer,
            ChipFlowAnalyzer(collusion_config, self.transfer_db),
        )
        self.multi_account_detector = MultiAccountDetector(
            self.fingerprint_db, self.session_store, MultiAccountConfig()
        )
        self.rule_engine = RuleEngine(
            RuleBasedDetector(default_rule_catalog()), self.alert_storage, self.fingerprint_db
        )

        # Services
        self.risk_scorer = RiskScorer(
            self.bot_detector,
            self.collusion_detector,
            self.multi_account_detector,
            self.alert_storage,
            RiskScoringConfig(cache_ttl_seconds=settings.risk_cache_ttl_seconds),
            redis_cache=self.redis_cache,
        )
        self.alert_service = AlertService(self.alert_storage, producer=self.producer)
        self.alert_aggregator = AlertAggregator(self.alert_storage)

        fraud_config = FraudServiceConfig(detector_timeout_seconds=settings.detector_timeout_seconds)
        self.fraud_service = FraudService(
            self.feature_extractor,
            self.bot_detector,
            self.collusion_detector,
            self.multi_account_detector,
            self.rule_engine,
            self.risk_scorer,
            self.alert_service,
            stats_store=self.stats_store,
            config=fraud_config,
        )
        self.event_processor = EventProcessor(fraud_config.event_buffer_size)

    def health(self) -> Dict[str, Any]:
        scorer_health = getattr(self.soft_play_scorer, "health_check", None)
        return {
            "kafka": "enabled" if self.producer is not None else "disabled",
            "redis": "enabled" if self.redis_cache is not None else "disabled",
            "soft_play_scorer": scorer_health() if scorer_health else {"status": "healthy", "ml_type": "default"},
        }

    async def start(self):
        if self.settings.kafka_enabled:
            try:
                await asyncio.to_thread(
                    ensure_topic, self.settings.kafka_bootstrap_servers, self.settings.alert_topic
                )
            except KafkaError as e:
                logger.warning(f"⚠️ Could not ensure topic {self.settings.alert_topic}: {e}")

        self.event_processor.start(self.fraud_service.handle_event)
        logger.info(
            f"✅ TableWatch engine started "
            f"(kafka={self.producer is not None}, redis={self.redis_cache is not None})"
        )

    async def close(self):
        await self.event_processor.stop()
        if self.producer is not None:
            await self.producer.close()
        if self.redis_cache is not None:
            await self.redis_cache.close()
        logger.info("TableWatch engine stopped")
