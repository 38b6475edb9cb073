"""
Configuration models for detectors and services
Process-level settings are read from environment variables
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def setup_logging(level: Optional[str] = None):
    """Configure root logging once for the process"""
    logging.basicConfig(
        level=getattr(logging, (level or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s'
    )


class BotDetectionConfig(BaseModel):
    """Thresholds and weights for bot scoring"""

    # Feature thresholds
    avg_action_time_threshold: float = 3.0
    action_time_std_dev_threshold: float = 0.5
    bet_precision_threshold: float = 0.95
    hands_per_hour_threshold: float = 100.0
    concurrent_tables_threshold: float = 10.0
    consistency_threshold: float = 0.85

    # Heuristic weights (sum to 1)
    action_time_weight: float = 0.20
    std_dev_weight: float = 0.30
    precision_weight: float = 0.10
    hands_per_hour_weight: float = 0.15
    tables_weight: float = 0.10
    consistency_weight: float = 0.15

    # Blend of the three methods
    heuristic_blend: float = 0.50
    isolation_blend: float = 0.25
    sequential_blend: float = 0.25

    method_trigger_threshold: float = 0.7
    bot_threshold: float = 0.80
    review_threshold: float = 0.60
    min_confidence: float = 0.70

    # Isolation forest
    isolation_trees: int = 100
    isolation_sample_size: int = 256
    isolation_baseline_size: int = 2000
    random_seed: int = 42


class CollusionDetectionConfig(BaseModel):
    """Thresholds and weights for pairwise collusion scoring"""

    # Statistical
    co_occurrence_threshold: int = 50
    seating_pattern_threshold: int = 10
    stake_overlap_threshold: float = 0.7
    arrival_sync_window_seconds: float = 300.0
    departure_sync_window_seconds: float = 300.0

    # Behavioral deltas
    aggression_delta_threshold: float = 0.3
    pot_size_delta_threshold: float = 0.4
    showdown_delta_threshold: float = 0.25
    check_down_rate_threshold: float = 0.8
    vpip_delta_threshold: float = 0.2
    pfr_delta_threshold: float = 0.2
    three_bet_delta_threshold: float = 0.3

    # Chip flow
    chip_transfer_threshold: float = 10000.0
    ev_loss_threshold: float = 0.15
    transfer_frequency_threshold: int = 5
    chip_flow_lookback_days: int = 30

    # Network
    ip_match_threshold: int = 5
    device_match_threshold: int = 2
    network_match_threshold: int = 10

    # Component weights
    co_occurrence_weight: float = 0.10
    seating_weight: float = 0.08
    stake_weight: float = 0.07
    arrival_weight: float = 0.05
    aggression_weight: float = 0.15
    pot_weight: float = 0.10
    showdown_weight: float = 0.10
    chip_transfer_weight: float = 0.20
    ev_loss_weight: float = 0.10
    ip_weight: float = 0.03
    device_weight: float = 0.05
    network_weight: float = 0.02

    # Decision thresholds
    collusion_threshold: float = 0.65
    soft_play_threshold: float = 0.50
    review_threshold: float = 0.35
    critical_threshold: float = 0.85

    # Rings
    min_relationship_hands: int = 10
    ring_edge_weight_threshold: float = 0.3
    ring_min_density: float = 0.5
    ring_min_hands: int = 100
    community_method: str = "louvain"
    random_seed: int = 42


class MultiAccountConfig(BaseModel):
    """Thresholds and weights for account linking"""

    device_cluster_threshold: int = 3
    ip_cluster_threshold: int = 10
    network_cluster_threshold: int = 20

    session_overlap_window_days: int = 30
    min_session_overlap: float = 0.8

    device_similarity: float = 1.0
    ip_similarity: float = 0.7
    network_similarity: float = 0.4
    behavioral_similarity_factor: float = 0.5

    device_match_weight: float = 0.40
    ip_match_weight: float = 0.30
    network_match_weight: float = 0.15
    session_overlap_weight: float = 0.10
    behavioral_weight: float = 0.05

    flag_threshold: float = 0.75
    review_threshold: float = 0.50


class RiskScoringConfig(BaseModel):
    """Weights, windows and cache settings for player risk"""

    bot_weight: float = 0.30
    collusion_weight: float = 0.25
    multi_account_weight: float = 0.20
    rule_violation_weight: float = 0.15
    alert_history_weight: float = 0.10

    recent_alert_window_seconds: int = 24 * 3600
    historical_alert_window_seconds: int = 30 * 24 * 3600

    review_threshold: float = 0.50
    flag_threshold: float = 0.75
    critical_threshold: float = 0.90

    ring_min_confidence: float = 0.5
    rule_violation_cap: int = 10
    alert_history_cap: int = 20

    cache_ttl_seconds: int = 300


class KafkaProducerConfig(BaseModel):
    """Alert publisher settings"""

    brokers: str = "localhost:9092"
    topic: str = "anticheat-alerts"
    acks: str = "all"
    compression: Optional[str] = None
    batch_size: int = 16384
    linger_ms: int = 10

    max_retries: int = 3
    retry_backoff_seconds: float = 0.1
    max_backoff_seconds: float = 2.0
    send_timeout_seconds: float = 10.0

    async_mode: bool = False
    queue_size: int = 1000
    max_errors: int = 100


class FraudServiceConfig(BaseModel):
    """Orchestrator settings"""

    event_buffer_size: int = 1000
    processing_interval_seconds: float = 0.1
    batch_size: int = 50

    enable_bot_detection: bool = True
    enable_collusion_detection: bool = True
    enable_multi_account: bool = True
    enable_rule_engine: bool = True

    high_risk_threshold: float = 0.75
    critical_risk_threshold: float = 0.90

    alert_cooldown_seconds: int = 300
    detector_timeout_seconds: float = 2.0

    feature_window_seconds: int = 3600
    max_actions_per_player: int = 2000
    max_table_partners: int = 9


class ServiceSettings(BaseModel):
    """Process settings resolved from the environment"""

    kafka_bootstrap_servers: str = "localhost:9092"
    alert_topic: str = "anticheat-alerts"
    kafka_enabled: bool = False
    kafka_async: bool = False

    redis_cache_enabled: bool = False
    risk_cache_ttl_seconds: int = 300

    soft_play_model_uri: Optional[str] = None
    detector_timeout_seconds: float = 2.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        return cls(
            kafka_bootstrap_servers=os.getenv('KAFKA_BOOTSTRAP_SERVERS', 'localhost:9092'),
            alert_topic=os.getenv('TABLEWATCH_ALERT_TOPIC', 'anticheat-alerts'),
            kafka_enabled=_env_bool('TABLEWATCH_KAFKA_ENABLED'),
            kafka_async=_env_bool('TABLEWATCH_KAFKA_ASYNC'),
            redis_cache_enabled=_env_bool('TABLEWATCH_REDIS_CACHE'),
            risk_cache_ttl_seconds=int(os.getenv('TABLEWATCH_RISK_CACHE_TTL_SECONDS', '300')),
            soft_play_model_uri=os.getenv('MLFLOW_SOFT_PLAY_MODEL_URI') or None,
            detector_timeout_seconds=float(os.getenv('TABLEWATCH_DETECTOR_TIMEOUT_SECONDS', '2.0')),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
        )

    def kafka_config(self) -> KafkaProducerConfig:
        return KafkaProducerConfig(
            brokers=self.kafka_bootstrap_servers,
            topic=self.alert_topic,
            async_mode=self.kafka_async,
        )
