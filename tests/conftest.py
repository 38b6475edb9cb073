# tests/conftest.py

import pytest

from tablewatch.entities import PlayerBehavioralFeatures
from tablewatch.repositories.memory import (
    InMemoryAlertStorage,
    InMemoryFingerprintDatabase,
    InMemoryPlayerStatsStore,
    InMemorySessionStore,
    InMemoryTransferDatabase,
)
from tests.factories import NOW, FakeKafkaProducer, FakeRedis


@pytest.fixture
def now():
    return NOW


# ============================================================================
# Stores
# ============================================================================

@pytest.fixture
def fingerprint_db():
    return InMemoryFingerprintDatabase()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def transfer_db():
    return InMemoryTransferDatabase()


@pytest.fixture
def alert_storage():
    return InMemoryAlertStorage()


@pytest.fixture
def stats_store():
    return InMemoryPlayerStatsStore()


@pytest.fixture
def bot_features():
    """Fast, regular, precise, high-volume play"""
    return PlayerBehavioralFeatures(
        player_id="bot_1",
        avg_action_time=1.2,
        action_time_std_dev=0.15,
        bet_precision=0.97,
        hands_per_hour=180,
        tables_concurrent=25,
        consistency_score=0.92,
    )


@pytest.fixture
def human_features():
    return PlayerBehavioralFeatures(
        player_id="human_1",
        avg_action_time=8.5,
        action_time_std_dev=4.2,
        bet_precision=0.65,
        hands_per_hour=45,
        tables_concurrent=2,
    )


@pytest.fixture
def fake_kafka():
    return FakeKafkaProducer()


@pytest.fixture
def fake_redis():
    return FakeRedis()
