# tests/test_risk_scorer.py

import pytest
from datetime import timedelta
from types import SimpleNamespace

from tablewatch.config import RiskScoringConfig
from tablewatch.database.redis_client import RedisClient
from tablewatch.entities import CollusionRing, PlayerBehavioralFeatures
from tablewatch.services.risk_scorer import RiskScorer
from tests.factories import NOW, make_alert


class StubBotDetector:
    def __init__(self, score):
        self.score = score

    def detect_bot(self, features):
        return SimpleNamespace(score=self.score)


class StubCollusionDetector:
    def __init__(self, rings=()):
        self.rings = list(rings)

    async def find_collusion_rings(self, min_confidence=0.0, method=None):
        return [r for r in self.rings if r.confidence >= min_confidence]


class StubMultiAccountDetector:
    def __init__(self, score=0.0, error=None):
        self.score = score
        self.error = error
        self.calls = 0

    async def detect_multi_account(self, player_id, now=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return SimpleNamespace(score=self.score)


class BrokenAlertStorage:
    async def get_player_alerts(self, player_id, limit=100):
        raise ConnectionError("alerts db down")


FEATURES = PlayerBehavioralFeatures(player_id="p1")


def ring(members, confidence):
    return CollusionRing(ring_id="ring_0", members=members, density=1.0, total_hands=200, confidence=confidence)


class TestRiskScorer:
    """Tests for weighted risk scoring."""

    @pytest.mark.asyncio
    async def test_weighted_components(self, alert_storage):
        """✅ Overall score is the weighted sum of every component."""
        for i in range(5):
            await alert_storage.create_alert(make_alert(f"a{i}", minutes_ago=10 + i, metadata={"rule": "x"}))

        scorer = RiskScorer(
            StubBotDetector(0.8),
            StubCollusionDetector([ring(["p1", "p2"], 0.9), ring(["p3", "p4"], 1.0)]),
            StubMultiAccountDetector(0.5),
            alert_storage,
        )
        score = await scorer.calculate_risk_score("p1", "agent1", features=FEATURES, now=NOW)

        assert score.bot_score == pytest.approx(0.8)
        assert score.collusion_score == pytest.approx(0.9)
        assert score.multi_account_score == pytest.approx(0.5)
        assert score.rule_violation_score == pytest.approx(0.5)
        assert score.alert_history_score == pytest.approx(0.25)
        assert score.overall_score == pytest.approx(0.24 + 0.225 + 0.10 + 0.075 + 0.025)
        assert score.risk_level == "medium"
        assert score.review_recommended is True
        assert score.flag_count_24h == 5
        assert score.degraded_signals == []
        assert score.breakdown()["collusion"] == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_no_features_means_no_bot_risk(self, alert_storage):
        """✅ Bot component is zero without features."""
        scorer = RiskScorer(StubBotDetector(1.0), StubCollusionDetector(), StubMultiAccountDetector(), alert_storage)
        score = await scorer.calculate_risk_score("p1", now=NOW)

        assert score.bot_score == 0.0
        assert score.overall_score == 0.0
        assert score.risk_level == "low"

    @pytest.mark.asyncio
    async def test_old_alerts_only_count_in_history(self, alert_storage):
        """✅ Alerts older than a day add to history but not to rule violations."""
        await alert_storage.create_alert(make_alert("old", minutes_ago=3 * 24 * 60, metadata={"rule": "x"}))
        scorer = RiskScorer(StubBotDetector(0.0), StubCollusionDetector(), StubMultiAccountDetector(), alert_storage)

        score = await scorer.calculate_risk_score("p1", now=NOW)

        assert score.rule_violation_score == 0.0
        assert score.alert_history_score == pytest.approx(0.4 / 20)
        assert score.flag_count_24h == 0
        assert score.flag_count_7d == 1

    @pytest.mark.asyncio
    async def test_cache_hit_returns_same_object(self, alert_storage):
        """✅ Within the TTL the cached score is returned without recomputing."""
        multi = StubMultiAccountDetector(0.3)
        scorer = RiskScorer(StubBotDetector(0.0), StubCollusionDetector(), multi, alert_storage)

        first = await scorer.calculate_risk_score("p1", "agent1", now=NOW)
        second = await scorer.calculate_risk_score("p1", "agent1", now=NOW + timedelta(seconds=299))

        assert second is first
        assert multi.calls == 1

    @pytest.mark.asyncio
    async def test_cache_is_per_agent(self, alert_storage):
        """✅ Same player under another agent is scored separately."""
        multi = StubMultiAccountDetector(0.3)
        scorer = RiskScorer(StubBotDetector(0.0), StubCollusionDetector(), multi, alert_storage)

        await scorer.calculate_risk_score("p1", "agent1", now=NOW)
        await scorer.calculate_risk_score("p1", "agent2", now=NOW)

        assert multi.calls == 2

    @pytest.mark.asyncio
    async def test_expired_entry_is_recomputed(self, alert_storage):
        """✅ Expired entries are never served."""
        multi = StubMultiAccountDetector(0.3)
        scorer = RiskScorer(StubBotDetector(0.0), StubCollusionDetector(), multi, alert_storage,
                            config=RiskScoringConfig(cache_ttl_seconds=60))

        first = await scorer.calculate_risk_score("p1", now=NOW)
        assert await scorer.get_cached("p1", now=NOW + timedelta(seconds=60)) is None

        second = await scorer.calculate_risk_score("p1", now=NOW + timedelta(seconds=61))
        assert second is not first
        assert multi.calls == 2

    @pytest.mark.asyncio
    async def test_degraded_component_is_not_cached(self, alert_storage):
        """✅ A failing detector counts as zero and the score is recomputed next time."""
        multi = StubMultiAccountDetector(error=RuntimeError("fingerprint db down"))
        scorer = RiskScorer(StubBotDetector(0.5), StubCollusionDetector(), multi, alert_storage)

        score = await scorer.calculate_risk_score("p1", features=FEATURES, now=NOW)
        assert score.degraded_signals == ["multi_account"]
        assert score.multi_account_score == 0.0
        assert score.overall_score == pytest.approx(0.15)

        await scorer.calculate_risk_score("p1", features=FEATURES, now=NOW)
        assert multi.calls == 2

    @pytest.mark.asyncio
    async def test_alert_history_failure_degrades_two_signals(self):
        """✅ Unreachable alert storage zeroes rule and history components."""
        scorer = RiskScorer(StubBotDetector(0.0), StubCollusionDetector(), StubMultiAccountDetector(),
                            BrokenAlertStorage())
        score = await scorer.calculate_risk_score("p1", now=NOW)

        assert score.degraded_signals == ["rule_violation", "alert_history"]
        assert score.flag_count_30d == 0

    @pytest.mark.asyncio
    async def test_invalidate(self, alert_storage):
        """✅ Invalidation drops every agent entry for the player."""
        multi = StubMultiAccountDetector(0.3)
        scorer = RiskScorer(StubBotDetector(0.0), StubCollusionDetector(), multi, alert_storage)

        await scorer.calculate_risk_score("p1", "agent1", now=NOW)
        await scorer.calculate_risk_score("p1", "agent2", now=NOW)
        await scorer.invalidate("p1")

        assert await scorer.get_cached("p1", "agent1", now=NOW) is None
        assert await scorer.get_cached("p1", "agent2", now=NOW) is None

    @pytest.mark.asyncio
    async def test_redis_second_level(self, alert_storage, fake_redis):
        """✅ A fresh scorer picks up a score another instance stored in Redis."""
        redis_cache = RedisClient(url="redis://unused", client=fake_redis)
        writer = RiskScorer(StubBotDetector(0.0), StubCollusionDetector(), StubMultiAccountDetector(0.6),
                            alert_storage, redis_cache=redis_cache)
        stored = await writer.calculate_risk_score("p1", "agent1", now=NOW)
        assert "tablewatch:risk:p1:agent1" in fake_redis.store

        multi = StubMultiAccountDetector(0.0)
        reader = RiskScorer(StubBotDetector(0.0), StubCollusionDetector(), multi, alert_storage,
                            redis_cache=redis_cache)
        loaded = await reader.calculate_risk_score("p1", "agent1", now=NOW + timedelta(seconds=10))

        assert multi.calls == 0
        assert loaded.overall_score == pytest.approx(stored.overall_score)

        await reader.invalidate("p1", "agent1")
        assert "tablewatch:risk:p1:agent1" not in fake_redis.store
