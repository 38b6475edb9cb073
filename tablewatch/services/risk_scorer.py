"""
Risk Scorer - weighted player risk with TTL cache
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ..config import RiskScoringConfig
from ..constants import RISK_CRITICAL, RISK_HIGH, RISK_LOW, RISK_MEDIUM
from ..database.redis_client import RedisClient
from ..detectors.bot_detector import BotDetector
from ..detectors.collusion.detector import CollusionDetector
from ..detectors.multi_account import MultiAccountDetector
from ..entities import AntiCheatAlert, PlayerBehavioralFeatures, RiskScore, utcnow
from ..locks import AsyncRWLock
from ..repositories.interfaces import AlertStorage

logger = logging.getLogger(__name__)

ALERT_FETCH_LIMIT = 1000


class RiskScorer:
    """Combines detector signals and alert history into one score per player"""

    def __init__(
        self,
        bot_detector: BotDetector,
        collusion_detector: CollusionDetector,
        multi_account_detector: MultiAccountDetector,
        alert_storage: AlertStorage,
        config: Optional[RiskScoringConfig] = None,
        redis_cache: Optional[RedisClient] = None,
    ):
        self.bot_detector = bot_detector
        self.collusion_detector = collusion_detector
        self.multi_account_detector = multi_account_detector
        self.alert_storage = alert_storage
        self.config = config or RiskScoringConfig()
        self.redis_cache = redis_cache

        self._cache: Dict[str, Tuple[RiskScore, datetime]] = {}
        self._lock = AsyncRWLock()

    @staticmethod
    def cache_key(player_id: str, agent_id: str) -> str:
        return f"{player_id}:{agent_id}"

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.config.cache_ttl_seconds)

    def risk_level(self, score: float) -> str:
        if score >= self.config.critical_threshold:
            return RISK_CRITICAL
        if score >= self.config.flag_threshold:
            return RISK_HIGH
        if score >= self.config.review_threshold:
            return RISK_MEDIUM
        return RISK_LOW

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def get_cached(self, player_id: str, agent_id: str = "", now: Optional[datetime] = None) -> Optional[RiskScore]:
        now = now or utcnow()
        async with self._lock.read():
            entry = self._cache.get(self.cache_key(player_id, agent_id))
        if entry is None:
            return None
        score, expires_at = entry
        return score if now < expires_at else None

    async def _store(self, key: str, score: RiskScore, expires_at: datetime, now: datetime):
        async with self._lock.write():
            for stale in [k for k, (_, exp) in self._cache.items() if exp <= now]:
                del self._cache[stale]
            self._cache[key] = (score, expires_at)

    async def invalidate(self, player_id: str, agent_id: Optional[str] = None):
        """Drop cached scores for a player (every agent when agent_id is None)"""
        async with self._lock.write():
            if agent_id is not None:
                keys = [self.cache_key(player_id, agent_id)]
            else:
                keys = [k for k in self._cache if k.split(":", 1)[0] == player_id]
            for key in keys:
                self._cache.pop(key, None)

        if self.redis_cache is not None:
            for key in keys:
                await self.redis_cache.delete(f"risk:{key}")

    async def _from_redis(self, key: str, now: datetime) -> Optional[RiskScore]:
        if self.redis_cache is None:
            return None
        data = await self.redis_cache.get_cached(f"risk:{key}")
        if not data:
            return None

        score = RiskScore(**data)
        expires_at = score.last_calculated + self.ttl
        if now >= expires_at:
            return None
        await self._store(key, score, expires_at, now)
        return score

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    async def _bot_risk(self, features: Optional[PlayerBehavioralFeatures]) -> float:
        if features is None:
            return 0.0
        result = await asyncio.to_thread(self.bot_detector.detect_bot, features)
        return result.score

    async def _collusion_risk(self, player_id: str) -> float:
        rings = await self.collusion_detector.find_collusion_rings(
            min_confidence=self.config.ring_min_confidence
        )
        return max((ring.confidence for ring in rings if player_id in ring.members), default=0.0)

    async def _multi_account_risk(self, player_id: str, now: datetime) -> float:
        result = await self.multi_account_detector.detect_multi_account(player_id, now=now)
        return result.score

    @staticmethod
    def _count_since(alerts: List[AntiCheatAlert], since: datetime) -> int:
        return sum(1 for alert in alerts if alert.created_at > since)

    def _rule_violation_risk(self, alerts: List[AntiCheatAlert], now: datetime) -> float:
        since = now - timedelta(hours=24)
        violations = sum(1 for a in alerts if "rule" in a.metadata and a.created_at > since)
        return min(1.0, violations / self.config.rule_violation_cap)

    def _alert_history_risk(self, alerts: List[AntiCheatAlert], now: datetime) -> float:
        recent = self._count_since(alerts, now - timedelta(seconds=self.config.recent_alert_window_seconds))
        historical = self._count_since(alerts, now - timedelta(seconds=self.config.historical_alert_window_seconds))
        return min(1.0, (recent * 0.6 + historical * 0.4) / self.config.alert_history_cap)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    async def calculate_risk_score(
        self,
        player_id: str,
        agent_id: str = "",
        features: Optional[PlayerBehavioralFeatures] = None,
        now: Optional[datetime] = None,
    ) -> RiskScore:
        """
        Weighted risk for one player

        Served from cache within the TTL. Failed components count as 0,
        are listed in degraded_signals, and the result is not cached.
        """
        now = now or utcnow()
        key = self.cache_key(player_id, agent_id)

        cached = await self.get_cached(player_id, agent_id, now=now)
        if cached is not None:
            logger.debug(f"🎯 Risk cache HIT: {key}")
            return cached

        from_redis = await self._from_redis(key, now)
        if from_redis is not None:
            return from_redis

        logger.debug(f"❌ Risk cache MISS: {key}")

        bot, collusion, multi_account, alerts = await asyncio.gather(
            self._bot_risk(features),
            self._collusion_risk(player_id),
            self._multi_account_risk(player_id, now),
            self.alert_storage.get_player_alerts(player_id, ALERT_FETCH_LIMIT),
            return_exceptions=True,
        )

        degraded = []
        components = {}
        for name, value in (("bot", bot), ("collusion", collusion), ("multi_account", multi_account)):
            if isinstance(value, BaseException):
                logger.warning(f"⚠️ Risk component {name} failed for {player_id}: {value}")
                degraded.append(name)
                value = 0.0
            components[name] = value

        if isinstance(alerts, BaseException):
            logger.warning(f"⚠️ Alert history unavailable for {player_id}: {alerts}")
            degraded.extend(["rule_violation", "alert_history"])
            alerts = []

        if "rule_violation" in degraded:
            components["rule_violation"] = 0.0
            components["alert_history"] = 0.0
        else:
            components["rule_violation"] = self._rule_violation_risk(alerts, now)
            components["alert_history"] = self._alert_history_risk(alerts, now)

        cfg = self.config
        overall = (
            components["bot"] * cfg.bot_weight
            + components["collusion"] * cfg.collusion_weight
            + components["multi_account"] * cfg.multi_account_weight
            + components["rule_violation"] * cfg.rule_violation_weight
            + components["alert_history"] * cfg.alert_history_weight
        )
        overall = min(1.0, max(0.0, overall))

        score = RiskScore(
            player_id=player_id,
            agent_id=agent_id,
            overall_score=overall,
            bot_score=components["bot"],
            collusion_score=components["collusion"],
            multi_account_score=components["multi_account"],
            rule_violation_score=components["rule_violation"],
            alert_history_score=components["alert_history"],
            last_calculated=now,
            calculated_from=now - timedelta(seconds=cfg.historical_alert_window_seconds),
            calculated_to=now,
            flag_count_24h=self._count_since(alerts, now - timedelta(days=1)),
            flag_count_7d=self._count_since(alerts, now - timedelta(days=7)),
            flag_count_30d=self._count_since(alerts, now - timedelta(days=30)),
            review_recommended=overall >= cfg.review_threshold,
            risk_level=self.risk_level(overall),
            degraded_signals=degraded,
        )

        if not degraded:
            await self._store(key, score, now + self.ttl, now)
            if self.redis_cache is not None:
                await self.redis_cache.set_cached(f"risk:{key}", score, self.config.cache_ttl_seconds)

        return score
