"""
Fraud Service - per-action orchestration
Fans detectors out concurrently, joins, decides and raises alerts
"""
import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Awaitable, Deque, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from ..config import FraudServiceConfig
from ..constants import (
    ALERT_BOT,
    ALERT_COLLUSION,
    ALERT_MULTI_ACCOUNT,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
)
from ..detectors.bot_detector import BotDetectionResult, BotDetector
from ..detectors.collusion.detector import CollusionDetector, CollusionResult
from ..detectors.multi_account import MultiAccountDetector, MultiAccountResult
from ..detectors.rules import RuleEngine
from ..entities import (
    AntiCheatAlert,
    HandHistory,
    PlayerAction,
    PlayerStats,
    RiskScore,
    utcnow,
)
from ..features import FeatureExtractor
from ..locks import AsyncRWLock
from ..repositories.interfaces import PlayerStatsStore
from .alert_service import AlertService
from .event_processor import (
    EVENT_HAND_COMPLETE,
    EVENT_PLAYER_ACTION,
    EVENT_PLAYER_LEAVE,
    FraudEvent,
)
from .risk_scorer import RiskScorer

logger = logging.getLogger(__name__)

MAX_HANDS_PER_PLAYER = 500


class FraudDetectionResult(BaseModel):
    player_id: str
    agent_id: str = ""
    timestamp: datetime
    requires_action: bool = False
    recommended_actions: List[str] = Field(default_factory=list)
    bot_detection: Optional[BotDetectionResult] = None
    collusion_detection: List[CollusionResult] = Field(default_factory=list)
    multi_account_detection: Optional[MultiAccountResult] = None
    rule_alerts: List[AntiCheatAlert] = Field(default_factory=list)
    risk_score: Optional[RiskScore] = None
    alerts_generated: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)


class FraudMetrics(BaseModel):
    total_events_processed: int = 0
    bot_alerts_generated: int = 0
    collusion_alerts_generated: int = 0
    multi_account_alerts_generated: int = 0
    rule_alerts_generated: int = 0
    alerts_suppressed: int = 0
    high_risk_players: int = 0
    critical_risk_players: int = 0
    detector_errors: int = 0
    detector_timeouts: int = 0
    last_processed_at: Optional[datetime] = None


class FraudService:
    """Runs every detector on each incoming action"""

    def __init__(
        self,
        feature_extractor: FeatureExtractor,
        bot_detector: BotDetector,
        collusion_detector: CollusionDetector,
        multi_account_detector: MultiAccountDetector,
        rule_engine: RuleEngine,
        risk_scorer: RiskScorer,
        alert_service: AlertService,
        stats_store: Optional[PlayerStatsStore] = None,
        config: Optional[FraudServiceConfig] = None,
    ):
        self.feature_extractor = feature_extractor
        self.bot_detector = bot_detector
        self.collusion_detector = collusion_detector
        self.multi_account_detector = multi_account_detector
        self.rule_engine = rule_engine
        self.risk_scorer = risk_scorer
        self.alert_service = alert_service
        self.stats_store = stats_store
        self.config = config or FraudServiceConfig()

        self._actions: Dict[str, Deque[PlayerAction]] = {}
        self._hands: Dict[str, Deque[HandHistory]] = {}
        self._tables: Dict[str, Dict[str, datetime]] = {}
        self._state_lock = AsyncRWLock()

        self._cooldowns: Dict[Tuple[str, str], datetime] = {}
        self._cooldown_lock = AsyncRWLock()

        self._metrics = FraudMetrics()
        self._high_risk: Set[str] = set()
        self._critical_risk: Set[str] = set()

    @property
    def feature_window(self) -> timedelta:
        return timedelta(seconds=self.config.feature_window_seconds)

    # ------------------------------------------------------------------
    # Player state
    # ------------------------------------------------------------------

    async def _record_action(
        self, action: PlayerAction, now: datetime
    ) -> Tuple[List[PlayerAction], List[HandHistory], List[str]]:
        """Append to the player's window; returns the window, hands and table partners"""
        since = now - self.feature_window

        async with self._state_lock.write():
            window = self._actions.setdefault(
                action.player_id, deque(maxlen=self.config.max_actions_per_player)
            )
            window.append(action)

            seated = self._tables.setdefault(action.table_id, {})
            seated[action.player_id] = action.timestamp

            actions = list(window)
            hands = list(self._hands.get(action.player_id, ()))
            partners = sorted(
                (p for p, seen in seated.items() if p != action.player_id and seen > since),
                key=lambda p: seated[p],
                reverse=True,
            )

        return actions, hands, partners[:self.config.max_table_partners]

    async def record_hand(self, hand: HandHistory):
        """Fold a completed hand into the interaction graph and per-player history"""
        for edge in self.collusion_detector.graph.edges_from_hand(hand):
            await self.collusion_detector.graph.add_interaction_edge(edge)

        async with self._state_lock.write():
            seated = self._tables.setdefault(hand.table_id, {})
            for player_id in hand.participant_ids:
                history = self._hands.setdefault(player_id, deque(maxlen=MAX_HANDS_PER_PLAYER))
                history.append(hand)
                seated[player_id] = max(seated.get(player_id, hand.completed_at), hand.completed_at)

    async def leave_table(self, player_id: str, table_id: str):
        async with self._state_lock.write():
            seated = self._tables.get(table_id)
            if seated is not None:
                seated.pop(player_id, None)
                if not seated:
                    del self._tables[table_id]

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def _collusion_checks(self, player_id: str, partners: List[str], now: datetime) -> List[CollusionResult]:
        results = await asyncio.gather(*(
            self.collusion_detector.detect_collusion(player_id, partner, now) for partner in partners
        ))
        return [r for r in results if r.hands_analyzed > 0]

    async def _rule_checks(self, action: PlayerAction, now: datetime) -> List[AntiCheatAlert]:
        stats = None
        if self.stats_store is not None:
            stats = await self.stats_store.get_player_stats(action.player_id)
        stats = stats or PlayerStats(player_id=action.player_id)
        return await self.rule_engine.process_player_action(action, stats, now=now)

    async def _run_detectors(self, tasks: Dict[str, Awaitable[Any]]) -> Tuple[Dict[str, Any], Dict[str, str]]:
        timeout = self.config.detector_timeout_seconds
        names = list(tasks)
        outcomes = await asyncio.gather(
            *(asyncio.wait_for(tasks[name], timeout=timeout) for name in names),
            return_exceptions=True,
        )

        results, errors = {}, {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, asyncio.TimeoutError):
                logger.warning(f"⚠️ Detector {name} timed out after {timeout}s")
                errors[name] = f"timed out after {timeout}s"
                self._metrics.detector_timeouts += 1
            elif isinstance(outcome, BaseException):
                logger.warning(f"⚠️ Detector {name} failed: {outcome!r}")
                errors[name] = str(outcome) or type(outcome).__name__
                self._metrics.detector_errors += 1
            else:
                results[name] = outcome
        return results, errors

    async def process_player_action(
        self, action: PlayerAction, now: Optional[datetime] = None
    ) -> FraudDetectionResult:
        """
        Full detection pass for one action

        Each detector runs as its own task with a deadline; a failure or
        timeout is recorded in `errors` and the remaining results are kept.
        """
        now = now or utcnow()
        cfg = self.config
        self._metrics.total_events_processed += 1
        self._metrics.last_processed_at = now

        actions, hands, partners = await self._record_action(action, now)
        features = await asyncio.to_thread(
            self.feature_extractor.extract_features,
            action.player_id, actions, self.feature_window, hands, now,
        )

        tasks: Dict[str, Awaitable[Any]] = {}
        if cfg.enable_bot_detection:
            tasks["bot"] = asyncio.to_thread(self.bot_detector.detect_bot, features)
        if cfg.enable_collusion_detection and partners:
            tasks["collusion"] = self._collusion_checks(action.player_id, partners, now)
        if cfg.enable_multi_account:
            tasks["multi_account"] = self.multi_account_detector.detect_multi_account(action.player_id, now=now)
        if cfg.enable_rule_engine:
            tasks["rules"] = self._rule_checks(action, now)
        tasks["risk"] = self.risk_scorer.calculate_risk_score(
            action.player_id, action.agent_id, features=features, now=now
        )

        results, errors = await self._run_detectors(tasks)

        result = FraudDetectionResult(
            player_id=action.player_id,
            agent_id=action.agent_id,
            timestamp=now,
            bot_detection=results.get("bot"),
            collusion_detection=results.get("collusion", []),
            multi_account_detection=results.get("multi_account"),
            rule_alerts=results.get("rules", []),
            risk_score=results.get("risk"),
            errors=errors,
        )

        self._track_risk(result.risk_score)
        result.requires_action = self.requires_action(result)
        result.recommended_actions = self.recommended_actions(result)

        breakdown = result.risk_score.breakdown() if result.risk_score else None
        await self._publish_rule_alerts(result, breakdown)
        if result.requires_action:
            await self._generate_alerts(action, result, breakdown, now)

        return result

    def _track_risk(self, risk: Optional[RiskScore]):
        if risk is None:
            return
        if risk.overall_score >= self.config.critical_risk_threshold:
            self._critical_risk.add(risk.player_id)
        elif risk.overall_score >= self.config.high_risk_threshold:
            self._high_risk.add(risk.player_id)
        self._metrics.high_risk_players = len(self._high_risk)
        self._metrics.critical_risk_players = len(self._critical_risk)

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def requires_action(self, result: FraudDetectionResult) -> bool:
        threshold = self.config.high_risk_threshold

        if result.bot_detection and result.bot_detection.score >= threshold:
            return True
        if any(c.score >= threshold for c in result.collusion_detection):
            return True
        if result.multi_account_detection and result.multi_account_detection.score >= threshold:
            return True
        if any(a.severity in (SEVERITY_HIGH, SEVERITY_CRITICAL) for a in result.rule_alerts):
            return True
        return bool(result.risk_score and result.risk_score.overall_score >= threshold)

    def recommended_actions(self, result: FraudDetectionResult) -> List[str]:
        threshold = self.config.high_risk_threshold
        actions = []

        if result.bot_detection and result.bot_detection.score >= threshold:
            actions.append(f"CAPTCHA verification for player {result.player_id}")
            actions.append("Flag for manual review")

        if result.multi_account_detection and result.multi_account_detection.score >= threshold:
            actions.append("Device fingerprint verification")
            actions.append("Multi-account investigation")

        for alert in result.rule_alerts:
            if alert.severity == SEVERITY_CRITICAL:
                actions.append(f"Immediate review required: {alert.alert_type}")

        return actions

    def severity_for(self, score: float) -> str:
        if score >= self.config.critical_risk_threshold:
            return SEVERITY_CRITICAL
        if score >= self.config.high_risk_threshold:
            return SEVERITY_HIGH
        return SEVERITY_MEDIUM

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def _claim_cooldown(self, player_id: str, alert_type: str, now: datetime) -> bool:
        """True when no alert of this type was raised for the player within the cooldown"""
        key = (player_id, alert_type)
        cooldown = timedelta(seconds=self.config.alert_cooldown_seconds)

        async with self._cooldown_lock.write():
            last = self._cooldowns.get(key)
            if last is not None and now - last < cooldown:
                return False
            self._cooldowns[key] = now
            return True

    async def _release_cooldown(self, player_id: str, alert_type: str, claimed_at: datetime):
        key = (player_id, alert_type)
        async with self._cooldown_lock.write():
            if self._cooldowns.get(key) == claimed_at:
                del self._cooldowns[key]

    async def _publish_rule_alerts(self, result: FraudDetectionResult, breakdown: Optional[Dict[str, float]]):
        for alert in result.rule_alerts:
            self._metrics.rule_alerts_generated += 1
            await self.alert_service.publish(alert, risk_breakdown=breakdown)

    def _build_alerts(self, action: PlayerAction, result: FraudDetectionResult, now: datetime) -> List[AntiCheatAlert]:
        common = dict(
            player_id=action.player_id,
            table_id=action.table_id,
            hand_id=action.hand_id,
            agent_id=action.agent_id,
            club_id=action.club_id,
            created_at=now,
        )
        alerts = []

        bot = result.bot_detection
        if bot and bot.is_bot:
            alerts.append(AntiCheatAlert(
                id=f"bot_{action.player_id}_{time.time_ns()}",
                alert_type=ALERT_BOT,
                severity=self.severity_for(bot.score),
                score=bot.score,
                evidence=list(bot.reasons),
                metadata={"confidence": bot.confidence, "triggered_methods": list(bot.triggered_methods)},
                **common,
            ))

        for collusion in result.collusion_detection:
            if not collusion.is_collusion:
                continue
            alerts.append(AntiCheatAlert(
                id=f"collusion_{collusion.player_a}_{collusion.player_b}_{time.time_ns()}",
                alert_type=ALERT_COLLUSION,
                severity=self.severity_for(collusion.score),
                score=collusion.score,
                evidence=[f"[{e.severity}] {e.description}" for e in collusion.evidence],
                metadata={
                    "player_a": collusion.player_a,
                    "player_b": collusion.player_b,
                    "collusion_type": collusion.collusion_type,
                    "confidence": collusion.confidence,
                },
                **common,
            ))

        multi = result.multi_account_detection
        if multi and multi.is_multi_account:
            alerts.append(AntiCheatAlert(
                id=f"multi_account_{action.player_id}_{time.time_ns()}",
                alert_type=ALERT_MULTI_ACCOUNT,
                severity=self.severity_for(multi.score),
                score=multi.score,
                evidence=list(multi.evidence),
                metadata={"related_accounts": [r.player_id for r in multi.related_accounts]},
                **common,
            ))

        return alerts

    async def _generate_alerts(
        self,
        action: PlayerAction,
        result: FraudDetectionResult,
        breakdown: Optional[Dict[str, float]],
        now: datetime,
    ):
        counters = {
            ALERT_BOT: "bot_alerts_generated",
            ALERT_COLLUSION: "collusion_alerts_generated",
            ALERT_MULTI_ACCOUNT: "multi_account_alerts_generated",
        }

        for alert in self._build_alerts(action, result, now):
            if not await self._claim_cooldown(alert.player_id, alert.alert_type, now):
                logger.debug(f"{alert.alert_type} alert for {alert.player_id} suppressed by cooldown")
                self._metrics.alerts_suppressed += 1
                continue

            try:
                delivery = await self.alert_service.create_alert(alert, breakdown)
            except asyncio.CancelledError:
                await self._release_cooldown(alert.player_id, alert.alert_type, now)
                raise
            except Exception as e:
                logger.error(f"❌ Failed to create {alert.alert_type} alert for {alert.player_id}: {e}")
                result.errors[f"alert:{alert.alert_type}"] = str(e)
                await self._release_cooldown(alert.player_id, alert.alert_type, now)
                continue

            result.alerts_generated.append(delivery.alert_id)
            counter = counters[alert.alert_type]
            setattr(self._metrics, counter, getattr(self._metrics, counter) + 1)

    # ------------------------------------------------------------------
    # Events & metrics
    # ------------------------------------------------------------------

    async def handle_event(self, event: FraudEvent):
        """EventProcessor handler"""
        if event.type == EVENT_PLAYER_ACTION:
            await self.process_player_action(PlayerAction(**event.data))
        elif event.type == EVENT_HAND_COMPLETE:
            await self.record_hand(HandHistory(**event.data))
        elif event.type == EVENT_PLAYER_LEAVE:
            await self.leave_table(event.player_id, event.table_id)
        else:
            logger.debug(f"Ignoring {event.type} event for {event.player_id}")

    def get_metrics(self) -> FraudMetrics:
        return self._metrics.model_copy()
