"""
Bot detection
Blends per-feature heuristics, an isolation forest and a sequential pattern score
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..config import BotDetectionConfig
from ..entities import PlayerBehavioralFeatures
from .isolation_forest import IsolationForestScorer

logger = logging.getLogger(__name__)

NEUTRAL = 0.5

METHOD_HEURISTIC = "heuristic"
METHOD_ISOLATION_FOREST = "isolation_forest"
METHOD_SEQUENTIAL = "lstm"


class BotDetectionResult(BaseModel):
    player_id: str
    is_bot: bool = False
    score: float = 0.0
    confidence: float = 0.0
    heuristic_score: float = 0.0
    isolation_score: float = 0.0
    sequential_score: float = 0.0
    feature_scores: Dict[str, float] = Field(default_factory=dict)
    triggered_methods: List[str] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)
    recommended_action: str = "clear"


def _below_threshold_score(value: float, threshold: float) -> float:
    """High when value is small relative to threshold"""
    if value <= 0:
        return NEUTRAL
    if value < threshold:
        return 1.0 - value / threshold
    return 0.0


def _volume_score(value: float, threshold: float) -> float:
    if value <= 0:
        return NEUTRAL
    if value > threshold:
        return 1.0
    return value / threshold


def _unit_score(value: float) -> float:
    if value < 0 or value > 1:
        return NEUTRAL
    return value


class SequentialPatternDetector:
    """
    Sequence-style score over timing and sizing regularity
    Stands where a trained sequence model would sit
    """

    def score(self, features: PlayerBehavioralFeatures) -> float:
        score = 0.0

        if features.action_time_std_dev < 0.1:
            score += 0.4
        elif features.action_time_std_dev < 0.3:
            score += 0.2

        if features.bet_precision > 0.95:
            score += 0.3

        if features.hands_per_hour > 80:
            score += 0.2

        if features.win_rate_variance < 0.02:
            score += 0.1

        return min(1.0, score)


class BotDetector:
    """Scores how machine-like a player's behavior is"""

    def __init__(
        self,
        config: Optional[BotDetectionConfig] = None,
        isolation_scorer: Optional[IsolationForestScorer] = None,
        sequential_detector: Optional[SequentialPatternDetector] = None,
    ):
        self.config = config or BotDetectionConfig()
        self.isolation_scorer = isolation_scorer or IsolationForestScorer(self.config)
        self.sequential_detector = sequential_detector or SequentialPatternDetector()

    # ------------------------------------------------------------------
    # Per-feature scores
    # ------------------------------------------------------------------

    def feature_scores(self, features: PlayerBehavioralFeatures) -> Dict[str, float]:
        cfg = self.config

        precision = features.bet_precision
        if precision < 0 or precision > 1:
            precision_score = NEUTRAL
        elif precision > cfg.bet_precision_threshold:
            precision_score = 1.0
        else:
            precision_score = precision

        return {
            "avg_action_time": _below_threshold_score(features.avg_action_time, cfg.avg_action_time_threshold),
            "action_time_std_dev": _below_threshold_score(
                features.action_time_std_dev, cfg.action_time_std_dev_threshold
            ),
            "bet_precision": precision_score,
            "hands_per_hour": _volume_score(features.hands_per_hour, cfg.hands_per_hour_threshold),
            "tables_concurrent": _volume_score(features.tables_concurrent, cfg.concurrent_tables_threshold),
            "consistency_score": _unit_score(features.consistency_score),
            "win_rate_variance": self._win_rate_variance_score(features.win_rate_variance),
            "showdown_rate": self._showdown_score(features.showdown_rate),
        }

    @staticmethod
    def _win_rate_variance_score(variance: float) -> float:
        if variance <= 0:
            return NEUTRAL
        if variance < 0.05:
            return 1.0
        if variance > 0.20:
            return 0.0
        return 1.0 - (variance - 0.05) / 0.15

    @staticmethod
    def _showdown_score(rate: float) -> float:
        if rate < 0 or rate > 1:
            return NEUTRAL
        if rate < 0.15 or rate > 0.50:
            return 0.7
        return 0.3

    def heuristic_score(self, scores: Dict[str, float]) -> float:
        cfg = self.config
        return (
            scores["avg_action_time"] * cfg.action_time_weight
            + scores["action_time_std_dev"] * cfg.std_dev_weight
            + scores["bet_precision"] * cfg.precision_weight
            + scores["hands_per_hour"] * cfg.hands_per_hour_weight
            + scores["tables_concurrent"] * cfg.tables_weight
            + scores["consistency_score"] * cfg.consistency_weight
        )

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_bot(self, features: PlayerBehavioralFeatures) -> BotDetectionResult:
        cfg = self.config

        scores = self.feature_scores(features)
        heuristic = self.heuristic_score(scores)
        isolation = self.isolation_scorer.score(features)
        sequential = self.sequential_detector.score(features)

        combined = (
            heuristic * cfg.heuristic_blend
            + isolation * cfg.isolation_blend
            + sequential * cfg.sequential_blend
        )
        combined = min(1.0, max(0.0, combined))

        triggered = []
        if heuristic >= cfg.method_trigger_threshold:
            triggered.append(METHOD_HEURISTIC)
        if isolation > cfg.method_trigger_threshold:
            triggered.append(METHOD_ISOLATION_FOREST)
        if sequential > cfg.method_trigger_threshold:
            triggered.append(METHOD_SEQUENTIAL)

        confidence = self.confidence(features, triggered)

        if combined >= cfg.bot_threshold and confidence >= cfg.min_confidence:
            action = "flag"
        elif combined >= cfg.review_threshold:
            action = "review"
        else:
            action = "clear"

        result = BotDetectionResult(
            player_id=features.player_id,
            is_bot=action == "flag",
            score=combined,
            confidence=confidence,
            heuristic_score=heuristic,
            isolation_score=isolation,
            sequential_score=sequential,
            feature_scores=scores,
            triggered_methods=triggered,
            reasons=self._reasons(scores, isolation, sequential),
            recommended_action=action,
        )

        if action != "clear":
            logger.info(
                f"🎯 Bot check {features.player_id}: score={combined:.2f} "
                f"confidence={confidence:.2f} action={action}"
            )
        return result

    def confidence(self, features: PlayerBehavioralFeatures, triggered: List[str]) -> float:
        """
        Trust in the verdict, driven by sample size rather than score extremity
        Small samples stay below 0.5 however extreme the features look
        """
        hands = features.hands_played
        if hands >= 500:
            volume = 0.35
        elif hands >= 100:
            volume = 0.25
        elif hands >= 50:
            volume = 0.15
        else:
            volume = 0.0

        completeness = 0.15 * sum(
            1 for value in (
                features.action_time_std_dev,
                features.bet_precision,
                features.hands_per_hour,
                features.consistency_score,
            ) if value > 0
        )
        agreement = 0.15 if len(triggered) >= 2 else 0.0
        sample_factor = min(1.0, hands / 100.0)

        return min(1.0, volume + (completeness + agreement) * sample_factor)

    @staticmethod
    def _reasons(scores: Dict[str, float], isolation: float, sequential: float) -> List[str]:
        reasons = []
        if scores["avg_action_time"] > 0.7:
            reasons.append("Unusually fast action timing")
        if scores["action_time_std_dev"] > 0.8:
            reasons.append("Suspiciously consistent action timing")
        if scores["bet_precision"] > 0.7:
            reasons.append("Suspiciously precise bet sizing")
        if scores["hands_per_hour"] > 0.7:
            reasons.append("Excessive hands per hour")
        if scores["tables_concurrent"] > 0.7:
            reasons.append("Too many concurrent tables")
        if scores["consistency_score"] > 0.8:
            reasons.append("Highly consistent behavior patterns")
        if isolation > 0.7:
            reasons.append("ML anomaly detection flagged unusual patterns")
        if sequential > 0.7:
            reasons.append("Sequential pattern analysis detected bot-like behavior")
        return reasons
