"""
Pairwise collusion component scorers
Soft-play scoring is pluggable; chip flow combines the edge with the transfer ledger
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from ...config import CollusionDetectionConfig
from ...repositories.interfaces import TransferDatabase
from .graph import InteractionEdge

logger = logging.getLogger(__name__)

SOFT_PLAY_FEATURES = [
    "aggression_delta",
    "pot_size_delta",
    "showdown_delta",
    "check_down_rate",
    "vpip_delta",
    "pfr_delta",
    "three_bet_delta",
]


def soft_play_features(edge: InteractionEdge) -> Dict[str, float]:
    return {name: float(getattr(edge, name)) for name in SOFT_PLAY_FEATURES}


@runtime_checkable
class SoftPlayScorer(Protocol):
    """Anything that maps behavioral deltas to a [0,1] soft-play score"""

    def score(self, features: Dict[str, float]) -> float:
        ...


class DefaultSoftPlayScorer:
    """
    Fixed-weight linear model blended with a decision-stump ensemble
    Features are normalized against their configured thresholds
    """

    LINEAR_WEIGHTS = {
        "aggression_delta": 0.30,
        "pot_size_delta": 0.20,
        "showdown_delta": 0.20,
        "check_down_rate": 0.15,
        "vpip_delta": 0.05,
        "pfr_delta": 0.05,
        "three_bet_delta": 0.05,
    }
    STUMP_FEATURES = ["aggression_delta", "pot_size_delta", "showdown_delta", "check_down_rate"]
    LINEAR_BLEND = 0.7

    def __init__(self, config: Optional[CollusionDetectionConfig] = None):
        self.config = config or CollusionDetectionConfig()
        self.thresholds = {
            "aggression_delta": self.config.aggression_delta_threshold,
            "pot_size_delta": self.config.pot_size_delta_threshold,
            "showdown_delta": self.config.showdown_delta_threshold,
            "check_down_rate": self.config.check_down_rate_threshold,
            "vpip_delta": self.config.vpip_delta_threshold,
            "pfr_delta": self.config.pfr_delta_threshold,
            "three_bet_delta": self.config.three_bet_delta_threshold,
        }

    def score(self, features: Dict[str, float]) -> float:
        normalized = {
            name: min(1.0, max(0.0, features.get(name, 0.0)) / threshold)
            for name, threshold in self.thresholds.items()
        }
        linear = sum(normalized[name] * weight for name, weight in self.LINEAR_WEIGHTS.items())
        stumps = sum(
            1.0 for name in self.STUMP_FEATURES
            if features.get(name, 0.0) >= self.thresholds[name]
        ) / len(self.STUMP_FEATURES)

        return min(1.0, linear * self.LINEAR_BLEND + stumps * (1.0 - self.LINEAR_BLEND))


class ChipFlowSummary(BaseModel):
    net_transfer: float = 0.0
    transfer_count: int = 0
    ev_loss_rate: float = 0.0
    direction: str = "none"
    score: float = 0.0


class ChipFlowAnalyzer:
    """Scores one-directional chip movement between a pair"""

    def __init__(
        self,
        config: Optional[CollusionDetectionConfig] = None,
        transfer_db: Optional[TransferDatabase] = None,
    ):
        self.config = config or CollusionDetectionConfig()
        self.transfer_db = transfer_db

    async def analyze(self, edge: InteractionEdge, now: datetime) -> ChipFlowSummary:
        net = edge.net_chip_transfer
        count = edge.transfer_count
        ev_loss = edge.ev_loss_rate

        if self.transfer_db is not None:
            start = now - timedelta(days=self.config.chip_flow_lookback_days)
            net += await self.transfer_db.calculate_net_transfer(edge.player_a, edge.player_b, start, now)
            count += await self.transfer_db.get_transfer_count(edge.player_a, edge.player_b, start, now)
            ev_loss = max(
                ev_loss,
                await self.transfer_db.calculate_ev_loss_rate(edge.player_a, edge.player_b, start, now),
            )

        return ChipFlowSummary(
            net_transfer=net,
            transfer_count=count,
            ev_loss_rate=ev_loss,
            direction=self._direction(net),
            score=self.score(net, count, ev_loss),
        )

    def score(self, net: float, count: int, ev_loss: float) -> float:
        cfg = self.config
        score = 0.0
        if abs(net) > cfg.chip_transfer_threshold:
            score += 0.4
        if count > cfg.transfer_frequency_threshold:
            score += 0.3
        if ev_loss > cfg.ev_loss_threshold:
            score += 0.3
        return min(1.0, score)

    @staticmethod
    def _direction(net: float) -> str:
        if net > 0:
            return "A_to_B"
        if net < 0:
            return "B_to_A"
        return "none"
