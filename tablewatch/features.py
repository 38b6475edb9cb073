"""
Behavioral feature extraction
Turns a window of player actions (and optional hand histories) into
PlayerBehavioralFeatures for the detectors
"""

from typing import List, Optional, Sequence, Union
from datetime import datetime, timedelta
import logging

import numpy as np
import pandas as pd

from .constants import (
    BET_ACTIONS,
    VOLUNTARY_ACTIONS,
    PREFLOP_RAISE_ACTIONS,
    PREFLOP_PHASE,
)
from .entities import PlayerAction, PlayerBehavioralFeatures, HandHistory, utcnow

logger = logging.getLogger(__name__)

CONCURRENCY_BUCKET = "10min"
WIN_RATE_BLOCK_SIZE = 10
TIMING_STD_CEILING = 5.0


class FeatureExtractor:
    """
    Feature engineering for bot detection
    Pure function of its inputs, safe to share between tasks
    """

    def extract_features(
        self,
        player_id: str,
        actions: Sequence[PlayerAction],
        time_range: Union[timedelta, float],
        hands: Optional[Sequence[HandHistory]] = None,
        now: Optional[datetime] = None,
    ) -> PlayerBehavioralFeatures:
        """
        Extract features for a single player

        Args:
            player_id: player to describe
            actions: raw actions, other players and stale actions are ignored
            time_range: window length ending at `now`
            hands: completed hands used for win rate / showdown features
            now: window end, defaults to the current UTC time

        Returns:
            PlayerBehavioralFeatures, zero-valued when the window is empty
        """
        window = time_range if isinstance(time_range, timedelta) else timedelta(seconds=time_range)
        now = now or utcnow()
        start = now - window

        window_actions = [
            a for a in actions
            if a.player_id == player_id and start < a.timestamp <= now
        ]

        features = PlayerBehavioralFeatures(
            player_id=player_id,
            time_range_seconds=window.total_seconds(),
            extracted_at=now,
        )
        if not window_actions:
            return features

        df = pd.DataFrame([a.model_dump() for a in window_actions])
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)

        self._timing_features(df, features)
        self._bet_features(df, features)
        self._volume_features(df, features, window)
        self._preflop_features(df, features)

        features.timeout_rate = float((df["action_type"] == "timeout").mean())
        features.error_rate = self._error_rate(df)

        if hands:
            self._performance_features(player_id, hands, start, now, features)

        features.consistency_score = self._consistency(
            features.action_time_std_dev, features.bet_precision
        )
        return features

    @staticmethod
    def _timing_features(df: pd.DataFrame, features: PlayerBehavioralFeatures):
        latencies = df.loc[df["decision_time_ms"] > 0, "decision_time_ms"] / 1000.0
        if latencies.empty:
            return

        features.avg_action_time = float(latencies.mean())
        features.action_time_std_dev = float(latencies.std(ddof=0))
        features.action_time_min = float(latencies.min())
        features.action_time_max = float(latencies.max())

    @staticmethod
    def _bet_features(df: pd.DataFrame, features: PlayerBehavioralFeatures):
        bets = df[df["action_type"].isin(BET_ACTIONS) & (df["pot_size"] > 0)]
        if bets.empty:
            return

        ratios = bets["amount"] / bets["pot_size"]
        fractional = ratios - np.floor(ratios)

        features.bet_precision = float(((fractional > 0.01) & (fractional < 0.99)).mean())
        features.avg_bet_to_pot_ratio = float(ratios.mean())
        features.bet_size_variance = float(ratios.var(ddof=0))

    @staticmethod
    def _volume_features(df: pd.DataFrame, features: PlayerBehavioralFeatures, window: timedelta):
        features.hands_played = int(df["hand_id"].nunique())

        hours = window.total_seconds() / 3600.0
        if hours > 0:
            features.hands_per_hour = features.hands_played / hours

        buckets = df["timestamp"].dt.floor(CONCURRENCY_BUCKET)
        features.tables_concurrent = int(df.groupby(buckets)["table_id"].nunique().max())

    @staticmethod
    def _preflop_features(df: pd.DataFrame, features: PlayerBehavioralFeatures):
        if features.hands_played == 0:
            return

        preflop = df[df["hand_phase"] == PREFLOP_PHASE]
        if preflop.empty:
            return

        voluntary = preflop.loc[preflop["action_type"].isin(VOLUNTARY_ACTIONS), "hand_id"].nunique()
        raised = preflop.loc[preflop["action_type"].isin(PREFLOP_RAISE_ACTIONS), "hand_id"].nunique()

        features.vpip = voluntary / features.hands_played
        features.pfr = raised / features.hands_played

    @staticmethod
    def _error_rate(df: pd.DataFrame) -> float:
        """Share of sized actions that could not have been legal"""
        sized = df[df["action_type"].isin(BET_ACTIONS + ["call", "all_in"])]
        if sized.empty:
            return 0.0

        non_positive = sized["amount"] <= 0
        over_stack = (sized["stack_size"] > 0) & (sized["amount"] > sized["stack_size"])
        return float((non_positive | over_stack).mean())

    @staticmethod
    def _performance_features(
        player_id: str,
        hands: Sequence[HandHistory],
        start: datetime,
        end: datetime,
        features: PlayerBehavioralFeatures,
    ):
        played: List[HandHistory] = sorted(
            (h for h in hands if player_id in h.participant_ids and start < h.completed_at <= end),
            key=lambda h: h.completed_at,
        )
        if not played:
            return

        wins = pd.Series([player_id in h.winner_ids for h in played], dtype=float)
        showdowns = pd.Series([player_id in h.showdown_player_ids for h in played], dtype=float)

        features.win_rate = float(wins.mean())
        features.showdown_rate = float(showdowns.mean())

        # Variance of per-block win rates over complete blocks
        blocks = len(wins) // WIN_RATE_BLOCK_SIZE
        if blocks >= 2:
            block_rates = (
                wins.iloc[: blocks * WIN_RATE_BLOCK_SIZE]
                .groupby(np.arange(blocks * WIN_RATE_BLOCK_SIZE) // WIN_RATE_BLOCK_SIZE)
                .mean()
            )
            features.win_rate_variance = float(block_rates.var(ddof=0))

    @staticmethod
    def _consistency(std_dev: float, precision: float) -> float:
        parts = []
        if std_dev > 0:
            parts.append(1.0 - min(1.0, std_dev / TIMING_STD_CEILING))
        if precision > 0:
            parts.append(precision)
        if not parts:
            return 0.5
        return float(sum(parts) / len(parts))
