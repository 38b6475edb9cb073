"""
Shared entities between detectors, services and storage
Maps to the game server action stream and the alert wire schema
"""

from typing import Annotated, Optional, List, Dict, Any
from datetime import datetime, timedelta, timezone
from pydantic import AfterValidator, BaseModel, Field

from .constants import (
    STATUS_PENDING,
    TERMINAL_STATUSES,
    RISK_BREAKDOWN_KEYS,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes from the game server are UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class PlayerAction(BaseModel):
    """
    Single in-game decision
    Carries only cards visible to the acting player
    """
    id: str
    player_id: str
    table_id: str
    hand_id: str
    agent_id: str = ""
    club_id: str = ""
    action_type: str  # bet, fold, raise, check, call, all_in, timeout
    amount: float = 0.0
    position: int = 0
    timestamp: UtcDatetime
    decision_time_ms: int = 0
    hand_phase: str = "preflop"
    pot_size: float = 0.0
    stack_size: float = 0.0
    cards: List[str] = Field(default_factory=list)
    ip_address: Optional[str] = None
    device_id: Optional[str] = None
    session_id: Optional[str] = None



class PlayerBehavioralFeatures(BaseModel):
    """Aggregated behavior of one player over a time window"""
    player_id: str
    time_range_seconds: float = 0.0
    extracted_at: datetime = Field(default_factory=utcnow)

    # Timing (seconds)
    avg_action_time: float = 0.0
    action_time_std_dev: float = 0.0
    action_time_min: float = 0.0
    action_time_max: float = 0.0

    # Bet sizing
    bet_precision: float = 0.0
    avg_bet_to_pot_ratio: float = 0.0
    bet_size_variance: float = 0.0

    # Volume
    hands_played: int = 0
    hands_per_hour: float = 0.0
    tables_concurrent: int = 0

    # Performance
    win_rate: float = 0.0
    win_rate_variance: float = 0.0
    showdown_rate: float = 0.0
    vpip: float = 0.0
    pfr: float = 0.0

    error_rate: float = 0.0
    timeout_rate: float = 0.0
    consistency_score: float = 0.0


class DeviceFingerprint(BaseModel):
    """Hashed client environment observed for a player"""
    player_id: str
    fingerprint: str
    user_agent: str = ""
    screen_resolution: str = ""
    color_depth: int = 0
    timezone: str = ""
    language: str = ""
    platform: str = ""
    hardware_concurrency: int = 0
    device_memory: int = 0
    touch_support: bool = False
    webgl_renderer: str = ""
    ip_address: str = ""
    first_seen: datetime = Field(default_factory=utcnow)
    last_seen: datetime = Field(default_factory=utcnow)


class PlayerSession(BaseModel):
    """Connected period of a player at a table"""
    session_id: str
    player_id: str
    table_id: str = ""
    agent_id: str = ""
    club_id: str = ""
    connected_at: UtcDatetime
    disconnected_at: Optional[UtcDatetime] = None
    duration_seconds: float = 0.0
    total_hands: int = 0
    wins: int = 0
    losses: int = 0
    starting_chips: float = 0.0
    ending_chips: float = 0.0


    @property
    def is_open(self) -> bool:
        return self.disconnected_at is None

    def end_time(self) -> datetime:
        """Disconnect time, or connected_at + duration while still open"""
        if self.disconnected_at is not None:
            return self.disconnected_at
        return self.connected_at + timedelta(seconds=self.duration_seconds)

    def online_seconds(self, open_session_seconds: float = 3600.0) -> float:
        if self.disconnected_at is None:
            return open_session_seconds
        return max(0.0, (self.disconnected_at - self.connected_at).total_seconds())


class HandHistory(BaseModel):
    """Completed hand summary"""
    hand_id: str
    table_id: str
    agent_id: str = ""
    club_id: str = ""
    started_at: UtcDatetime
    completed_at: UtcDatetime
    pot_amount: float = 0.0
    participant_ids: List[str] = Field(default_factory=list)
    winner_ids: List[str] = Field(default_factory=list)
    showdown_player_ids: List[str] = Field(default_factory=list)
    seat_positions: Dict[str, int] = Field(default_factory=dict)



class TransferRecord(BaseModel):
    """Chips that moved from one player to another inside a hand"""
    from_player: str
    to_player: str
    table_id: str = ""
    hand_id: str = ""
    amount: float
    ev_impact: float = 0.0
    context: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class PlayerRelationship(BaseModel):
    """Summarized history between two players"""
    player_a: str
    player_b: str
    agent_id: str = ""
    co_occurrence_count: int = 0
    total_hands_a: int = 0
    total_hands_b: int = 0
    win_rate_a: float = 0.0
    win_rate_b: float = 0.0
    mutual_wins: int = 0
    avg_pot_size: float = 0.0
    ip_match_count: int = 0
    device_match_count: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


class AntiCheatAlert(BaseModel):
    """Actionable finding about a player"""
    id: str
    player_id: str
    alert_type: str
    severity: str
    score: float = Field(ge=0.0, le=1.0)
    table_id: Optional[str] = None
    hand_id: Optional[str] = None
    agent_id: str = ""
    club_id: str = ""
    evidence: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime = Field(default_factory=utcnow)
    reviewed_at: Optional[UtcDatetime] = None
    reviewed_by: Optional[str] = None
    status: str = STATUS_PENDING
    notes: Optional[str] = None

    def can_transition_to(self, status: str) -> bool:
        """Only pending alerts move, and only to a terminal status"""
        return self.status == STATUS_PENDING and status in TERMINAL_STATUSES



class RiskScore(BaseModel):
    """Weighted combination of all detector signals for a player"""
    player_id: str
    agent_id: str = ""
    overall_score: float
    bot_score: float = 0.0
    collusion_score: float = 0.0
    multi_account_score: float = 0.0
    rule_violation_score: float = 0.0
    alert_history_score: float = 0.0
    last_calculated: datetime = Field(default_factory=utcnow)
    calculated_from: Optional[datetime] = None
    calculated_to: Optional[datetime] = None
    flag_count_24h: int = 0
    flag_count_7d: int = 0
    flag_count_30d: int = 0
    review_recommended: bool = False
    risk_level: str = "low"
    degraded_signals: List[str] = Field(default_factory=list)

    def breakdown(self) -> Dict[str, float]:
        """risk_breakdown as published on the wire"""
        values = [
            self.bot_score,
            self.collusion_score,
            self.multi_account_score,
            self.rule_violation_score,
            self.alert_history_score,
        ]
        return dict(zip(RISK_BREAKDOWN_KEYS, values))


class CollusionRing(BaseModel):
    """Dense group of strongly connected players"""
    ring_id: str
    members: List[str] = Field(min_length=2)
    density: float
    total_hands: int
    confidence: float
    collusion_type: str = "multi_player_ring"


class PlayerStats(BaseModel):
    """Rolling player counters fed to the rule engine"""
    player_id: str
    hands_played_24h: int = 0
    hands_played_7d: int = 0
    win_rate_24h: float = 0.0
    win_rate_7d: float = 0.0
    win_rate_30d: float = 0.0
    avg_action_time: float = 0.0
    play_duration_24h_seconds: float = 0.0
    is_new_account: bool = False
    alert_count_24h: int = 0
    alert_count_7d: int = 0
    total_chips_won: float = 0.0
    total_chips_lost: float = 0.0
    current_session_hands: int = 0
    session_start_time: Optional[datetime] = None


class RiskPlayerSummary(BaseModel):
    player_id: str
    agent_id: str = ""
    risk_score: float = 0.0
    alert_count: int = 0
    last_alert_at: Optional[datetime] = None


class AlertStats(BaseModel):
    """Aggregated alert counts over a time range"""
    start_time: datetime
    end_time: datetime
    total_alerts: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_agent: Dict[str, int] = Field(default_factory=dict)
    pending_review: int = 0
    confirmed_fraud: int = 0
    dismissed: int = 0
    average_resolution_seconds: float = 0.0
    top_risk_players: List[RiskPlayerSummary] = Field(default_factory=list)


class AlertMessage(BaseModel):
    """Alert as serialized onto the bus"""
    id: str
    player_id: str
    alert_type: str
    severity: str
    score: float
    table_id: Optional[str] = None
    hand_id: Optional[str] = None
    agent_id: str
    club_id: str
    evidence: List[str]
    metadata: Optional[Dict[str, Any]] = None
    timestamp: UtcDatetime
    detected_at: datetime
    risk_breakdown: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_alert(cls, alert: AntiCheatAlert,
                   risk_breakdown: Optional[Dict[str, float]] = None) -> "AlertMessage":
        return cls(
            id=alert.id,
            player_id=alert.player_id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            score=alert.score,
            table_id=alert.table_id or None,
            hand_id=alert.hand_id or None,
            agent_id=alert.agent_id,
            club_id=alert.club_id,
            evidence=list(alert.evidence),
            metadata=dict(alert.metadata) or None,
            timestamp=alert.created_at,
            detected_at=utcnow(),
            risk_breakdown=dict(risk_breakdown or {}),
        )

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict; optional fields are omitted when empty, risk_breakdown is always present"""
        payload = self.model_dump(mode="json", exclude_none=True)
        payload["timestamp"] = self.timestamp.isoformat()
        payload["detected_at"] = self.detected_at.isoformat()
        return payload
