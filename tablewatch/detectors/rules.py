"""
Deterministic rule engine
Named threshold rules with per-player cooldowns
"""
import inspect
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..constants import (
    ALERT_FRAUD,
    RULE_CATEGORY_ALERT_TYPES,
    SEVERITY_SCORES,
    STATUS_PENDING,
)
from ..entities import AntiCheatAlert, PlayerAction, PlayerStats, utcnow
from ..errors import RuleNotFoundError
from ..locks import AsyncRWLock
from ..repositories.interfaces import AlertStorage, FingerprintDatabase

logger = logging.getLogger(__name__)


class RuleCheckData(BaseModel):
    """Everything a rule may look at for one player"""
    player_id: str
    agent_id: str = ""
    club_id: str = ""
    table_id: Optional[str] = None
    hand_id: Optional[str] = None

    hands_played_24h: int = 0
    hands_played_7d: int = 0
    win_rate_24h: float = 0.0
    win_rate_7d: float = 0.0
    win_rate_30d: float = 0.0
    avg_action_time: float = 0.0

    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None
    accounts_from_ip: Dict[str, int] = Field(default_factory=dict)
    accounts_from_device: Dict[str, int] = Field(default_factory=dict)

    current_session_hands: int = 0
    session_start_time: Optional[datetime] = None
    total_chips_won: float = 0.0
    total_chips_lost: float = 0.0
    play_duration_24h_seconds: float = 0.0
    is_new_account: bool = False
    alert_count_24h: int = 0
    alert_count_7d: int = 0


class AntiCheatRule(BaseModel):
    name: str
    description: str
    category: str
    severity: str
    check: Callable[[RuleCheckData], bool]
    cooldown_seconds: float = 0.0
    enabled: bool = True
    action: Optional[Callable] = None

    @property
    def alert_type(self) -> str:
        return RULE_CATEGORY_ALERT_TYPES.get(self.category, ALERT_FRAUD)

    @property
    def score(self) -> float:
        return SEVERITY_SCORES.get(self.severity, 0.0)


def _ip_accounts(data: RuleCheckData) -> int:
    if not data.ip_address:
        return 0
    return data.accounts_from_ip.get(data.ip_address, 0)


def _device_accounts(data: RuleCheckData) -> int:
    if not data.device_fingerprint:
        return 0
    return data.accounts_from_device.get(data.device_fingerprint, 0)


class RuleCatalog:
    """Named rule set; each engine owns its own catalog"""

    def __init__(self, rules: Optional[List[AntiCheatRule]] = None):
        self._rules: Dict[str, AntiCheatRule] = {}
        for rule in rules or []:
            self.register(rule)

    def register(self, rule: AntiCheatRule):
        self._rules[rule.name] = rule

    def get(self, name: str) -> AntiCheatRule:
        try:
            return self._rules[name]
        except KeyError:
            raise RuleNotFoundError(name) from None

    def all(self) -> List[AntiCheatRule]:
        return list(self._rules.values())

    def enabled(self) -> List[AntiCheatRule]:
        return [r for r in self._rules.values() if r.enabled]

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, name: str) -> bool:
        return name in self._rules


def default_rule_catalog() -> RuleCatalog:
    hour = 3600
    return RuleCatalog([
        AntiCheatRule(
            name="excessive_volume_24h",
            description="Player played unrealistic number of hands in 24 hours",
            category="volume",
            severity="high",
            cooldown_seconds=1 * hour,
            check=lambda d: d.hands_played_24h > 500,
        ),
        AntiCheatRule(
            name="excessive_volume_7d",
            description="Player played unrealistic number of hands in 7 days",
            category="volume",
            severity="medium",
            cooldown_seconds=6 * hour,
            check=lambda d: d.hands_played_7d > 2000,
        ),
        AntiCheatRule(
            name="marathon_session",
            description="Player session exceeds maximum human endurance",
            category="volume",
            severity="medium",
            cooldown_seconds=4 * hour,
            check=lambda d: d.play_duration_24h_seconds > 12 * hour,
        ),
        AntiCheatRule(
            name="perfect_win_rate",
            description="Player has suspiciously perfect win rate",
            category="pattern",
            severity="high",
            cooldown_seconds=24 * hour,
            check=lambda d: d.hands_played_24h >= 50 and d.win_rate_24h > 0.95,
        ),
        AntiCheatRule(
            name="sustained_win_rate",
            description="Player maintains suspiciously high win rate over extended period",
            category="pattern",
            severity="medium",
            cooldown_seconds=48 * hour,
            check=lambda d: d.hands_played_7d >= 500 and d.win_rate_7d > 0.80,
        ),
        AntiCheatRule(
            name="no_losses_7d",
            description="Player has not lost any chips in 7 days",
            category="pattern",
            severity="high",
            cooldown_seconds=24 * hour,
            check=lambda d: (
                d.hands_played_7d >= 100 and d.total_chips_lost == 0 and d.total_chips_won > 0
            ),
        ),
        AntiCheatRule(
            name="same_ip_multi_account",
            description="Multiple accounts from same IP address",
            category="identity",
            severity="medium",
            check=lambda d: _ip_accounts(d) >= 3,
        ),
        AntiCheatRule(
            name="same_device_multi_account",
            description="Multiple accounts from same device",
            category="identity",
            severity="high",
            check=lambda d: _device_accounts(d) >= 3,
        ),
        AntiCheatRule(
            name="new_account_suspicious",
            description="New account with suspicious activity patterns",
            category="pattern",
            severity="medium",
            cooldown_seconds=2 * hour,
            check=lambda d: d.is_new_account and d.hands_played_24h > 100 and d.win_rate_24h > 0.70,
        ),
        AntiCheatRule(
            name="instant_actions",
            description="Player actions consistently too fast for human reaction time",
            category="timing",
            severity="medium",
            cooldown_seconds=0.5 * hour,
            check=lambda d: 0 < d.avg_action_time < 0.5,
        ),
        AntiCheatRule(
            name="alert_fatigue",
            description="Player has triggered too many alerts in short period",
            category="pattern",
            severity="low",
            check=lambda d: d.alert_count_24h >= 10,
        ),
    ])


class RuleBasedDetector:
    """Evaluates a catalog against player data, enforcing cooldowns"""

    def __init__(self, catalog: Optional[RuleCatalog] = None):
        self.catalog = catalog if catalog is not None else default_rule_catalog()
        self._last_triggered: Dict[Tuple[str, str], datetime] = {}
        self._lock = AsyncRWLock()

    def get_rule(self, name: str) -> AntiCheatRule:
        return self.catalog.get(name)

    def get_all_rules(self) -> List[AntiCheatRule]:
        return self.catalog.all()

    def enable_rule(self, name: str):
        self.catalog.get(name).enabled = True

    def disable_rule(self, name: str):
        self.catalog.get(name).enabled = False

    @staticmethod
    def _cooling_down(rule: AntiCheatRule, last: Optional[datetime], now: datetime) -> bool:
        if rule.cooldown_seconds <= 0 or last is None:
            return False
        return now - last < timedelta(seconds=rule.cooldown_seconds)

    async def release_cooldown(self, rule_name: str, player_id: str, triggered_at: datetime):
        """Undo a trigger whose alert was never delivered; a newer trigger is kept"""
        key = (rule_name, player_id)
        async with self._lock.write():
            if self._last_triggered.get(key) == triggered_at:
                del self._last_triggered[key]

    async def release_alerts(self, alerts: List[AntiCheatAlert]):
        for alert in alerts:
            await self.release_cooldown(alert.metadata["rule"], alert.player_id, alert.created_at)

    async def evaluate_rules(self, data: RuleCheckData, now: Optional[datetime] = None) -> List[AntiCheatAlert]:
        now = now or utcnow()
        alerts: List[AntiCheatAlert] = []

        try:
            await self._evaluate(data, now, alerts)
        except BaseException:
            await self.release_alerts(alerts)
            raise

        return alerts

    async def _evaluate(self, data: RuleCheckData, now: datetime, alerts: List[AntiCheatAlert]):
        for rule in self.catalog.enabled():
            key = (rule.name, data.player_id)

            async with self._lock.read():
                last = self._last_triggered.get(key)
            if self._cooling_down(rule, last, now):
                continue

            if not rule.check(data):
                continue

            async with self._lock.write():
                # Another task may have fired this rule since the read
                if self._cooling_down(rule, self._last_triggered.get(key), now):
                    continue
                self._last_triggered[key] = now

            alert = AntiCheatAlert(
                id=f"alert_{rule.name}_{time.time_ns()}",
                player_id=data.player_id,
                alert_type=rule.alert_type,
                severity=rule.severity,
                score=rule.score,
                table_id=data.table_id,
                hand_id=data.hand_id,
                agent_id=data.agent_id,
                club_id=data.club_id,
                evidence=[f"Rule '{rule.name}' triggered: {rule.description}"],
                metadata={"rule": rule.name, "category": rule.category},
                created_at=now,
                status=STATUS_PENDING,
            )
            alerts.append(alert)
            logger.info(f"⚠️ Rule {rule.name} fired for {data.player_id}")

            if rule.action is not None:
                await self._run_action(rule, alert)

    @staticmethod
    async def _run_action(rule: AntiCheatRule, alert: AntiCheatAlert):
        try:
            result = rule.action(alert)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"❌ Action for rule {rule.name} failed: {e}")


class RuleEngine:
    """Builds rule input from live actions and persists what fires"""

    def __init__(
        self,
        detector: RuleBasedDetector,
        alert_storage: AlertStorage,
        fingerprint_db: Optional[FingerprintDatabase] = None,
    ):
        self.detector = detector
        self.alert_storage = alert_storage
        self.fingerprint_db = fingerprint_db

    async def build_check_data(self, action: PlayerAction, stats: PlayerStats) -> RuleCheckData:
        data = RuleCheckData(
            player_id=action.player_id,
            agent_id=action.agent_id,
            club_id=action.club_id,
            table_id=action.table_id,
            hand_id=action.hand_id,
            hands_played_24h=stats.hands_played_24h,
            hands_played_7d=stats.hands_played_7d,
            win_rate_24h=stats.win_rate_24h,
            win_rate_7d=stats.win_rate_7d,
            win_rate_30d=stats.win_rate_30d,
            avg_action_time=stats.avg_action_time,
            ip_address=action.ip_address,
            device_fingerprint=action.device_id,
            current_session_hands=stats.current_session_hands,
            session_start_time=stats.session_start_time,
            total_chips_won=stats.total_chips_won,
            total_chips_lost=stats.total_chips_lost,
            play_duration_24h_seconds=stats.play_duration_24h_seconds,
            is_new_account=stats.is_new_account,
            alert_count_24h=stats.alert_count_24h,
            alert_count_7d=stats.alert_count_7d,
        )

        if self.fingerprint_db is not None:
            if action.ip_address:
                accounts = await self.fingerprint_db.find_accounts_by_ip(action.ip_address)
                data.accounts_from_ip[action.ip_address] = len(accounts)
            if action.device_id:
                accounts = await self.fingerprint_db.find_accounts_by_fingerprint(action.device_id)
                data.accounts_from_device[action.device_id] = len(accounts)

        return data

    async def process_player_action(
        self, action: PlayerAction, stats: PlayerStats, now: Optional[datetime] = None
    ) -> List[AntiCheatAlert]:
        data = await self.build_check_data(action, stats)
        alerts = await self.detector.evaluate_rules(data, now=now)

        saved = 0
        try:
            for alert in alerts:
                await self.alert_storage.create_alert(alert)
                saved += 1
        except BaseException:
            # Unsaved alerts must be able to fire again
            await self.detector.release_alerts(alerts[saved:])
            raise

        return alerts
