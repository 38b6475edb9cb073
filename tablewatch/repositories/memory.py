"""
In-memory store implementations
Used by tests and the local API; single event loop, no persistence
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from ..constants import STATUS_CONFIRMED, STATUS_DISMISSED, STATUS_PENDING
from ..detectors.fingerprint import NetworkAnalyzer
from ..entities import (
    AntiCheatAlert,
    AlertStats,
    DeviceFingerprint,
    PlayerSession,
    PlayerStats,
    RiskPlayerSummary,
    TransferRecord,
    utcnow,
)
from ..errors import AlertNotFoundError, InvalidStatusTransitionError, StorageError
from .interfaces import (
    AlertStorage,
    FingerprintDatabase,
    PlayerStatsStore,
    SessionStore,
    TransferDatabase,
)

logger = logging.getLogger(__name__)


def _unique(values) -> List[str]:
    return list(dict.fromkeys(values))


class InMemoryFingerprintDatabase(FingerprintDatabase):

    def __init__(self):
        self._history: Dict[str, List[DeviceFingerprint]] = defaultdict(list)

    async def store_fingerprint(self, fingerprint: DeviceFingerprint):
        self._history[fingerprint.player_id].append(fingerprint)

    async def get_fingerprint_history(self, player_id: str) -> List[DeviceFingerprint]:
        return list(self._history.get(player_id, []))

    async def find_accounts_by_fingerprint(self, fingerprint: str) -> List[str]:
        return _unique(
            player_id
            for player_id, history in self._history.items()
            if any(fp.fingerprint == fingerprint for fp in history)
        )

    async def find_accounts_by_ip(self, ip_address: str) -> List[str]:
        return _unique(
            player_id
            for player_id, history in self._history.items()
            if any(fp.ip_address == ip_address for fp in history)
        )

    async def find_accounts_by_network(self, network_prefix: str) -> List[str]:
        return _unique(
            player_id
            for player_id, history in self._history.items()
            if any(
                fp.ip_address and NetworkAnalyzer.get_network_prefix(fp.ip_address) == network_prefix
                for fp in history
            )
        )

    async def get_latest_fingerprint(self, player_id: str) -> Optional[DeviceFingerprint]:
        history = self._history.get(player_id)
        if not history:
            return None
        return max(history, key=lambda fp: fp.last_seen)

    async def fingerprint_exists(self, fingerprint: str) -> bool:
        return bool(await self.find_accounts_by_fingerprint(fingerprint))


class InMemorySessionStore(SessionStore):

    def __init__(self):
        self._sessions: Dict[str, PlayerSession] = {}

    async def create_session(self, session: PlayerSession):
        if session.session_id in self._sessions:
            raise StorageError(f"session already exists: {session.session_id}")
        self._sessions[session.session_id] = session

    async def get_session(self, session_id: str) -> Optional[PlayerSession]:
        return self._sessions.get(session_id)

    async def get_player_sessions(self, player_id: str, start: datetime, end: datetime) -> List[PlayerSession]:
        return sorted(
            (
                s for s in self._sessions.values()
                if s.player_id == player_id and s.connected_at <= end and s.end_time() >= start
            ),
            key=lambda s: s.connected_at,
        )

    async def get_active_sessions(self) -> List[PlayerSession]:
        return [s for s in self._sessions.values() if s.is_open]

    async def end_session(self, session_id: str, ending_chips: float, ended_at: Optional[datetime] = None):
        session = self._sessions.get(session_id)
        if session is None:
            raise StorageError(f"session not found: {session_id}")
        ended_at = ended_at or utcnow()
        session.disconnected_at = ended_at
        session.duration_seconds = (ended_at - session.connected_at).total_seconds()
        session.ending_chips = ending_chips

    async def update_session_stats(self, session_id: str, hands: int, wins: int, losses: int):
        session = self._sessions.get(session_id)
        if session is None:
            raise StorageError(f"session not found: {session_id}")
        session.total_hands += hands
        session.wins += wins
        session.losses += losses

    async def get_all_player_ids(self) -> List[str]:
        return _unique(s.player_id for s in self._sessions.values())

    async def delete_old_sessions(self, before: datetime) -> int:
        stale = [sid for sid, s in self._sessions.items() if not s.is_open and s.end_time() < before]
        for sid in stale:
            del self._sessions[sid]
        return len(stale)


class InMemoryTransferDatabase(TransferDatabase):

    def __init__(self):
        self._transfers: List[TransferRecord] = []

    async def record_transfer(self, transfer: TransferRecord):
        self._transfers.append(transfer)

    async def get_player_transfers(self, player_id: str, start: datetime, end: datetime) -> List[TransferRecord]:
        return [
            t for t in self._transfers
            if player_id in (t.from_player, t.to_player) and start <= t.timestamp <= end
        ]

    async def get_pair_transfers(
        self, player_a: str, player_b: str, start: datetime, end: datetime
    ) -> List[TransferRecord]:
        pair = {player_a, player_b}
        return [
            t for t in self._transfers
            if {t.from_player, t.to_player} == pair and start <= t.timestamp <= end
        ]

    async def calculate_net_transfer(self, player_a: str, player_b: str, start: datetime, end: datetime) -> float:
        net = 0.0
        for t in await self.get_pair_transfers(player_a, player_b, start, end):
            net += t.amount if t.from_player == player_a else -t.amount
        return net

    async def get_transfer_count(self, player_a: str, player_b: str, start: datetime, end: datetime) -> int:
        return len(await self.get_pair_transfers(player_a, player_b, start, end))

    async def calculate_ev_loss_rate(self, player_a: str, player_b: str, start: datetime, end: datetime) -> float:
        transfers = await self.get_pair_transfers(player_a, player_b, start, end)
        total = sum(t.amount for t in transfers)
        if total <= 0:
            return 0.0
        return sum(abs(t.ev_impact) for t in transfers) / total


class InMemoryAlertStorage(AlertStorage):

    def __init__(self):
        self._alerts: Dict[str, AntiCheatAlert] = {}

    def _newest_first(self, alerts) -> List[AntiCheatAlert]:
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    async def create_alert(self, alert: AntiCheatAlert):
        if alert.id in self._alerts:
            raise StorageError(f"alert already exists: {alert.id}")
        self._alerts[alert.id] = alert

    async def get_alert(self, alert_id: str) -> AntiCheatAlert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def get_player_alerts(self, player_id: str, limit: int = 100) -> List[AntiCheatAlert]:
        return self._newest_first(a for a in self._alerts.values() if a.player_id == player_id)[:limit]

    async def get_alerts_by_time_range(self, start: datetime, end: datetime) -> List[AntiCheatAlert]:
        return self._newest_first(a for a in self._alerts.values() if start <= a.created_at <= end)

    async def get_alerts_by_type(self, alert_type: str, limit: int = 100) -> List[AntiCheatAlert]:
        return self._newest_first(a for a in self._alerts.values() if a.alert_type == alert_type)[:limit]

    async def get_alerts_by_severity(self, severity: str, limit: int = 100) -> List[AntiCheatAlert]:
        return self._newest_first(a for a in self._alerts.values() if a.severity == severity)[:limit]

    async def get_pending_alerts(self, limit: int = 100) -> List[AntiCheatAlert]:
        return self._newest_first(a for a in self._alerts.values() if a.status == STATUS_PENDING)[:limit]

    async def update_alert_status(
        self, alert_id: str, status: str, reviewer_id: str, notes: Optional[str] = None
    ) -> AntiCheatAlert:
        alert = await self.get_alert(alert_id)
        if not alert.can_transition_to(status):
            raise InvalidStatusTransitionError(
                f"alert {alert_id} cannot move from {alert.status} to {status}"
            )
        alert.status = status
        alert.reviewed_by = reviewer_id
        alert.reviewed_at = utcnow()
        if notes is not None:
            alert.notes = notes
        return alert

    async def bulk_update_status(self, alert_ids: List[str], status: str, reviewer_id: str) -> Dict[str, str]:
        failures = {}
        for alert_id in alert_ids:
            try:
                await self.update_alert_status(alert_id, status, reviewer_id)
            except (AlertNotFoundError, InvalidStatusTransitionError) as e:
                failures[alert_id] = str(e)
        return failures

    async def get_alert_stats(self, start: datetime, end: datetime) -> AlertStats:
        alerts = await self.get_alerts_by_time_range(start, end)
        stats = AlertStats(start_time=start, end_time=end, total_alerts=len(alerts))

        resolution_seconds = []
        players: Dict[str, RiskPlayerSummary] = {}
        for alert in alerts:
            stats.by_type[alert.alert_type] = stats.by_type.get(alert.alert_type, 0) + 1
            stats.by_severity[alert.severity] = stats.by_severity.get(alert.severity, 0) + 1
            if alert.agent_id:
                stats.by_agent[alert.agent_id] = stats.by_agent.get(alert.agent_id, 0) + 1

            if alert.status == STATUS_PENDING:
                stats.pending_review += 1
            elif alert.status == STATUS_CONFIRMED:
                stats.confirmed_fraud += 1
            elif alert.status == STATUS_DISMISSED:
                stats.dismissed += 1

            if alert.reviewed_at is not None:
                resolution_seconds.append((alert.reviewed_at - alert.created_at).total_seconds())

            summary = players.setdefault(
                alert.player_id,
                RiskPlayerSummary(player_id=alert.player_id, agent_id=alert.agent_id),
            )
            summary.alert_count += 1
            summary.risk_score = max(summary.risk_score, alert.score)
            if summary.last_alert_at is None or alert.created_at > summary.last_alert_at:
                summary.last_alert_at = alert.created_at

        if resolution_seconds:
            stats.average_resolution_seconds = sum(resolution_seconds) / len(resolution_seconds)

        stats.top_risk_players = sorted(
            players.values(), key=lambda p: (p.risk_score, p.alert_count), reverse=True
        )[:10]
        return stats

    async def delete_old_alerts(self, before: datetime) -> int:
        stale = [aid for aid, a in self._alerts.items() if a.created_at < before]
        for aid in stale:
            del self._alerts[aid]
        return len(stale)


class InMemoryPlayerStatsStore(PlayerStatsStore):

    def __init__(self):
        self._stats: Dict[str, PlayerStats] = {}

    async def get_player_stats(self, player_id: str) -> Optional[PlayerStats]:
        return self._stats.get(player_id)

    async def update_player_stats(self, stats: PlayerStats):
        self._stats[stats.player_id] = stats
