"""
Multi-account detection
Links accounts through shared devices, IPs, networks and overlapping sessions
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..config import MultiAccountConfig
from ..entities import PlayerSession, utcnow
from ..repositories.interfaces import FingerprintDatabase, SessionStore
from .fingerprint import NetworkAnalyzer

logger = logging.getLogger(__name__)

OPEN_SESSION_SECONDS = 3600.0

MATCH_DEVICE = "device"
MATCH_IP = "ip"
MATCH_NETWORK = "network"
MATCH_BEHAVIORAL = "behavioral"


class RelatedAccount(BaseModel):
    player_id: str
    match_type: str
    similarity: float
    shared: str = ""
    evidence: List[str] = Field(default_factory=list)


class MultiAccountResult(BaseModel):
    player_id: str
    is_multi_account: bool = False
    score: float = 0.0
    related_accounts: List[RelatedAccount] = Field(default_factory=list)
    evidence: List[str] = Field(default_factory=list)
    recommended_action: str = "clear"


def session_overlap(sessions_a: Sequence[PlayerSession], sessions_b: Sequence[PlayerSession]) -> float:
    """
    Share of A's online time during which B was also online
    Asymmetric; open sessions count as one hour for A's total
    """
    total_a = sum(s.online_seconds(OPEN_SESSION_SECONDS) for s in sessions_a)
    if total_a <= 0:
        return 0.0

    overlap = 0.0
    for a in sessions_a:
        a_start, a_end = a.connected_at, a.end_time()
        for b in sessions_b:
            start = max(a_start, b.connected_at)
            end = min(a_end, b.end_time())
            if end > start:
                overlap += (end - start).total_seconds()

    return min(1.0, overlap / total_a)


class MultiAccountDetector:
    """Finds accounts that are likely controlled by the same person"""

    def __init__(
        self,
        fingerprint_db: FingerprintDatabase,
        session_store: SessionStore,
        config: Optional[MultiAccountConfig] = None,
    ):
        self.fingerprint_db = fingerprint_db
        self.session_store = session_store
        self.config = config or MultiAccountConfig()

    def _weight(self, match_type: str) -> float:
        return {
            MATCH_DEVICE: self.config.device_match_weight,
            MATCH_IP: self.config.ip_match_weight,
            MATCH_NETWORK: self.config.network_match_weight,
            MATCH_BEHAVIORAL: self.config.behavioral_weight,
        }[match_type]

    async def detect_multi_account(self, player_id: str, now: Optional[datetime] = None) -> MultiAccountResult:
        """Score a player against every account it shares a signal with"""
        cfg = self.config
        now = now or utcnow()

        related: Dict[str, RelatedAccount] = {}
        evidence: List[str] = []

        def link(other: str, match_type: str, similarity: float, shared: str, detail: str):
            # First link wins; links are added strongest first
            if other == player_id or other in related:
                return
            related[other] = RelatedAccount(
                player_id=other, match_type=match_type, similarity=similarity,
                shared=shared, evidence=[detail],
            )

        # Device
        latest = await self.fingerprint_db.get_latest_fingerprint(player_id)
        if latest is not None:
            device_accounts = await self.fingerprint_db.find_accounts_by_fingerprint(latest.fingerprint)
            for other in device_accounts:
                link(other, MATCH_DEVICE, cfg.device_similarity, latest.fingerprint,
                     f"Same device fingerprint: {latest.fingerprint[:16]}...")
            if len(device_accounts) >= cfg.device_cluster_threshold:
                evidence.append(f"{len(device_accounts)} accounts share one device fingerprint")

        # IP and network
        history = await self.fingerprint_db.get_fingerprint_history(player_id)
        ips = list(dict.fromkeys(fp.ip_address for fp in history if fp.ip_address))

        for ip in ips:
            ip_accounts = await self.fingerprint_db.find_accounts_by_ip(ip)
            for other in ip_accounts:
                link(other, MATCH_IP, cfg.ip_similarity, ip, f"Connected from same IP: {ip}")
            if len(ip_accounts) >= cfg.ip_cluster_threshold:
                evidence.append(f"{len(ip_accounts)} accounts connected from IP {ip}")

        for network in dict.fromkeys(NetworkAnalyzer.get_network_prefix(ip) for ip in ips):
            network_accounts = await self.fingerprint_db.find_accounts_by_network(network)
            for other in network_accounts:
                link(other, MATCH_NETWORK, cfg.network_similarity, network,
                     f"Connected from same network: {network}")
            if len(network_accounts) >= cfg.network_cluster_threshold:
                evidence.append(f"{len(network_accounts)} accounts connected from network {network}")

        # Session overlap
        window_start = now - timedelta(days=cfg.session_overlap_window_days)
        own_sessions = await self.session_store.get_player_sessions(player_id, window_start, now)
        if own_sessions:
            for other in await self.session_store.get_all_player_ids():
                if other == player_id or other in related:
                    continue
                other_sessions = await self.session_store.get_player_sessions(other, window_start, now)
                overlap = session_overlap(own_sessions, other_sessions)
                if overlap >= cfg.min_session_overlap:
                    link(other, MATCH_BEHAVIORAL, overlap * cfg.behavioral_similarity_factor,
                         f"{overlap * 100:.0f}", f"{overlap * 100:.0f}% session overlap")

        accounts = sorted(related.values(), key=lambda r: r.similarity, reverse=True)
        score = min(1.0, sum(r.similarity * self._weight(r.match_type) for r in accounts))

        for account in accounts:
            evidence.append(self._describe(player_id, account))

        if score >= cfg.flag_threshold:
            action = "flag"
        elif score >= cfg.review_threshold:
            action = "review"
        else:
            action = "clear"

        if accounts:
            logger.info(
                f"🔗 {player_id} linked to {len(accounts)} accounts (score={score:.2f}, action={action})"
            )

        return MultiAccountResult(
            player_id=player_id,
            is_multi_account=action == "flag",
            score=score,
            related_accounts=accounts,
            evidence=evidence,
            recommended_action=action,
        )

    @staticmethod
    def _describe(player_id: str, account: RelatedAccount) -> str:
        if account.match_type == MATCH_DEVICE:
            return f"Account {player_id} shares device with {account.player_id}"
        if account.match_type == MATCH_IP:
            return f"Account {player_id} shares IP {account.shared} with {account.player_id}"
        if account.match_type == MATCH_NETWORK:
            return f"Account {player_id} shares network {account.shared} with {account.player_id}"
        return f"Account {player_id} has {account.shared}% session overlap with {account.player_id}"
