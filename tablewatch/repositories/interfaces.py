"""
Storage contracts consumed by detectors and services
Backends are injected; failures surface as StorageError
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ..entities import (
    AntiCheatAlert,
    AlertStats,
    DeviceFingerprint,
    PlayerSession,
    PlayerStats,
    TransferRecord,
)


class FingerprintDatabase(ABC):

    @abstractmethod
    async def store_fingerprint(self, fingerprint: DeviceFingerprint):
        pass

    @abstractmethod
    async def get_fingerprint_history(self, player_id: str) -> List[DeviceFingerprint]:
        pass

    @abstractmethod
    async def find_accounts_by_fingerprint(self, fingerprint: str) -> List[str]:
        pass

    @abstractmethod
    async def find_accounts_by_ip(self, ip_address: str) -> List[str]:
        pass

    @abstractmethod
    async def find_accounts_by_network(self, network_prefix: str) -> List[str]:
        pass

    @abstractmethod
    async def get_latest_fingerprint(self, player_id: str) -> Optional[DeviceFingerprint]:
        pass

    @abstractmethod
    async def fingerprint_exists(self, fingerprint: str) -> bool:
        pass


class SessionStore(ABC):

    @abstractmethod
    async def create_session(self, session: PlayerSession):
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[PlayerSession]:
        pass

    @abstractmethod
    async def get_player_sessions(self, player_id: str, start: datetime, end: datetime) -> List[PlayerSession]:
        pass

    @abstractmethod
    async def get_active_sessions(self) -> List[PlayerSession]:
        pass

    @abstractmethod
    async def end_session(self, session_id: str, ending_chips: float, ended_at: Optional[datetime] = None):
        pass

    @abstractmethod
    async def update_session_stats(self, session_id: str, hands: int, wins: int, losses: int):
        pass

    @abstractmethod
    async def get_all_player_ids(self) -> List[str]:
        pass

    @abstractmethod
    async def delete_old_sessions(self, before: datetime) -> int:
        pass


class TransferDatabase(ABC):

    @abstractmethod
    async def record_transfer(self, transfer: TransferRecord):
        pass

    @abstractmethod
    async def get_player_transfers(self, player_id: str, start: datetime, end: datetime) -> List[TransferRecord]:
        pass

    @abstractmethod
    async def get_pair_transfers(
        self, player_a: str, player_b: str, start: datetime, end: datetime
    ) -> List[TransferRecord]:
        pass

    @abstractmethod
    async def calculate_net_transfer(self, player_a: str, player_b: str, start: datetime, end: datetime) -> float:
        """Chips moved from a to b minus chips moved from b to a"""

    @abstractmethod
    async def get_transfer_count(self, player_a: str, player_b: str, start: datetime, end: datetime) -> int:
        pass

    @abstractmethod
    async def calculate_ev_loss_rate(self, player_a: str, player_b: str, start: datetime, end: datetime) -> float:
        pass


class AlertStorage(ABC):

    @abstractmethod
    async def create_alert(self, alert: AntiCheatAlert):
        pass

    @abstractmethod
    async def get_alert(self, alert_id: str) -> AntiCheatAlert:
        """Raises AlertNotFoundError for unknown ids"""

    @abstractmethod
    async def get_player_alerts(self, player_id: str, limit: int = 100) -> List[AntiCheatAlert]:
        """Newest first"""

    @abstractmethod
    async def get_alerts_by_time_range(self, start: datetime, end: datetime) -> List[AntiCheatAlert]:
        pass

    @abstractmethod
    async def get_alerts_by_type(self, alert_type: str, limit: int = 100) -> List[AntiCheatAlert]:
        pass

    @abstractmethod
    async def get_alerts_by_severity(self, severity: str, limit: int = 100) -> List[AntiCheatAlert]:
        pass

    @abstractmethod
    async def get_pending_alerts(self, limit: int = 100) -> List[AntiCheatAlert]:
        pass

    @abstractmethod
    async def update_alert_status(
        self, alert_id: str, status: str, reviewer_id: str, notes: Optional[str] = None
    ) -> AntiCheatAlert:
        pass

    @abstractmethod
    async def bulk_update_status(
        self, alert_ids: List[str], status: str, reviewer_id: str
    ) -> Dict[str, str]:
        """Returns alert_id -> error message for ids that could not be updated"""

    @abstractmethod
    async def get_alert_stats(self, start: datetime, end: datetime) -> AlertStats:
        pass

    @abstractmethod
    async def delete_old_alerts(self, before: datetime) -> int:
        pass


class PlayerStatsStore(ABC):

    @abstractmethod
    async def get_player_stats(self, player_id: str) -> Optional[PlayerStats]:
        pass

    @abstractmethod
    async def update_player_stats(self, stats: PlayerStats):
        pass
