"""
Device fingerprint hashing and IP network grouping
"""
import hashlib
import ipaddress
from typing import Dict, Optional

from ..constants import DEFAULT_FINGERPRINT_SALT
from ..entities import DeviceFingerprint, utcnow


class DeviceFingerprintHasher:
    """Deterministic salted SHA-256 over sorted device attributes"""

    def __init__(self, salt: str = DEFAULT_FINGERPRINT_SALT):
        self.salt = salt

    def hash_components(self, components: Dict[str, object]) -> str:
        parts = [f"{key}:{components[key]}" for key in sorted(components)]
        payload = self.salt + "|" + "|".join(parts)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def generate_client_fingerprint(
        self,
        user_agent: str,
        screen_resolution: str,
        color_depth: int,
        timezone: str,
        language: str,
        platform: str,
        hardware_concurrency: int,
        device_memory: int,
        touch_support: bool,
        webgl_renderer: str,
    ) -> str:
        return self.hash_components({
            "user_agent": user_agent,
            "screen_resolution": screen_resolution,
            "color_depth": color_depth,
            "timezone": timezone,
            "language": language,
            "platform": platform,
            "hardware_concurrency": hardware_concurrency,
            "device_memory": device_memory,
            "touch_support": str(touch_support).lower(),
            "webgl_renderer": webgl_renderer,
        })

    def fingerprint_device(self, player_id: str, ip_address: str = "", **attributes) -> DeviceFingerprint:
        """Build a DeviceFingerprint record for the given client attributes"""
        fingerprint = self.generate_client_fingerprint(**attributes)
        now = utcnow()
        return DeviceFingerprint(
            player_id=player_id,
            fingerprint=fingerprint,
            ip_address=ip_address,
            first_seen=now,
            last_seen=now,
            **attributes,
        )


class NetworkAnalyzer:
    """Groups addresses into /24 (IPv4) or /64 (IPv6) networks"""

    @staticmethod
    def get_network_prefix(ip: str) -> str:
        try:
            address = ipaddress.ip_address(ip.strip())
        except ValueError:
            return ip

        prefix = 24 if address.version == 4 else 64
        return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False))

    @classmethod
    def is_same_network(cls, ip_a: Optional[str], ip_b: Optional[str]) -> bool:
        if not ip_a or not ip_b:
            return False
        return cls.get_network_prefix(ip_a) == cls.get_network_prefix(ip_b)
