# tests/test_fingerprint.py

import pytest

from tablewatch.detectors.fingerprint import DeviceFingerprintHasher, NetworkAnalyzer

CLIENT = {
    "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64)",
    "screen_resolution": "1920x1080",
    "color_depth": 24,
    "timezone": "Europe/Paris",
    "language": "fr-FR",
    "platform": "Win32",
    "hardware_concurrency": 8,
    "device_memory": 16,
    "touch_support": False,
    "webgl_renderer": "ANGLE (NVIDIA GeForce RTX 3060)",
}

CHANGED = {
    "user_agent": "Mozilla/5.0 (Macintosh)",
    "screen_resolution": "2560x1440",
    "color_depth": 30,
    "timezone": "America/New_York",
    "language": "en-US",
    "platform": "MacIntel",
    "hardware_concurrency": 4,
    "device_memory": 8,
    "touch_support": True,
    "webgl_renderer": "Apple M1",
}


class TestDeviceFingerprintHasher:
    """Tests for salted device fingerprints."""

    def test_deterministic(self):
        """✅ Same attributes always give the same hash."""
        hasher = DeviceFingerprintHasher()
        first = hasher.generate_client_fingerprint(**CLIENT)
        second = DeviceFingerprintHasher().generate_client_fingerprint(**CLIENT)

        assert first == second
        assert len(first) == 64

    @pytest.mark.parametrize("attribute", sorted(CLIENT))
    def test_any_attribute_change_changes_hash(self, attribute):
        """✅ Changing one attribute changes the fingerprint."""
        hasher = DeviceFingerprintHasher()
        changed = dict(CLIENT, **{attribute: CHANGED[attribute]})

        assert hasher.generate_client_fingerprint(**changed) != hasher.generate_client_fingerprint(**CLIENT)

    def test_salt_changes_hash(self):
        """✅ Different salts produce different fingerprints."""
        a = DeviceFingerprintHasher("salt-a").generate_client_fingerprint(**CLIENT)
        b = DeviceFingerprintHasher("salt-b").generate_client_fingerprint(**CLIENT)
        assert a != b

    def test_component_order_does_not_matter(self):
        """✅ Components are sorted before hashing."""
        hasher = DeviceFingerprintHasher()
        assert hasher.hash_components({"a": 1, "b": 2}) == hasher.hash_components({"b": 2, "a": 1})

    def test_fingerprint_device_record(self):
        """✅ Builds a DeviceFingerprint carrying the hash and attributes."""
        record = DeviceFingerprintHasher().fingerprint_device("p1", ip_address="10.0.0.5", **CLIENT)

        assert record.player_id == "p1"
        assert record.ip_address == "10.0.0.5"
        assert record.platform == "Win32"
        assert record.fingerprint == DeviceFingerprintHasher().generate_client_fingerprint(**CLIENT)


class TestNetworkAnalyzer:
    """Tests for IP network grouping."""

    def test_ipv4_prefix(self):
        """✅ IPv4 addresses group by /24."""
        assert NetworkAnalyzer.get_network_prefix("192.168.1.77") == "192.168.1.0/24"

    def test_ipv6_prefix(self):
        """✅ IPv6 addresses group by /64."""
        assert NetworkAnalyzer.get_network_prefix("2001:db8:abcd:12::1") == "2001:db8:abcd:12::/64"

    def test_invalid_address_returned_unchanged(self):
        """✅ Unparsable input passes through."""
        assert NetworkAnalyzer.get_network_prefix("not-an-ip") == "not-an-ip"

    def test_is_same_network(self):
        """✅ Same /24 matches, different /24 or missing address does not."""
        assert NetworkAnalyzer.is_same_network("10.0.0.1", "10.0.0.200")
        assert not NetworkAnalyzer.is_same_network("10.0.0.1", "10.0.1.1")
        assert not NetworkAnalyzer.is_same_network("10.0.0.1", None)
