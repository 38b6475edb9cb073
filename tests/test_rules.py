# tests/test_rules.py

import asyncio
import pytest
from datetime import timedelta

from tablewatch.detectors.rules import (
    AntiCheatRule,
    RuleBasedDetector,
    RuleCatalog,
    RuleCheckData,
    RuleEngine,
    default_rule_catalog,
)
from tablewatch.entities import DeviceFingerprint, PlayerStats
from tablewatch.errors import RuleNotFoundError, StorageError
from tablewatch.repositories.memory import InMemoryAlertStorage
from tests.factories import NOW, make_action


def fired(alerts):
    return {a.metadata["rule"] for a in alerts}


class SlowAlertStorage(InMemoryAlertStorage):
    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    async def create_alert(self, alert):
        await asyncio.sleep(self.delay)
        await super().create_alert(alert)


class FlakyAlertStorage(InMemoryAlertStorage):
    """First write fails"""

    def __init__(self):
        super().__init__()
        self.failures = 1

    async def create_alert(self, alert):
        if self.failures > 0:
            self.failures -= 1
            raise StorageError("transient outage")
        await super().create_alert(alert)


class TestRuleCatalog:
    """Tests for the default rule catalog."""

    def test_default_rules_present(self):
        """✅ All built-in rules are registered and enabled."""
        catalog = default_rule_catalog()

        assert len(catalog) == 11
        assert "excessive_volume_24h" in catalog
        assert "same_device_multi_account" in catalog
        assert len(catalog.enabled()) == 11

    def test_unknown_rule_raises(self):
        """✅ Looking up a missing rule raises RuleNotFoundError."""
        with pytest.raises(RuleNotFoundError) as exc:
            RuleCatalog().get("nope")
        assert exc.value.rule_name == "nope"

    def test_catalogs_are_independent(self):
        """✅ Disabling a rule in one detector does not affect another."""
        first = RuleBasedDetector()
        second = RuleBasedDetector()
        first.disable_rule("instant_actions")

        assert first.get_rule("instant_actions").enabled is False
        assert second.get_rule("instant_actions").enabled is True

    def test_enable_disable_unknown(self):
        """✅ Enabling or disabling a missing rule raises."""
        detector = RuleBasedDetector()
        with pytest.raises(RuleNotFoundError):
            detector.disable_rule("missing")
        with pytest.raises(RuleNotFoundError):
            detector.enable_rule("missing")


class TestRuleBasedDetector:
    """Tests for rule evaluation."""

    @pytest.mark.asyncio
    async def test_clean_player_fires_nothing(self):
        """✅ Default data triggers no rule."""
        alerts = await RuleBasedDetector().evaluate_rules(RuleCheckData(player_id="p1"), now=NOW)
        assert alerts == []

    @pytest.mark.asyncio
    async def test_volume_rule(self):
        """✅ More than 500 hands in 24h fires a high bot alert."""
        data = RuleCheckData(player_id="p1", hands_played_24h=600, agent_id="agent1", club_id="club1")
        alerts = await RuleBasedDetector().evaluate_rules(data, now=NOW)

        assert fired(alerts) == {"excessive_volume_24h"}
        alert = alerts[0]
        assert alert.alert_type == "bot"
        assert alert.severity == "high"
        assert alert.score == 0.8
        assert alert.agent_id == "agent1"
        assert alert.status == "pending"
        assert alert.id.startswith("alert_excessive_volume_24h_")
        assert alert.evidence == [
            "Rule 'excessive_volume_24h' triggered: Player played unrealistic number of hands in 24 hours"
        ]

    @pytest.mark.asyncio
    async def test_perfect_win_rate_needs_sample(self):
        """✅ Perfect win rate only counts with at least 50 hands."""
        detector = RuleBasedDetector()
        small = await detector.evaluate_rules(
            RuleCheckData(player_id="p1", hands_played_24h=20, win_rate_24h=1.0), now=NOW
        )
        large = await detector.evaluate_rules(
            RuleCheckData(player_id="p2", hands_played_24h=60, win_rate_24h=0.97), now=NOW
        )

        assert small == []
        assert fired(large) == {"perfect_win_rate"}

    @pytest.mark.asyncio
    async def test_instant_actions(self):
        """✅ Average action time under 0.5s fires, zero does not."""
        detector = RuleBasedDetector()
        fast = await detector.evaluate_rules(RuleCheckData(player_id="p1", avg_action_time=0.3), now=NOW)
        unknown = await detector.evaluate_rules(RuleCheckData(player_id="p2", avg_action_time=0.0), now=NOW)

        assert fired(fast) == {"instant_actions"}
        assert unknown == []

    @pytest.mark.asyncio
    async def test_same_device_threshold(self):
        """✅ Three accounts on one device fires a multi-account alert."""
        data = RuleCheckData(
            player_id="p1",
            device_fingerprint="fp1",
            accounts_from_device={"fp1": 3},
        )
        alerts = await RuleBasedDetector().evaluate_rules(data, now=NOW)

        assert fired(alerts) == {"same_device_multi_account"}
        assert alerts[0].alert_type == "multi_account"

    @pytest.mark.asyncio
    async def test_no_losses(self):
        """✅ Winning without a single loss over 100+ hands fires."""
        data = RuleCheckData(player_id="p1", hands_played_7d=150, total_chips_won=500, total_chips_lost=0)
        alerts = await RuleBasedDetector().evaluate_rules(data, now=NOW)
        assert "no_losses_7d" in fired(alerts)

    @pytest.mark.asyncio
    async def test_disabled_rule_does_not_fire(self):
        """✅ Disabled rules are skipped."""
        detector = RuleBasedDetector()
        detector.disable_rule("excessive_volume_24h")

        alerts = await detector.evaluate_rules(RuleCheckData(player_id="p1", hands_played_24h=600), now=NOW)
        assert alerts == []

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_repeat(self):
        """✅ A rule does not re-fire for the same player inside its cooldown."""
        detector = RuleBasedDetector()
        data = RuleCheckData(player_id="p1", hands_played_24h=600)

        first = await detector.evaluate_rules(data, now=NOW)
        again = await detector.evaluate_rules(data, now=NOW + timedelta(minutes=30))
        later = await detector.evaluate_rules(data, now=NOW + timedelta(hours=1, seconds=1))

        assert len(first) == 1
        assert again == []
        assert len(later) == 1

    @pytest.mark.asyncio
    async def test_cooldown_is_per_player(self):
        """✅ Another player is not affected by a cooldown."""
        detector = RuleBasedDetector()
        await detector.evaluate_rules(RuleCheckData(player_id="p1", hands_played_24h=600), now=NOW)
        other = await detector.evaluate_rules(RuleCheckData(player_id="p2", hands_played_24h=600), now=NOW)

        assert len(other) == 1

    @pytest.mark.asyncio
    async def test_zero_cooldown_fires_every_time(self):
        """✅ Rules without cooldown fire on every evaluation."""
        detector = RuleBasedDetector()
        data = RuleCheckData(player_id="p1", alert_count_24h=12)

        assert fired(await detector.evaluate_rules(data, now=NOW)) == {"alert_fatigue"}
        assert fired(await detector.evaluate_rules(data, now=NOW)) == {"alert_fatigue"}

    @pytest.mark.asyncio
    async def test_action_hook_runs_and_failures_are_contained(self):
        """✅ Sync and async hooks run; a failing hook does not drop the alert."""
        seen = []

        async def record(alert):
            seen.append(alert.id)

        def explode(alert):
            raise RuntimeError("hook down")

        catalog = RuleCatalog([
            AntiCheatRule(name="always", description="d", category="pattern", severity="low",
                          check=lambda d: True, action=record),
            AntiCheatRule(name="broken", description="d", category="pattern", severity="low",
                          check=lambda d: True, action=explode),
        ])
        alerts = await RuleBasedDetector(catalog).evaluate_rules(RuleCheckData(player_id="p1"), now=NOW)

        assert len(alerts) == 2
        assert seen == [alerts[0].id]


class TestRuleEngine:
    """Tests for rule input assembly and persistence."""

    @pytest.mark.asyncio
    async def test_build_check_data_counts_accounts(self, alert_storage, fingerprint_db):
        """✅ IP and device account counts come from the fingerprint store."""
        for player in ("p1", "p2", "p3"):
            await fingerprint_db.store_fingerprint(DeviceFingerprint(
                player_id=player, fingerprint="dev1", ip_address="10.0.0.1",
            ))

        engine = RuleEngine(RuleBasedDetector(), alert_storage, fingerprint_db)
        action = make_action(ip_address="10.0.0.1", device_id="dev1")
        data = await engine.build_check_data(action, PlayerStats(player_id="p1", hands_played_24h=12))

        assert data.accounts_from_ip == {"10.0.0.1": 3}
        assert data.accounts_from_device == {"dev1": 3}
        assert data.hands_played_24h == 12
        assert data.table_id == "t1"

    @pytest.mark.asyncio
    async def test_fired_alerts_are_persisted(self, alert_storage, fingerprint_db):
        """✅ Every fired alert lands in alert storage."""
        for player in ("p1", "p2", "p3"):
            await fingerprint_db.store_fingerprint(DeviceFingerprint(
                player_id=player, fingerprint="dev1", ip_address="10.0.0.1",
            ))

        engine = RuleEngine(RuleBasedDetector(), alert_storage, fingerprint_db)
        action = make_action(ip_address="10.0.0.1", device_id="dev1")
        alerts = await engine.process_player_action(action, PlayerStats(player_id="p1"), now=NOW)

        assert fired(alerts) == {"same_ip_multi_account", "same_device_multi_account"}
        stored = await alert_storage.get_player_alerts("p1")
        assert {a.id for a in stored} == {a.id for a in alerts}
        assert all(a.hand_id == "h1" for a in stored)

    @pytest.mark.asyncio
    async def test_cancelled_save_does_not_burn_cooldown(self, fingerprint_db):
        """✅ A save cut off by its deadline lets the rule fire again."""
        storage = SlowAlertStorage(delay=0.2)
        engine = RuleEngine(RuleBasedDetector(), storage, fingerprint_db)
        stats = PlayerStats(player_id="p1", hands_played_24h=600)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(engine.process_player_action(make_action(), stats, now=NOW), 0.05)
        assert await storage.get_player_alerts("p1") == []

        storage.delay = 0
        alerts = await engine.process_player_action(make_action(), stats, now=NOW)

        assert fired(alerts) == {"excessive_volume_24h"}
        assert len(await storage.get_player_alerts("p1")) == 1

    @pytest.mark.asyncio
    async def test_failed_save_does_not_burn_cooldown(self, fingerprint_db):
        """✅ A storage error propagates and the rule fires on the next action."""
        storage = FlakyAlertStorage()
        engine = RuleEngine(RuleBasedDetector(), storage, fingerprint_db)
        stats = PlayerStats(player_id="p1", hands_played_24h=600)

        with pytest.raises(StorageError):
            await engine.process_player_action(make_action(), stats, now=NOW)

        alerts = await engine.process_player_action(make_action(), stats, now=NOW + timedelta(seconds=10))

        assert fired(alerts) == {"excessive_volume_24h"}
        assert len(await storage.get_player_alerts("p1")) == 1

    @pytest.mark.asyncio
    async def test_saved_alerts_keep_cooldown(self, alert_storage, fingerprint_db):
        """✅ Once stored, the same rule stays quiet for its cooldown."""
        engine = RuleEngine(RuleBasedDetector(), alert_storage, fingerprint_db)
        stats = PlayerStats(player_id="p1", hands_played_24h=600)

        await engine.process_player_action(make_action(), stats, now=NOW)
        again = await engine.process_player_action(make_action(), stats, now=NOW + timedelta(minutes=10))

        assert again == []

    @pytest.mark.asyncio
    async def test_release_keeps_newer_trigger(self):
        """✅ Releasing a stale trigger time does not clear a newer one."""
        detector = RuleBasedDetector()
        data = RuleCheckData(player_id="p1", hands_played_24h=600)

        await detector.evaluate_rules(data, now=NOW)
        await detector.release_cooldown("excessive_volume_24h", "p1", NOW - timedelta(hours=2))

        assert await detector.evaluate_rules(data, now=NOW + timedelta(minutes=1)) == []
