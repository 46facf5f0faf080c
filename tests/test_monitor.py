"""End-to-end tests for SecurityMonitor wiring."""

from __future__ import annotations

import time
from unittest.mock import patch

import pytest

from webguard.detection.models import EventType
from webguard.monitor import MonitorSettings, SecurityMonitor

ATTACKER = "203.0.113.66"


def _events_of(monitor, event_type):
    return [e for e in monitor.events.snapshot() if e.type == event_type]


class TestInspectRequest:
    def test_findings_recorded_and_scored(self, monitor, make_request):
        request = make_request("/search?q=<script>alert(1)</script>", source_ip=ATTACKER,
                               headers={"User-Agent": "Mozilla/5.0", "Referer": "https://evil.test"})
        findings = monitor.inspect_request(request)

        assert [f.type for f in findings] == ["xss_attempt"]
        events = _events_of(monitor, "xss_attempt")
        assert len(events) == 1
        ctx = events[0].request_context
        assert ctx.ip == ATTACKER
        assert ctx.user_agent == "Mozilla/5.0"
        assert ctx.headers["referer"] == "https://evil.test"
        assert monitor.get_suspicion_score(ATTACKER) == 5

    def test_detect_threats_has_no_side_effects(self, monitor, make_request):
        monitor.detect_threats(make_request("/a?x=../../etc/passwd", source_ip=ATTACKER))
        assert len(monitor.events) == 0
        assert monitor.get_suspicion_score(ATTACKER) == 0

    def test_suspicious_headers_indicators_kept(self, monitor, make_request):
        monitor.inspect_request(make_request("/", headers={"User-Agent": "nikto"}, source_ip=ATTACKER))
        event = _events_of(monitor, "suspicious_headers")[0]
        assert event.details["indicators"][0]["header"] == "user-agent"


class TestAutomaticBlocking:
    def test_threshold_blocks_once(self, monitor, make_request):
        """임계값 이상 누적 시 차단되고 ip_blocked 이벤트는 정확히 한 번."""
        monitor.inspect_request(make_request("/q?id=1' or '1'='1", source_ip=ATTACKER))
        assert monitor.is_ip_blocked(ATTACKER)

        monitor.inspect_request(make_request("/q?id=1' or '1'='1", source_ip=ATTACKER))
        blocked = _events_of(monitor, "ip_blocked")
        assert len(blocked) == 1
        assert blocked[0].details["automatic_block"] is True
        assert blocked[0].details["reason"] == "Suspicious activity score: 10"
        assert monitor.registry.get_blocks()[0]["reason"] == "Suspicious activity score: 10"
        assert blocked[0].source_ip == ATTACKER

    def test_below_threshold_not_blocked(self, monitor):
        for _ in range(4):
            monitor.update_suspicious_activity(ATTACKER, "failed_login")
        assert monitor.get_suspicion_score(ATTACKER) == 8
        assert not monitor.is_ip_blocked(ATTACKER)

    def test_trusted_ip_never_blocked(self, monitor, make_request):
        for _ in range(5):
            monitor.inspect_request(make_request("/x?c=; cat /etc/passwd", source_ip="10.0.0.1"))
        monitor.block_ip("10.0.0.1", "manual attempt")
        assert not monitor.is_ip_blocked("10.0.0.1")
        assert _events_of(monitor, "ip_blocked") == []
        assert monitor.get_suspicion_score("10.0.0.1") == 75

    def test_block_event_raises_alert(self, monitor):
        with patch.object(monitor.alerts, "send_alert") as send_alert:
            monitor.block_ip(ATTACKER, "manual")
        assert send_alert.call_args.args[0].type == "ip_blocked"


class TestLoginIntegration:
    def test_brute_force_feeds_events_and_suspicion(self, monitor):
        verdicts = [monitor.track_login_attempt("alice", False, ATTACKER) for _ in range(5)]
        assert [v.allowed for v in verdicts] == [True, True, True, True, False]

        assert len(_events_of(monitor, "failed_login")) == 4
        assert len(_events_of(monitor, "brute_force_attempt")) == 1
        # 2 * 4 (failed_login) + 20 (brute_force_attempt)
        assert monitor.get_suspicion_score(ATTACKER) == 28
        assert monitor.is_ip_blocked(ATTACKER)

    def test_login_event_context(self, monitor):
        monitor.track_login_attempt("bob", False, ATTACKER, user_agent="curl/8.0")
        event = _events_of(monitor, "failed_login")[0]
        assert event.request_context.user_agent == "curl/8.0"
        assert event.details["identifier"] == "bob"


class TestUnblock:
    def test_unblock_is_full_pardon(self, monitor):
        monitor.block_ip(ATTACKER, "manual")
        monitor.block_ip("198.51.100.2", "manual")
        monitor.update_suspicious_activity(ATTACKER, "xss_attempt")
        before = monitor.get_metrics()["blocked_ips"]

        assert monitor.unblock_ip(ATTACKER, "pardon") is True

        metrics = monitor.get_metrics()
        assert metrics["blocked_ips"] == before - 1
        assert monitor.get_suspicion_score(ATTACKER) == 0
        assert len(_events_of(monitor, "ip_unblocked")) == 1

    def test_unblock_not_blocked_returns_false(self, monitor):
        assert monitor.unblock_ip(ATTACKER) is False


class TestMetricsAndExport:
    def _seed(self, monitor):
        now = time.time()
        with patch("webguard.storage.event_store.time") as mock_time:
            mock_time.time.return_value = now - 7200
            monitor.record("sql_injection", {"severity": "high"}, source_ip="1.1.1.1")
            mock_time.time.return_value = now - 60
            monitor.record("xss_attempt", {}, source_ip="2.2.2.2")
            monitor.record("xss_attempt", {}, source_ip="2.2.2.2")

    def test_get_metrics(self, monitor):
        self._seed(monitor)
        metrics = monitor.get_metrics("24h")
        assert metrics["total_events"] == 3
        assert metrics["events_by_type"] == {"sql_injection": 1, "xss_attempt": 2}
        assert metrics["top_attacker_ips"][0] == {"ip": "2.2.2.2", "count": 2}
        assert metrics["time_window"] == "24h"

    def test_unique_attackers_not_capped(self, monitor):
        for i in range(12):
            monitor.record("xss_attempt", {}, source_ip=f"198.51.100.{i}")
        metrics = monitor.get_metrics()
        assert len(metrics["top_attacker_ips"]) == 10
        assert metrics["unique_attacker_ips"] == 12

    def test_export_respects_window(self, monitor):
        """export_all("1h")는 최근 1시간 이벤트만 포함한다."""
        self._seed(monitor)
        cutoff = time.time() - 3600
        exported = monitor.export_all("1h")
        assert len(exported["events"]) == 2
        assert all(e["timestamp"] >= cutoff for e in exported["events"])
        assert set(exported) == {
            "events", "suspicion_records", "blocked_ips", "login_states",
            "export_time", "time_window",
        }

    def test_invalid_window_falls_back_to_day(self, monitor):
        self._seed(monitor)
        assert monitor.get_metrics("bogus")["total_events"] == 3

    def test_query_window(self, monitor):
        self._seed(monitor)
        assert monitor.query(time_window="1h").total == 2
        assert monitor.query(event_type="sql_injection", time_window="3h").total == 1


class TestCleanup:
    def test_cleanup_uses_retention(self, monitor):
        now = time.time()
        with patch("webguard.storage.event_store.time") as mock_time:
            mock_time.time.return_value = now - 8 * 86400
            monitor.record("failed_login", source_ip="1.1.1.1")
        monitor.record("failed_login", source_ip="1.1.1.1")

        removed = monitor.cleanup()
        assert removed["events"] == 1
        assert len(monitor.events) == 1

    def test_cleanup_drops_idle_trackers(self, monitor):
        monitor.update_suspicious_activity(ATTACKER, "failed_login")
        monitor.track_login_attempt("alice", True, ATTACKER)
        removed = monitor.cleanup(retention_seconds=-10)
        assert removed["suspicion"] == 1
        assert removed["login"] == 1


class TestSettings:
    def test_from_config_converts_ms(self, config):
        settings = MonitorSettings.from_config(config)
        assert settings.lockout_seconds == 1800
        assert settings.login_window_seconds == 300
        assert settings.retention_seconds == 7 * 86400
        assert settings.trusted_ips == ["10.0.0.1"]
        assert settings.geoip_enabled is False

    def test_env_overrides(self, monkeypatch, tmp_path):
        from webguard.utils.config import Config

        monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "3")
        monkeypatch.setenv("LOGIN_LOCKOUT_DURATION_MS", "60000")
        monkeypatch.setenv("TRUSTED_IPS", "10.9.9.9, 10.8.8.8")
        monkeypatch.setenv("SECURITY_ALERT_WEBHOOK", "https://hooks.example.com/x")
        config_file = tmp_path / "c.yaml"
        config_file.write_text("webguard:\n  trusted:\n    ips: ['10.0.0.1']\n")

        settings = MonitorSettings.from_config(Config.load(config_file))
        assert settings.max_login_attempts == 3
        assert settings.lockout_seconds == 60
        assert settings.trusted_ips == ["10.0.0.1", "10.9.9.9", "10.8.8.8"]

        monitor = SecurityMonitor(settings)
        assert len(monitor.alerts.channels) == 1
        assert monitor.trusted.is_trusted("10.8.8.8")

    def test_defaults(self):
        settings = MonitorSettings()
        assert settings.max_login_attempts == 5
        assert settings.suspicion_threshold == 10


@pytest.mark.asyncio
async def test_start_and_stop(settings):
    monitor = SecurityMonitor(settings)
    await monitor.start()
    assert monitor.maintenance.running
    await monitor.stop()
    assert not monitor.maintenance.running


def test_record_returns_event_id(monitor):
    event_id = monitor.record(EventType.RATE_LIMIT_EXCEEDED, {"limit": 100}, source_ip=ATTACKER)
    assert monitor.events.get(event_id).details == {"limit": 100}
