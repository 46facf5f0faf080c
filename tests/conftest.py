"""Shared fixtures for WebGuard tests (in-memory, no network)."""

from __future__ import annotations

from pathlib import Path

import pytest

from webguard.detection.models import RequestSnapshot
from webguard.monitor import MonitorSettings, SecurityMonitor
from webguard.utils.config import Config

# Config에 영향을 주는 환경변수
_ENV_VARS = (
    "MAX_LOGIN_ATTEMPTS",
    "LOGIN_LOCKOUT_DURATION_MS",
    "BRUTE_FORCE_WINDOW_MS",
    "SUSPICIOUS_ACTIVITY_THRESHOLD",
    "TRUSTED_IPS",
    "SECURITY_ALERT_WEBHOOK",
    "RETENTION_PERIOD_MS",
    "WEBGUARD_ADMIN_TOKEN",
    "WEBGUARD_LOG_LEVEL",
    "WEBGUARD_CONFIG",
)

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """테스트 환경에서 설정 오버라이드 환경변수를 제거한다.
    load_dotenv()는 이미 설정된 변수를 덮어쓰지 않으므로 빈 값으로 둔다.
    """
    for name in _ENV_VARS:
        monkeypatch.setenv(name, "")


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config with a tmp log directory, admin token and no GeoIP."""
    yaml_content = f"""
webguard:
  login:
    max_attempts: 5
    window_ms: 300000
    lockout_duration_ms: 1800000
  suspicion:
    threshold: 10
  trusted:
    ips: ["10.0.0.1"]
    ip_ranges: ["192.168.100.0/24"]
  alerts:
    webhook_url: ""
  retention:
    period_ms: 604800000
    cleanup_interval_seconds: 3600
  geoip:
    enabled: false
  web:
    admin_token: "{ADMIN_TOKEN}"
    trusted_proxies: ["127.0.0.1"]
    guard:
      enabled: true
      max_body_bytes: 1024
  logging:
    level: DEBUG
    directory: "{tmp_path / 'logs'}"
"""
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(yaml_content)
    return Config.load(config_file)


@pytest.fixture
def settings() -> MonitorSettings:
    return MonitorSettings(geoip_enabled=False, trusted_ips=["10.0.0.1"])


@pytest.fixture
def monitor(settings: MonitorSettings) -> SecurityMonitor:
    return SecurityMonitor(settings)


@pytest.fixture
def make_request():
    """RequestSnapshot factory."""
    def _make(url: str = "/", method: str = "GET", source_ip: str = "203.0.113.10", **kwargs):
        path = kwargs.pop("path", url.split("?", 1)[0])
        return RequestSnapshot(method=method, url=url, path=path, source_ip=source_ip, **kwargs)
    return _make
