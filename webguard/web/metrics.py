"""WebGuard용 Prometheus 메트릭 정의."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest

# --- 보안 이벤트 ---
events_total   = Counter("webguard_security_events_total", "Security events recorded", ["type", "severity"])
findings_total = Counter("webguard_threat_findings_total", "Threat findings from request inspection", ["type"])
alerts_total   = Counter("webguard_alerts_total", "Security alerts raised", ["type"])

# --- 로그인 ---
login_lockouts_total = Counter("webguard_login_lockouts_total", "Login lockouts triggered")

# --- 차단 ---
blocked_ips = Gauge("webguard_blocked_ips", "Currently blocked IP addresses")

# --- 웹훅 ---
webhook_duration = Histogram(
    "webguard_webhook_duration_seconds",
    "Webhook send duration",
    ["channel"],
)

# --- 정리 ---
cleanup_removed_total = Counter(
    "webguard_cleanup_removed_total",
    "Records removed by retention cleanup",
    ["kind"],
)


def get_metrics_output() -> bytes:
    """Prometheus 텍스트 노출 형식을 생성한다."""
    return generate_latest()
