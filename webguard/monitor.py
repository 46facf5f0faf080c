"""SecurityMonitor: 검사기, 이벤트 저장소, 추적기, 차단 레지스트리, 알림의 조립점.

단일 인스턴스가 모든 공유 상태를 소유하며 요청 처리 계층에 주입된다.
컴포넌트 간 순환 의존은 콜백으로 끊는다:

- 의심 점수 임계값 초과 -> block_ip(automatic=True)
- 차단/해제 -> ip_blocked/ip_unblocked 이벤트 기록
- 로그인 실패/잠금 -> 이벤트 기록 + 의심 점수 갱신
- 모든 이벤트 기록 -> 알림 판정
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from webguard.alerts.channels.webhook import WebhookChannel
from webguard.alerts.dispatcher import AlertDispatcher
from webguard.detection.inspector import RequestInspector
from webguard.detection.models import (
    EventType,
    RequestContext,
    RequestSnapshot,
    ThreatFinding,
    format_timestamp,
)
from webguard.detection.patterns import PatternCatalog
from webguard.response.blocker import IPBlockRegistry
from webguard.response.trusted import TrustedIPSet
from webguard.services.maintenance import MaintenanceService
from webguard.storage.event_store import EventPage, SecurityEventStore
from webguard.tracking.login import LoginAttemptTracker, LoginVerdict
from webguard.tracking.suspicion import SuspicionTracker
from webguard.utils.config import Config
from webguard.utils.geoip import configure_geoip, lookup_geo_hint
from webguard.utils.timewindow import parse_time_window
from webguard.web import metrics

logger = logging.getLogger("webguard.monitor")

_MS = 1000.0


@dataclass
class MonitorSettings:
    """SecurityMonitor 런타임 설정. 시간 값은 모두 초 단위."""
    max_login_attempts: int = 5
    login_window_seconds: float = 300
    lockout_seconds: float = 1800
    suspicion_threshold: int = 10
    suspicion_weights: dict[str, int] = field(default_factory=dict)
    trusted_ips: list[str] = field(default_factory=list)
    trusted_ranges: list[str] = field(default_factory=list)
    webhook_url: str | None = None
    webhook_timeout: float = 10.0
    retention_seconds: float = 7 * 24 * 3600
    cleanup_interval_seconds: float = 3600
    extra_patterns: dict[str, list[str]] = field(default_factory=dict)
    geoip_enabled: bool = True
    geoip_db_path: str | None = None

    @classmethod
    def from_config(cls, config: Config) -> MonitorSettings:
        """Config에서 설정을 만든다. 밀리초 설정은 초로 변환한다."""
        trusted_ips = list(config.get("trusted.ips", []) or [])
        trusted_ips += list(config.get("trusted.env_ips", []) or [])
        return cls(
            max_login_attempts=int(config.get("login.max_attempts", 5)),
            login_window_seconds=int(config.get("login.window_ms", 300_000)) / _MS,
            lockout_seconds=int(config.get("login.lockout_duration_ms", 1_800_000)) / _MS,
            suspicion_threshold=int(config.get("suspicion.threshold", 10)),
            suspicion_weights=dict(config.get("suspicion.weights", {}) or {}),
            trusted_ips=trusted_ips,
            trusted_ranges=list(config.get("trusted.ip_ranges", []) or []),
            webhook_url=config.get("alerts.webhook_url") or None,
            webhook_timeout=float(config.get("alerts.timeout_seconds", 10)),
            retention_seconds=int(config.get("retention.period_ms", 604_800_000)) / _MS,
            cleanup_interval_seconds=float(config.get("retention.cleanup_interval_seconds", 3600)),
            extra_patterns=dict(config.get("detection.extra_patterns", {}) or {}),
            geoip_enabled=bool(config.get("geoip.enabled", True)),
            geoip_db_path=config.get("geoip.db_path") or None,
        )


class SecurityMonitor:
    """보안 모니터링 파사드. 모든 공유 상태를 소유한다."""

    def __init__(self, settings: MonitorSettings | None = None) -> None:
        """설정에서 모든 컴포넌트를 구성하고 콜백으로 연결한다."""
        self.settings = settings or MonitorSettings()
        s = self.settings

        self.inspector = RequestInspector(PatternCatalog(extra_patterns=s.extra_patterns))
        self.events    = SecurityEventStore()
        self.trusted   = TrustedIPSet(s.trusted_ips, s.trusted_ranges)
        self.registry  = IPBlockRegistry(self.trusted, recorder=self._record_block_event)
        self.suspicion = SuspicionTracker(
            threshold=s.suspicion_threshold,
            weights=s.suspicion_weights,
            is_trusted=self.trusted.is_trusted,
            on_threshold=self._on_threshold,
        )
        self.login = LoginAttemptTracker(
            max_attempts=s.max_login_attempts,
            window_seconds=s.login_window_seconds,
            lockout_seconds=s.lockout_seconds,
            emit=self._on_login_event,
        )

        channels = []
        if s.webhook_url:
            channel = WebhookChannel(s.webhook_url, timeout=s.webhook_timeout)
            if channel.configured:
                channels.append(channel)
                logger.info("Security alert webhook enabled")
        self.alerts      = AlertDispatcher(channels, send_timeout=s.webhook_timeout + 5)
        self.maintenance = MaintenanceService(self, interval_seconds=s.cleanup_interval_seconds)

    # -- 수명 주기 --

    async def start(self) -> None:
        """이벤트 루프를 바인딩하고 정리 루프를 시작한다."""
        self.alerts.bind_loop(asyncio.get_running_loop())
        if self.settings.geoip_enabled:
            configure_geoip(self.settings.geoip_db_path)
        await self.maintenance.start()
        logger.info(
            "SecurityMonitor started (threshold=%d, max_login_attempts=%d)",
            self.settings.suspicion_threshold, self.settings.max_login_attempts,
        )

    async def stop(self) -> None:
        """정리 루프와 대기 중인 알림 전송을 중지한다."""
        await self.maintenance.stop()
        await self.alerts.stop()
        logger.info("SecurityMonitor stopped")

    # -- 탐지 --

    def detect_threats(self, request: RequestSnapshot) -> list[ThreatFinding]:
        """요청의 위협 지표를 반환한다. 상태를 변경하지 않는다."""
        return self.inspector.detect_threats(request)

    def inspect_request(self, request: RequestSnapshot) -> list[ThreatFinding]:
        """탐지 후 결과마다 이벤트를 기록하고 의심 점수를 갱신한다."""
        findings = self.detect_threats(request)
        if not findings:
            return findings

        ip = request.source_ip
        geo = lookup_geo_hint(ip) if self.settings.geoip_enabled else None
        context = RequestContext.from_request(request, geo=geo)
        for finding in findings:
            metrics.findings_total.labels(type=finding.type).inc()
            data: dict[str, Any] = {
                "severity": finding.severity.value,
                "description": finding.description,
            }
            if finding.details:
                data["indicators"] = finding.details
            self.record(finding.type, data, request_context=context)
            self.update_suspicious_activity(ip, finding.type)
        return findings

    # -- 이벤트 --

    def record(
        self,
        event_type: EventType | str,
        data: dict[str, Any] | None = None,
        request_context: RequestContext | None = None,
        source_ip: str | None = None,
    ) -> str:
        """보안 이벤트를 기록하고 알림 판정 후 이벤트 ID를 반환한다."""
        event = self.events.record(event_type, data, request_context, source_ip)
        metrics.events_total.labels(type=event.type, severity=event.severity.value).inc()
        self.alerts.check_for_alerts(event)
        return event.id

    def query(
        self,
        event_type: str | None = None,
        ip: str | None = None,
        severity: str | None = None,
        time_window: str = "24h",
        limit: int = 50,
        offset: int = 0,
    ) -> EventPage:
        """필터와 페이지네이션을 적용해 최신순 이벤트를 조회한다."""
        return self.events.query(
            event_type=event_type,
            ip=ip,
            severity=severity,
            window_seconds=parse_time_window(time_window),
            limit=limit,
            offset=offset,
        )

    # -- 의심 점수 / 차단 --

    def update_suspicious_activity(self, ip: str, event_type: EventType | str) -> int:
        """IP의 의심 점수를 갱신하고 총점을 반환한다."""
        return self.suspicion.update_suspicious_activity(ip, event_type)

    def get_suspicion_score(self, ip: str) -> int:
        return self.suspicion.get_score(ip)

    def _on_threshold(self, ip: str, score: int) -> None:
        if not self.registry.is_ip_blocked(ip):
            self.block_ip(
                ip, f"Suspicious activity score: {score}", automatic=True,
            )

    def block_ip(self, ip: str, reason: str, automatic: bool = False) -> bool:
        """IP를 차단한다. 새로 차단되면 True."""
        blocked = self.registry.block_ip(ip, reason, automatic=automatic)
        metrics.blocked_ips.set(len(self.registry))
        return blocked

    def unblock_ip(self, ip: str, reason: str = "Manual unblock") -> bool:
        """IP 차단을 해제하고 의심 기록을 삭제한다 (완전 사면)."""
        was_blocked = self.registry.unblock_ip(ip, reason)
        self.suspicion.purge(ip)
        metrics.blocked_ips.set(len(self.registry))
        return was_blocked

    def is_ip_blocked(self, ip: str) -> bool:
        return self.registry.is_ip_blocked(ip)

    def _record_block_event(self, event_type: EventType, data: dict[str, Any], ip: str) -> None:
        self.record(event_type, data, source_ip=ip)

    # -- 로그인 --

    def track_login_attempt(
        self,
        identifier: str,
        success: bool,
        source_ip: str | None = None,
        user_agent: str | None = None,
    ) -> LoginVerdict:
        """로그인 시도를 기록하고 판정을 반환한다. allowed가 토큰 발급을 결정한다."""
        return self.login.track_login_attempt(identifier, success, source_ip, user_agent)

    def _on_login_event(
        self,
        event_type: EventType,
        data: dict[str, Any],
        ip: str,
        user_agent: str | None,
    ) -> None:
        if event_type is EventType.BRUTE_FORCE_ATTEMPT:
            metrics.login_lockouts_total.inc()
        context = RequestContext(ip=ip, user_agent=user_agent)
        self.record(event_type, data, request_context=context)
        self.update_suspicious_activity(ip, event_type)

    # -- 관리 조회 --

    def get_metrics(self, time_window: str = "24h") -> dict[str, Any]:
        """시간 윈도우 내 보안 지표 요약을 반환한다."""
        now = time.time()
        events = self.events.snapshot(since=now - parse_time_window(time_window))

        by_type = Counter(e.type for e in events)
        by_ip = Counter(e.source_ip for e in events if e.source_ip)

        return {
            "time_window": time_window,
            "total_events": len(events),
            "events_by_type": dict(by_type),
            "top_attacker_ips": [
                {"ip": ip, "count": count} for ip, count in by_ip.most_common(10)
            ],
            "unique_attacker_ips": len(by_ip),
            "blocked_ips": len(self.registry),
            "suspicious_ips": len(self.suspicion),
            "top_suspicious": self.suspicion.top(10),
            "timestamp": format_timestamp(now),
        }

    def export_all(self, time_window: str = "24h") -> dict[str, Any]:
        """윈도우 내 이벤트와 현재 추적 상태 전체를 내보낸다."""
        now = time.time()
        events = self.events.snapshot(since=now - parse_time_window(time_window))
        return {
            "events": [e.to_dict() for e in events],
            "suspicion_records": self.suspicion.snapshot(),
            "blocked_ips": self.registry.blocked_ips(),
            "login_states": self.login.snapshot(),
            "export_time": format_timestamp(now),
            "time_window": time_window,
        }

    def events_in_window(self, time_window: str = "24h") -> list:
        """윈도우 내 이벤트 목록 (기록 순서)."""
        return self.events.snapshot(since=time.time() - parse_time_window(time_window))

    # -- 정리 --

    def cleanup(self, retention_seconds: float | None = None) -> dict[str, int]:
        """보존 기간이 지난 이벤트와 유휴 추적 레코드를 삭제한다."""
        retention = self.settings.retention_seconds if retention_seconds is None else retention_seconds
        cutoff = time.time() - retention

        removed = {
            "events": self.events.cleanup(retention),
            "suspicion": self.suspicion.cleanup(cutoff),
            "login": self.login.cleanup(cutoff),
        }
        for kind, count in removed.items():
            if count:
                metrics.cleanup_removed_total.labels(kind=kind).inc(count)
        return removed

    def status(self) -> dict[str, Any]:
        """모니터 구성 요약."""
        return {
            "max_login_attempts": self.settings.max_login_attempts,
            "lockout_seconds": self.settings.lockout_seconds,
            "login_window_seconds": self.settings.login_window_seconds,
            "suspicion_threshold": self.settings.suspicion_threshold,
            "retention_seconds": self.settings.retention_seconds,
            "webhook_enabled": bool(self.alerts.channels),
            "trusted": self.trusted.to_dict(),
        }
