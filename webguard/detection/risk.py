"""메트릭 및 탐지 결과 기반 위험도 산정."""

from __future__ import annotations

from typing import Any, Iterable

from webguard.detection.models import EventType, Severity, ThreatFinding

CRITICAL_EVENT_TYPES: tuple[str, ...] = (
    EventType.COMMAND_INJECTION.value,
    EventType.SQL_INJECTION.value,
    EventType.BRUTE_FORCE_ATTEMPT.value,
)

HIGH_EVENT_TYPES: tuple[str, ...] = (
    EventType.PATH_TRAVERSAL.value,
    EventType.XSS_ATTEMPT.value,
)


def count_critical_events(events_by_type: dict[str, int]) -> int:
    """치명적 유형 이벤트의 합계를 반환한다."""
    return sum(events_by_type.get(t, 0) for t in CRITICAL_EVENT_TYPES)


def calculate_risk_level(metrics: dict[str, Any]) -> str:
    """이벤트 유형별 건수로 전체 위험도(critical/high/medium/low)를 산정한다."""
    by_type = metrics.get("events_by_type", {})
    critical_count = count_critical_events(by_type)
    high_count = sum(by_type.get(t, 0) for t in HIGH_EVENT_TYPES)

    if critical_count > 10:
        return "critical"
    if critical_count > 5 or high_count > 20:
        return "high"
    if critical_count > 0 or high_count > 10:
        return "medium"
    return "low"


def calculate_threat_risk_level(findings: Iterable[ThreatFinding]) -> str:
    """단일 요청의 탐지 결과 중 가장 높은 심각도를 반환한다. 없으면 ``"none"``."""
    findings = list(findings)
    if not findings:
        return "none"
    return max(f.severity for f in findings).value
