"""요청 검사기: 요청 스냅샷에서 공격 시그니처를 탐지한다.

요청 처리 경로에서 동기적으로 실행되므로 I/O를 수행하지 않는다.
잘못된 입력은 오류가 아니라 "매칭 없음"으로 처리한다.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from webguard.detection.models import (
    EventType,
    RequestSnapshot,
    Severity,
    ThreatFinding,
)
from webguard.detection.patterns import (
    FORM_CONTENT_TYPES,
    SCANNER_USER_AGENTS,
    PatternCatalog,
)

logger = logging.getLogger("webguard.detection.inspector")


def _serialize(value: Any) -> str:
    """dict/list/스칼라 값을 JSON 문자열로 직렬화한다. 실패 시 빈 문자열."""
    try:
        return json.dumps(value if value is not None else {}, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return ""


def build_surface(request: RequestSnapshot) -> str:
    """URL, 경로, 쿼리, 본문, 라우트 파라미터를 하나의 소문자 문자열로 결합한다."""
    parts = [
        str(getattr(request, "url", "") or ""),
        str(getattr(request, "path", "") or ""),
        _serialize(getattr(request, "query", None)),
        _serialize(getattr(request, "body", None)),
        _serialize(getattr(request, "params", None)),
    ]
    return " ".join(parts).lower()


def check_suspicious_headers(request: RequestSnapshot) -> list[dict[str, str]]:
    """스캐너 User-Agent 및 GET 요청의 폼 Content-Type을 검사한다."""
    suspicious: list[dict[str, str]] = []
    headers = getattr(request, "headers", None) or {}

    user_agent = str(headers.get("user-agent") or "")
    ua_lower = user_agent.lower()
    if any(agent in ua_lower for agent in SCANNER_USER_AGENTS):
        suspicious.append({
            "header": "user-agent",
            "value": user_agent,
            "reason": "Security scanner user agent",
        })

    content_type = str(headers.get("content-type") or "")
    method = str(getattr(request, "method", "") or "").upper()
    if method == "GET" and any(t in content_type.lower() for t in FORM_CONTENT_TYPES):
        suspicious.append({
            "header": "content-type",
            "value": content_type,
            "reason": "Unusual content type for GET request",
        })

    return suspicious


class RequestInspector:
    """패턴 카탈로그를 사용하는 순수 요청 검사기."""

    def __init__(self, catalog: PatternCatalog | None = None) -> None:
        """카탈로그를 주입받는다. 없으면 기본 카탈로그를 구성한다."""
        self._catalog = catalog or PatternCatalog()

    @property
    def catalog(self) -> PatternCatalog:
        """사용 중인 패턴 카탈로그."""
        return self._catalog

    def detect_threats(self, request: RequestSnapshot) -> list[ThreatFinding]:
        """요청에서 위협 탐지 결과 목록을 반환한다. 예외를 발생시키지 않는다."""
        findings: list[ThreatFinding] = []
        try:
            surface = build_surface(request)
        except Exception:
            logger.debug("Failed to build request surface", exc_info=True)
            surface = ""

        if surface:
            for category in self._catalog:
                if category.matches(surface):
                    findings.append(ThreatFinding(
                        type=category.event_type,
                        severity=category.severity,
                        description=category.description,
                    ))

        try:
            suspicious = check_suspicious_headers(request)
        except Exception:
            logger.debug("Header inspection failed", exc_info=True)
            suspicious = []

        if suspicious:
            findings.append(ThreatFinding(
                type=EventType.SUSPICIOUS_HEADERS.value,
                severity=Severity.LOW,
                description="Suspicious headers detected",
                details=suspicious,
            ))

        return findings
