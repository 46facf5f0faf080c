"""보안 이벤트, 위협 탐지 결과, 요청 스냅샷 모델."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    def __ge__(self, other: Severity) -> bool:
        """현재 심각도가 other 이상인지 비교한다."""
        return _SEVERITY_RANK[self] >= _SEVERITY_RANK[other]

    def __gt__(self, other: Severity) -> bool:
        """현재 심각도가 other 초과인지 비교한다."""
        return _SEVERITY_RANK[self] > _SEVERITY_RANK[other]

    def __le__(self, other: Severity) -> bool:
        """현재 심각도가 other 이하인지 비교한다."""
        return _SEVERITY_RANK[self] <= _SEVERITY_RANK[other]

    def __lt__(self, other: Severity) -> bool:
        """현재 심각도가 other 미만인지 비교한다."""
        return _SEVERITY_RANK[self] < _SEVERITY_RANK[other]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class EventType(str, enum.Enum):
    """보안 이벤트 유형. 값은 외부(API, 웹훅)에 그대로 노출된다."""
    SQL_INJECTION = "sql_injection"
    XSS_ATTEMPT = "xss_attempt"
    PATH_TRAVERSAL = "path_traversal"
    COMMAND_INJECTION = "command_injection"
    SUSPICIOUS_HEADERS = "suspicious_headers"
    FAILED_LOGIN = "failed_login"
    BRUTE_FORCE_ATTEMPT = "brute_force_attempt"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    IP_BLOCKED = "ip_blocked"
    IP_UNBLOCKED = "ip_unblocked"


# data에 severity가 없을 때 사용하는 이벤트 유형별 기본 심각도
DEFAULT_EVENT_SEVERITY: dict[str, Severity] = {
    EventType.SQL_INJECTION.value: Severity.HIGH,
    EventType.XSS_ATTEMPT.value: Severity.MEDIUM,
    EventType.PATH_TRAVERSAL.value: Severity.HIGH,
    EventType.COMMAND_INJECTION.value: Severity.CRITICAL,
    EventType.SUSPICIOUS_HEADERS.value: Severity.LOW,
    EventType.FAILED_LOGIN.value: Severity.LOW,
    EventType.BRUTE_FORCE_ATTEMPT.value: Severity.HIGH,
    EventType.RATE_LIMIT_EXCEEDED.value: Severity.LOW,
    EventType.IP_BLOCKED.value: Severity.HIGH,
    EventType.IP_UNBLOCKED.value: Severity.LOW,
}


def event_type_value(event_type: EventType | str) -> str:
    """EventType 또는 문자열을 저장용 문자열 값으로 정규화한다."""
    if isinstance(event_type, EventType):
        return event_type.value
    return str(event_type)


def parse_severity(value: Severity | str | None, default: Severity = Severity.HIGH) -> Severity:
    """문자열 심각도를 Severity로 변환한다. 알 수 없는 값은 default를 사용한다."""
    if isinstance(value, Severity):
        return value
    if not value:
        return default
    try:
        return Severity(str(value).lower())
    except ValueError:
        return default


def format_timestamp(ts: float) -> str:
    """epoch 초를 ISO-8601 UTC 문자열로 변환한다."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class ThreatFinding:
    """요청 검사기가 생성한 단일 위협 지표."""
    type: str
    severity: Severity
    description: str
    details: list[dict[str, Any]] | None = None

    def to_dict(self) -> dict[str, Any]:
        """탐지 결과를 딕셔너리로 직렬화한다."""
        result: dict[str, Any] = {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


@dataclass
class RequestSnapshot:
    """검사 대상 인바운드 요청의 스냅샷.

    헤더 키는 소문자로 정규화된다. body는 호출자가 미리 잘라낸 값이어야 한다.
    """
    method: str = "GET"
    url: str = ""
    path: str = ""
    query: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    source_ip: str = "unknown"

    def __post_init__(self) -> None:
        """헤더 키를 소문자로 정규화한다."""
        self.headers = {str(k).lower(): v for k, v in (self.headers or {}).items()}

    def header(self, name: str, default: str | None = None) -> str | None:
        """대소문자 구분 없이 헤더 값을 조회한다."""
        return self.headers.get(name.lower(), default)

    @property
    def user_agent(self) -> str:
        """User-Agent 헤더 값. 없으면 ``"Unknown"``."""
        return self.header("user-agent") or "Unknown"


# 요청 컨텍스트에 보존하는 헤더
CONTEXT_HEADERS = ("referer", "origin", "host", "x-forwarded-for", "x-real-ip")


@dataclass(frozen=True)
class RequestContext:
    """이벤트 생성 시점에 캡처되는 요청 정보. 이후 다시 해석하지 않는다."""
    ip: str | None = None
    method: str | None = None
    url: str | None = None
    path: str | None = None
    user_agent: str | None = None
    headers: dict[str, str | None] = field(default_factory=dict)
    geo: dict[str, Any] | None = None

    @classmethod
    def from_request(
        cls,
        request: RequestSnapshot,
        geo: dict[str, Any] | None = None,
    ) -> RequestContext:
        """요청 스냅샷에서 컨텍스트를 만든다."""
        return cls(
            ip=request.source_ip,
            method=request.method,
            url=request.url,
            path=request.path,
            user_agent=request.user_agent,
            headers={name: request.header(name) for name in CONTEXT_HEADERS},
            geo=geo,
        )

    def to_dict(self) -> dict[str, Any]:
        """컨텍스트를 딕셔너리로 직렬화한다."""
        return {
            "ip": self.ip,
            "method": self.method,
            "url": self.url,
            "path": self.path,
            "user_agent": self.user_agent,
            "headers": dict(self.headers),
            "geo": self.geo,
        }


@dataclass(frozen=True)
class SecurityEvent:
    """이벤트 저장소에 기록되는 불변 보안 이벤트."""
    id: str
    type: str
    timestamp: float
    source_ip: str | None
    severity: Severity
    description: str
    details: dict[str, Any] = field(default_factory=dict)
    request_context: RequestContext | None = None

    def to_dict(self) -> dict[str, Any]:
        """이벤트를 JSON 직렬화 가능한 딕셔너리로 변환한다."""
        return {
            "id": self.id,
            "type": self.type,
            "timestamp": self.timestamp,
            "time": format_timestamp(self.timestamp),
            "source_ip": self.source_ip,
            "severity": self.severity.value,
            "description": self.description,
            "details": dict(self.details),
            "request_context": (
                self.request_context.to_dict() if self.request_context else None
            ),
        }
