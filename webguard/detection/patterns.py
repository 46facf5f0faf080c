"""위협 패턴 카탈로그: 카테고리 -> 컴파일된 패턴 + 심각도 + 설명.

카탈로그는 시작 시 한 번 구성되며, 컴파일에 실패하는 패턴이 있으면
즉시 PatternCompileError를 발생시킨다. 모든 패턴은 소문자로 변환된
요청 표면에 대해 매칭되므로 소문자로 작성한다.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable

from webguard.detection.models import EventType, Severity

logger = logging.getLogger("webguard.detection.patterns")

_MAX_PATTERN_LEN = 512


class PatternCompileError(ValueError):
    """카탈로그 패턴을 컴파일할 수 없을 때 발생한다."""

    def __init__(self, category: str, pattern: str, reason: str) -> None:
        super().__init__(f"{category}: invalid pattern {pattern!r} ({reason})")
        self.category = category
        self.pattern = pattern


@dataclass(frozen=True)
class ThreatCategory:
    """단일 위협 카테고리. 패턴 중 하나라도 매칭되면 탐지로 판정한다."""

    event_type: str
    severity: Severity
    description: str
    patterns: tuple[re.Pattern, ...]

    def matches(self, surface: str) -> bool:
        """표면 문자열에 매칭되는 패턴이 하나라도 있으면 True를 반환한다."""
        return any(p.search(surface) for p in self.patterns)

    def matching_patterns(self, surface: str) -> list[str]:
        """매칭된 패턴 원문 목록을 반환한다 (스캔 결과 설명용)."""
        return [p.pattern for p in self.patterns if p.search(surface)]


# ---------------------------------------------------------------------------
# 기본 패턴 정의
# ---------------------------------------------------------------------------
DEFAULT_DEFINITIONS: list[dict[str, Any]] = [
    {
        "type": EventType.SQL_INJECTION.value,
        "severity": Severity.HIGH,
        "description": "Potential SQL injection attempt detected",
        "patterns": [
            r"\bunion(\s+all)?\s+select\b",
            r"\bselect\b.+\bfrom\b",
            r"\binsert\s+into\b",
            r"\bdelete\s+from\b",
            r"\bdrop\s+(table|database)\b",
            r"\bupdate\s+\w+\s+set\b",
            r"'\s*(or|and)\s+'?\w+'?\s*=\s*'?\w+",
            r"('|%27)\s*(--|#|/\*)",
            r"\b(exec|execute)\s*\(",
            r"\b(xp|sp)_\w+",
        ],
    },
    {
        "type": EventType.XSS_ATTEMPT.value,
        "severity": Severity.MEDIUM,
        "description": "Potential XSS attempt detected",
        "patterns": [
            r"<script\b",
            r"javascript:",
            r"\bon(error|load|click|dblclick|focus|blur|submit|change|input|mouse\w+|key\w+)\s*=",
            r"<(iframe|object|embed|form|svg)\b",
        ],
    },
    {
        "type": EventType.PATH_TRAVERSAL.value,
        "severity": Severity.HIGH,
        "description": "Path traversal attempt detected",
        "patterns": [
            r"\.\.[/\\]",
            r"%2e%2e(%2f|%5c|/|\\)",
            r"\.\.(%2f|%5c)",
            r"%252e%252e",
            r"%c0%ae%c0%ae",
        ],
    },
    {
        "type": EventType.COMMAND_INJECTION.value,
        "severity": Severity.CRITICAL,
        "description": "Command injection attempt detected",
        "patterns": [
            r"(;|&&|\|\|?)\s*(cat|ls|id|whoami|uname|wget|curl|nc|netcat|bash|sh|powershell|cmd|ping|rm)\b",
            r"\$\([^)]*\)",
            r"`[^`]+`",
            r"(/bin/(ba)?sh|cmd\.exe|powershell\.exe)",
        ],
    },
]

# 알려진 보안 스캐너 User-Agent 부분 문자열
SCANNER_USER_AGENTS: tuple[str, ...] = (
    "sqlmap", "nikto", "dirb", "dirbuster", "nessus", "openvas",
    "burp", "owasp", "w3af", "acunetix", "netsparker", "appscan",
)

# GET 요청에 나타나면 의심스러운 Content-Type
FORM_CONTENT_TYPES: tuple[str, ...] = (
    "application/x-www-form-urlencoded",
    "multipart/form-data",
)


def _compile(category: str, raw: str) -> re.Pattern:
    """패턴 하나를 컴파일한다. 실패 시 PatternCompileError."""
    if not raw:
        raise PatternCompileError(category, raw, "empty pattern")
    if len(raw) > _MAX_PATTERN_LEN:
        raise PatternCompileError(category, raw[:40], f"longer than {_MAX_PATTERN_LEN}")
    try:
        return re.compile(raw)
    except re.error as exc:
        raise PatternCompileError(category, raw, str(exc)) from exc


class PatternCatalog:
    """위협 카테고리의 정렬된 테이블.

    ``extra_patterns``로 설정 파일에서 카테고리별 패턴을 추가할 수 있다.
    알 수 없는 카테고리는 경고 후 무시한다.
    """

    def __init__(
        self,
        definitions: Iterable[dict[str, Any]] | None = None,
        extra_patterns: dict[str, list[str]] | None = None,
    ) -> None:
        """정의 목록에서 모든 패턴을 컴파일한다."""
        extra_patterns = extra_patterns or {}
        categories: list[ThreatCategory] = []
        for definition in definitions if definitions is not None else DEFAULT_DEFINITIONS:
            name = definition["type"]
            raw_patterns = list(definition["patterns"]) + list(extra_patterns.get(name, []))
            categories.append(ThreatCategory(
                event_type=name,
                severity=Severity(definition["severity"]),
                description=definition["description"],
                patterns=tuple(_compile(name, p) for p in raw_patterns),
            ))

        known = {c.event_type for c in categories}
        for name in extra_patterns:
            if name not in known:
                logger.warning("Unknown pattern category in config, ignored: %s", name)

        self._categories: tuple[ThreatCategory, ...] = tuple(categories)
        logger.debug(
            "Pattern catalog built: %d categories, %d patterns",
            len(self._categories), sum(len(c.patterns) for c in self._categories),
        )

    @property
    def categories(self) -> tuple[ThreatCategory, ...]:
        """카테고리 목록 (정의 순서 유지)."""
        return self._categories

    def get(self, event_type: str) -> ThreatCategory | None:
        """이벤트 유형 이름으로 카테고리를 조회한다."""
        for category in self._categories:
            if category.event_type == event_type:
                return category
        return None

    def __len__(self) -> int:
        return len(self._categories)

    def __iter__(self):
        return iter(self._categories)
