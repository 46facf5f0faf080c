"""인메모리 보안 이벤트 저장소: 기록, 필터 조회, 내보내기, 보존 정리."""

from __future__ import annotations

import csv
import io
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any

from webguard.detection.models import (
    DEFAULT_EVENT_SEVERITY,
    EventType,
    RequestContext,
    SecurityEvent,
    Severity,
    event_type_value,
    format_timestamp,
    parse_severity,
)

logger = logging.getLogger("webguard.storage.event_store")

CSV_COLUMNS = ("timestamp", "type", "ip", "method", "url", "user_agent", "description")


@dataclass
class EventPage:
    """필터 조회 결과 한 페이지."""
    events: list[SecurityEvent]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> dict[str, Any]:
        """페이지를 JSON 직렬화 가능한 딕셔너리로 변환한다."""
        return {
            "events": [e.to_dict() for e in self.events],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }


class SecurityEventStore:
    """시간순 보안 이벤트 기록.

    이벤트는 생성 후 변경되지 않으며 보존 정리로만 삭제된다.
    모든 변경은 짧은 임계 구역에서 수행되어 조회를 오래 막지 않는다.
    """

    def __init__(self) -> None:
        """빈 저장소를 초기화한다."""
        self._events: dict[str, SecurityEvent] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def record(
        self,
        event_type: EventType | str,
        data: dict[str, Any] | None = None,
        request_context: RequestContext | None = None,
        source_ip: str | None = None,
    ) -> SecurityEvent:
        """새 이벤트를 기록하고 반환한다.

        data의 ``severity``/``description``은 이벤트 필드로 승격되고, 나머지는
        details로 보존된다. source_ip가 없으면 요청 컨텍스트 또는 data의 ``ip``를
        사용한다.
        """
        type_value = event_type_value(event_type)
        details = dict(data or {})

        severity = parse_severity(
            details.pop("severity", None),
            default=DEFAULT_EVENT_SEVERITY.get(type_value, Severity.HIGH),
        )
        description = str(details.pop("description", None) or type_value)
        ip = source_ip
        if ip is None and request_context is not None:
            ip = request_context.ip
        if ip is None:
            ip = details.get("ip")

        event = SecurityEvent(
            id=str(uuid.uuid4()),
            type=type_value,
            timestamp=time.time(),
            source_ip=ip,
            severity=severity,
            description=description,
            details=details,
            request_context=request_context,
        )
        with self._lock:
            self._events[event.id] = event

        logger.warning(
            "Security event: %s (severity=%s, ip=%s)",
            type_value, severity.value, ip or "-",
            extra={
                "event_id": event.id,
                "event_type": type_value,
                "source_ip": ip,
                "severity": severity.value,
            },
        )
        return event

    def get(self, event_id: str) -> SecurityEvent | None:
        """ID로 단일 이벤트를 반환한다."""
        return self._events.get(event_id)

    def snapshot(self, since: float | None = None) -> list[SecurityEvent]:
        """since 이후 이벤트의 복사본을 기록 순서대로 반환한다."""
        with self._lock:
            events = list(self._events.values())
        if since is None:
            return events
        return [e for e in events if e.timestamp >= since]

    def query(
        self,
        event_type: str | None = None,
        ip: str | None = None,
        severity: Severity | str | None = None,
        window_seconds: float = 24 * 3600,
        limit: int = 50,
        offset: int = 0,
    ) -> EventPage:
        """필터 조건을 적용해 최신순으로 정렬된 이벤트 페이지를 반환한다."""
        cutoff = time.time() - window_seconds
        events = self.snapshot(since=cutoff)

        if event_type:
            events = [e for e in events if e.type == event_type]
        if ip:
            events = [e for e in events if e.source_ip == ip]
        if severity:
            wanted = parse_severity(severity)
            events = [e for e in events if e.severity == wanted]

        events.sort(key=lambda e: e.timestamp, reverse=True)
        limit = max(0, limit)
        offset = max(0, offset)
        return EventPage(
            events=events[offset:offset + limit],
            total=len(events),
            limit=limit,
            offset=offset,
        )

    def cleanup(self, retention_seconds: float) -> int:
        """보존 기간보다 오래된 이벤트를 삭제하고 삭제 건수를 반환한다.

        개별 이벤트 삭제 실패는 기록 후 건너뛴다.
        """
        cutoff = time.time() - retention_seconds
        stale = [e.id for e in self.snapshot() if e.timestamp < cutoff]

        removed = 0
        for event_id in stale:
            try:
                with self._lock:
                    del self._events[event_id]
                removed += 1
            except KeyError:
                continue
            except Exception:
                logger.exception("Failed to remove event %s during cleanup", event_id)

        if removed:
            logger.debug("Cleaned up %d old security events", removed)
        return removed


def events_to_csv(events: list[SecurityEvent]) -> str:
    """이벤트 목록을 CSV 문자열로 변환한다. 이벤트가 없으면 빈 문자열."""
    if not events:
        return ""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for event in events:
        ctx = event.request_context
        writer.writerow([
            format_timestamp(event.timestamp),
            event.type,
            event.source_ip or "",
            (ctx.method if ctx else None) or "",
            (ctx.url if ctx else None) or "",
            (ctx.user_agent if ctx else None) or "",
            event.description,
        ])
    return buffer.getvalue()
