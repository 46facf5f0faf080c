"""알림 채널 추상 기반 클래스."""

from __future__ import annotations

import abc
from typing import Any

from webguard.detection.models import SecurityEvent, format_timestamp


class NotificationChannel(abc.ABC):
    """보안 알림 채널 기반 클래스."""

    name: str = ""

    @abc.abstractmethod
    async def send(self, event: SecurityEvent) -> bool:
        """알림을 전송한다. 성공 시 True를 반환한다. 예외를 던지지 않는다."""

    @staticmethod
    def alert_summary(event: SecurityEvent) -> dict[str, Any]:
        """채널 공통 알림 요약을 만든다."""
        return {
            "timestamp": format_timestamp(event.timestamp),
            "type": event.type,
            "severity": event.severity.value,
            "ip": event.source_ip,
            "description": event.description,
            "details": dict(event.details),
            "geo": event.request_context.geo if event.request_context else None,
        }
