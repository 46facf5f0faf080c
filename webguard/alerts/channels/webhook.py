"""Slack 호환 수신 webhook 알림 채널."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from webguard.alerts.channels.base import NotificationChannel
from webguard.detection.models import SecurityEvent, Severity
from webguard.utils.network import validate_webhook_url

logger = logging.getLogger("webguard.alerts.channels.webhook")


def build_payload(event: SecurityEvent) -> dict[str, Any]:
    """보안 이벤트를 attachment 형식 webhook 페이로드로 변환한다."""
    summary = NotificationChannel.alert_summary(event)
    return {
        "text": f"\U0001f6a8 Security Alert: {summary['type']}",
        "attachments": [
            {
                "color": "danger" if event.severity == Severity.CRITICAL else "warning",
                "fields": [
                    {"title": "Type", "value": summary["type"], "short": True},
                    {"title": "Severity", "value": summary["severity"], "short": True},
                    {"title": "IP Address", "value": summary["ip"] or "unknown", "short": True},
                    {"title": "Timestamp", "value": summary["timestamp"], "short": True},
                    {"title": "Description", "value": summary["description"], "short": False},
                ],
            }
        ],
    }


class WebhookChannel(NotificationChannel):
    name = "webhook"

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        """webhook URL과 요청 타임아웃을 설정한다."""
        self._webhook_url = validate_webhook_url(webhook_url) or ""
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._webhook_url)

    async def send(self, event: SecurityEvent) -> bool:
        """webhook으로 알림을 POST한다. 실패는 기록만 하고 재시도하지 않는다."""
        if not self._webhook_url:
            logger.warning("Webhook not configured (missing webhook_url)")
            return False

        payload = build_payload(event)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self._webhook_url, json=payload,
                    timeout=aiohttp.ClientTimeout(total=self._timeout)
                ) as resp:
                    if 200 <= resp.status < 300:
                        logger.debug("Webhook alert sent: %s", event.type)
                        return True
                    body = await resp.text()
                    logger.error("Webhook error %d: %s", resp.status, body[:200])
                    return False
        except Exception:
            logger.exception("Failed to send webhook alert")
            return False
