"""보안 알림 디스패처: 로컬 로깅과 fire-and-forget webhook 채널."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import time
from typing import Any, Coroutine

from webguard.alerts.channels.base import NotificationChannel
from webguard.detection.models import EventType, SecurityEvent, Severity
from webguard.web.metrics import alerts_total, webhook_duration

logger = logging.getLogger("webguard.alerts.dispatcher")

# 심각도와 무관하게 항상 알림을 보내는 이벤트 유형
CRITICAL_ALERT_TYPES: frozenset[str] = frozenset({
    EventType.COMMAND_INJECTION.value,
    EventType.SQL_INJECTION.value,
    EventType.BRUTE_FORCE_ATTEMPT.value,
    EventType.IP_BLOCKED.value,
})


class AlertDispatcher:
    """중요 보안 이벤트를 로컬 로그와 webhook 채널로 내보낸다.

    처리 흐름:
    1. 알림 대상 판정 (critical 유형 또는 critical 심각도)
    2. ERROR 레벨 로깅
    3. 채널 전송 태스크 예약 -- 호출자는 결과를 기다리지 않는다

    워커 스레드에서 호출되면 ``bind_loop``로 지정된 이벤트 루프에
    스레드 안전하게 예약한다.
    """

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        send_timeout: float = 15.0,
    ) -> None:
        """알림 채널과 채널별 전송 타임아웃을 설정한다."""
        self._channels     = list(channels or [])
        self._send_timeout = send_timeout
        self._loop: asyncio.AbstractEventLoop | None = None
        # 루프 태스크와 워커 스레드에서 예약한 concurrent Future
        self._pending: set[asyncio.Future | concurrent.futures.Future] = set()

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        """워커 스레드 호출 시 전송 태스크를 예약할 이벤트 루프를 지정한다."""
        self._loop = loop

    def check_for_alerts(self, event: SecurityEvent) -> bool:
        """이벤트가 알림 대상이면 send_alert를 호출하고 True를 반환한다."""
        if event.type in CRITICAL_ALERT_TYPES or event.severity == Severity.CRITICAL:
            self.send_alert(event)
            return True
        return False

    def send_alert(self, event: SecurityEvent) -> None:
        """알림을 기록하고 채널 전송을 예약한다. 예외를 던지지 않는다."""
        try:
            logger.error(
                "SECURITY ALERT: %s from %s (%s) - %s",
                event.type, event.source_ip or "unknown",
                event.severity.value, event.description,
                extra={
                    "event_id": event.id,
                    "event_type": event.type,
                    "source_ip": event.source_ip,
                    "severity": event.severity.value,
                },
            )
            alerts_total.labels(type=event.type).inc()
            if self._channels:
                self._schedule(self._send_webhooks(event))
        except Exception:
            logger.exception("Failed to send security alert for event %s", event.id)

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        """현재 루프 또는 바인딩된 루프에 코루틴을 예약한다."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None:
            task = running.create_task(coro)
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        elif self._loop is not None and self._loop.is_running():
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)
        else:
            coro.close()
            logger.debug("No event loop available, alert delivery skipped")

    async def _send_webhooks(self, event: SecurityEvent) -> None:
        """모든 채널에 알림을 병렬로 전송한다."""
        async def _timed_send(channel: NotificationChannel) -> tuple[str, float, Exception | None]:
            """채널 전송을 수행하고 (이름, 소요 시간, 예외)를 반환한다."""
            start = time.monotonic()
            try:
                await asyncio.wait_for(channel.send(event), timeout=self._send_timeout)
                return channel.name, time.monotonic() - start, None
            except Exception as exc:
                return channel.name, time.monotonic() - start, exc

        results = await asyncio.gather(
            *(_timed_send(ch) for ch in self._channels), return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Webhook task raised unexpected error: %r", result)
                continue
            name, elapsed, exc = result
            if exc is not None:
                logger.error("Webhook channel %s failed: %r", name, exc)
            else:
                webhook_duration.labels(channel=name).observe(elapsed)

    def _awaitables(self) -> list[asyncio.Future]:
        """대기 중인 전송을 현재 루프에서 기다릴 수 있는 형태로 반환한다."""
        return [
            asyncio.wrap_future(f) if isinstance(f, concurrent.futures.Future) else f
            for f in list(self._pending)
        ]

    async def flush(self) -> None:
        """예약된 전송 태스크가 모두 끝날 때까지 기다린다."""
        if self._pending:
            await asyncio.gather(*self._awaitables(), return_exceptions=True)

    async def stop(self) -> None:
        """남은 전송 태스크를 취소한다. 워커 스레드에서 예약된 전송도 포함한다."""
        for future in list(self._pending):
            future.cancel()
        if self._pending:
            await asyncio.gather(*self._awaitables(), return_exceptions=True)
        self._pending.clear()
        self._loop = None
        logger.info("AlertDispatcher stopped")
