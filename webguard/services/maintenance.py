"""MaintenanceService - 보존 기간 정리 루프."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from webguard.monitor import SecurityMonitor

logger = logging.getLogger("webguard.services.maintenance")


class MaintenanceService:
    """주기적으로 SecurityMonitor.cleanup()을 워커 스레드에서 실행한다."""

    def __init__(self, monitor: SecurityMonitor, interval_seconds: float = 3600) -> None:
        """정리 대상 모니터와 실행 주기를 설정한다."""
        self.monitor  = monitor
        self.interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """정리 루프를 시작한다. 이미 실행 중이면 무시한다."""
        if self.running:
            return
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info("Maintenance started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        """정리 루프 태스크를 취소한다."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _cleanup_loop(self) -> None:
        """interval마다 보존 기간이 지난 데이터를 정리한다."""
        while True:
            await asyncio.sleep(self.interval)
            try:
                removed = await asyncio.to_thread(self.monitor.cleanup)
                logger.info(
                    "Retention cleanup: %d events, %d suspicion records, %d login states removed",
                    removed["events"], removed["suspicion"], removed["login"],
                )
            except Exception:
                logger.exception("Retention cleanup failed")
