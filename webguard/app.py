"""메인 오케스트레이터: 모니터, 관리 API 서버, 종료 처리."""

from __future__ import annotations

import asyncio
import logging
import signal

import uvicorn

from webguard.monitor import MonitorSettings, SecurityMonitor
from webguard.utils.config import Config
from webguard.utils.logging_setup import setup_logging
from webguard.web.server import create_app

logger = logging.getLogger("webguard.app")


class WebGuard:
    """최상위 애플리케이션 오케스트레이터.

    컴포넌트 연결, 시작 순서 제어, 정상 종료만 담당한다.
    """

    def __init__(self, config: Config) -> None:
        self.config  = config
        self.monitor = SecurityMonitor(MonitorSettings.from_config(config))

    async def run(self) -> None:
        """메인 진입점: 모니터와 관리 API를 시작하고 종료 시그널을 기다린다."""
        loop = asyncio.get_running_loop()

        setup_logging(self.config)
        logger.info("WebGuard starting...")

        await self.monitor.start()

        app = create_app(self.config, self.monitor)
        web_host = self.config.get("web.host", "127.0.0.1")
        web_port = int(self.config.get("web.port", 8088))
        server = uvicorn.Server(uvicorn.Config(
            app, host=web_host, port=web_port,
            log_level="warning", loop="none",
        ))
        # 시그널은 아래에서 직접 처리한다
        server.install_signal_handlers = lambda: None

        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

        server_task = asyncio.create_task(server.serve())
        logger.info("WebGuard ready - admin API: http://%s:%d/api/security", web_host, web_port)

        await stop_event.wait()

        logger.info("Shutting down...")
        server.should_exit = True
        try:
            await asyncio.wait_for(server_task, timeout=10)
        except asyncio.TimeoutError:
            logger.warning("Web server did not stop in time")
            server_task.cancel()
        await self.monitor.stop()
        logger.info("WebGuard stopped")
