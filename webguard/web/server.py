"""FastAPI 애플리케이션 팩토리."""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from webguard.monitor import SecurityMonitor
from webguard.utils.config import Config
from webguard.web.auth import AdminAuth, AdminAuthMiddleware, build_trusted_proxies
from webguard.web.guard import DEFAULT_MAX_BODY_BYTES, RequestGuardMiddleware
from webguard.web.metrics import get_metrics_output
from webguard.web.routes.security import create_security_router

logger = logging.getLogger("webguard.web.server")

# 가드 검사에서 제외하는 경로 (수동 검사 요청 본문은 공격 페이로드를 담는다)
_GUARD_EXEMPT_PATHS = ("/health", "/metrics", "/api/security/scan-request")


# ---------------------------------------------------------------------------
# 미들웨어 설정
# ---------------------------------------------------------------------------
def _setup_middleware(app: FastAPI, config: Config, monitor: SecurityMonitor) -> None:
    """가드, 인증, 요청 ID, 보안 헤더 미들웨어를 등록한다.

    나중에 등록한 미들웨어가 바깥쪽에서 실행된다. 가드가 가장 먼저
    요청을 보도록 마지막에 등록한다.
    """
    trusted_proxies = build_trusted_proxies(config)

    app.add_middleware(
        AdminAuthMiddleware,
        auth=AdminAuth(config),
        monitor=monitor,
        trusted_proxies=trusted_proxies,
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """요청/응답에 고유 X-Request-ID 헤더를 부여한다."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        response   = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        """모든 응답에 보안 관련 HTTP 헤더를 추가한다."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"]        = "DENY"
        response.headers["Referrer-Policy"]        = "no-referrer"
        response.headers["Cache-Control"]          = "no-store"
        return response

    if config.get("web.guard.enabled", True):
        app.add_middleware(
            RequestGuardMiddleware,
            monitor=monitor,
            trusted_proxies=trusted_proxies,
            max_body_bytes=int(config.get("web.guard.max_body_bytes", DEFAULT_MAX_BODY_BYTES)),
            exempt_paths=_GUARD_EXEMPT_PATHS,
        )


# ---------------------------------------------------------------------------
# 시스템 엔드포인트 (헬스체크, 메트릭)
# ---------------------------------------------------------------------------
def _register_system_endpoints(app: FastAPI, monitor: SecurityMonitor) -> None:
    """헬스체크(/health)와 Prometheus 메트릭(/metrics) 엔드포인트를 등록한다."""

    @app.get("/health")
    async def health_check():
        """모니터 상태를 점검한다."""
        checks = {
            "cleanup": "running" if monitor.maintenance.running else "stopped",
            "events": len(monitor.events),
            "blocked_ips": len(monitor.registry),
            "webhook": "configured" if monitor.alerts.channels else "not_configured",
        }
        return JSONResponse({"status": "ok", "checks": checks})

    @app.get("/metrics")
    async def metrics_endpoint():
        """Prometheus 형식의 메트릭 데이터를 반환한다."""
        return Response(
            content=get_metrics_output(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )


# ---------------------------------------------------------------------------
# 애플리케이션 팩토리
# ---------------------------------------------------------------------------
def create_app(config: Config, monitor: SecurityMonitor) -> FastAPI:
    """FastAPI 애플리케이션을 생성하고 구성한다."""
    enable_docs = config.get("web.enable_docs", False)
    app = FastAPI(
        title="WebGuard",
        description="Security Monitoring & Threat Detection API",
        version="0.1.0",
        docs_url="/docs" if enable_docs else None,
        openapi_url="/openapi.json" if enable_docs else None,
    )

    _setup_middleware(app, config, monitor)
    _register_system_endpoints(app, monitor)
    app.include_router(create_security_router(monitor), prefix="/api")

    return app
