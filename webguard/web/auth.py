"""관리 API용 Bearer 토큰 인증.

토큰 검증 실패는 로그인 실패로 취급되어 로그인 시도 추적기에 기록된다.
잠금 상태인 출발지는 올바른 토큰을 보내도 거부된다.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from webguard.monitor import SecurityMonitor
from webguard.utils.config import Config
from webguard.utils.network import IPNetwork, parse_networks, resolve_client_ip

logger = logging.getLogger("webguard.web.auth")

# 로그인 추적기에 기록되는 관리 API 식별자
ADMIN_IDENTIFIER = "admin-api"

# 인증을 면제할 경로
_PUBLIC_PATHS = ("/health", "/metrics")


class AdminAuth:
    """정적 관리 토큰 검증기."""

    def __init__(self, config: Config) -> None:
        """설정에서 관리 토큰을 로드한다. 토큰이 없으면 인증을 비활성화한다."""
        self._token = str(config.get("web.admin_token", "") or "")
        self._enabled = bool(self._token)
        if not self._enabled:
            logger.warning(
                "web.admin_token is empty: admin API authentication disabled. "
                "Set WEBGUARD_ADMIN_TOKEN in production.",
            )

    @property
    def enabled(self) -> bool:
        """인증 기능 활성화 여부를 반환한다."""
        return self._enabled

    def verify_token(self, token: str) -> bool:
        """상수 시간 비교로 토큰을 검증한다."""
        if not self._enabled:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self._token.encode("utf-8"))


class AdminAuthMiddleware(BaseHTTPMiddleware):
    """/api/ 경로에 Bearer 토큰 인증을 적용하는 미들웨어."""

    def __init__(
        self,
        app,
        auth: AdminAuth,
        monitor: SecurityMonitor,
        trusted_proxies: list[IPNetwork] | None = None,
    ) -> None:
        """AdminAuth와 모니터를 주입받아 미들웨어를 초기화한다."""
        super().__init__(app)
        self._auth = auth
        self._monitor = monitor
        self._trusted_proxies = trusted_proxies or []

    async def dispatch(self, request: Request, call_next):
        """토큰을 검증하고 결과를 로그인 추적기에 기록한다."""
        path = request.url.path
        if not self._auth.enabled or path in _PUBLIC_PATHS or not path.startswith("/api/"):
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            return JSONResponse({"error": "Missing or invalid Authorization header"}, status_code=401)

        client_ip = resolve_client_ip(
            request.client.host if request.client else None,
            {k.lower(): v for k, v in request.headers.items()},
            self._trusted_proxies,
        )
        valid = self._auth.verify_token(auth_header[7:])
        verdict = self._monitor.track_login_attempt(
            ADMIN_IDENTIFIER, valid, client_ip, request.headers.get("user-agent"),
        )
        if not verdict.allowed:
            return JSONResponse(
                {"error": "Too many failed authentication attempts", "lock_expiry": verdict.lock_expiry},
                status_code=429,
            )
        if not valid:
            return JSONResponse(
                {"error": "Invalid token", "remaining_attempts": verdict.remaining_attempts},
                status_code=401,
            )
        return await call_next(request)


def build_trusted_proxies(config: Config) -> list[IPNetwork]:
    """설정의 web.trusted_proxies를 네트워크 목록으로 변환한다."""
    return parse_networks(config.get("web.trusted_proxies", ["127.0.0.1", "::1"]) or [])
