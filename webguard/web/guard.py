"""호스트 애플리케이션용 요청 가드 미들웨어.

차단된 IP의 요청은 403으로 거부하고, 나머지 요청은 검사 후 통과시킨다.
검사 중 오류가 나면 요청을 통과시키고(fail open) 오류를 기록한다.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable
from urllib.parse import parse_qsl

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from webguard.detection.models import RequestSnapshot
from webguard.monitor import SecurityMonitor
from webguard.utils.network import IPNetwork, resolve_client_ip

logger = logging.getLogger("webguard.web.guard")

DEFAULT_MAX_BODY_BYTES = 64 * 1024
DEFAULT_EXEMPT_PATHS = ("/health", "/metrics")


def decode_body(raw: bytes, content_type: str, max_bytes: int) -> Any:
    """요청 본문을 max_bytes로 자른 뒤 content-type에 맞게 해석한다.

    잘린 JSON처럼 해석할 수 없는 본문은 문자열로 남긴다.
    """
    if not raw:
        return None
    truncated = raw[:max_bytes]
    text = truncated.decode("utf-8", errors="replace")
    content_type = content_type.lower()
    if "application/json" in content_type:
        try:
            return json.loads(text)
        except ValueError:
            return text
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(text, keep_blank_values=True))
    return text


async def snapshot_request(
    request: Request,
    trusted_proxies: list[IPNetwork],
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
) -> RequestSnapshot:
    """Starlette 요청에서 검사용 스냅샷을 만든다.

    미들웨어는 라우팅 전에 실행되므로 경로 파라미터는 비어 있다. 경로 값은
    url/path 표면으로 검사된다.
    """
    headers = {k.lower(): v for k, v in request.headers.items()}
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"

    body = None
    if request.method not in ("GET", "HEAD", "OPTIONS"):
        body = decode_body(await request.body(), headers.get("content-type", ""), max_body_bytes)

    return RequestSnapshot(
        method=request.method,
        url=url,
        path=request.url.path,
        query=dict(request.query_params),
        body=body,
        headers=headers,
        source_ip=resolve_client_ip(
            request.client.host if request.client else None, headers, trusted_proxies,
        ),
    )


class RequestGuardMiddleware(BaseHTTPMiddleware):
    """차단 IP 거부와 인라인 위협 검사를 수행하는 미들웨어."""

    def __init__(
        self,
        app,
        monitor: SecurityMonitor,
        trusted_proxies: list[IPNetwork] | None = None,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    ) -> None:
        """모니터와 프록시, 본문 크기 제한, 면제 경로를 설정한다."""
        super().__init__(app)
        self._monitor         = monitor
        self._trusted_proxies = trusted_proxies or []
        self._max_body_bytes  = max_body_bytes
        self._exempt_paths    = tuple(exempt_paths)

    def _denied(self, ip: str) -> JSONResponse:
        logger.info("Request from blocked IP rejected: %s", ip)
        return JSONResponse({"error": "Access denied"}, status_code=403)

    async def dispatch(self, request: Request, call_next):
        """요청을 검사하고 차단된 출발지면 거부한다."""
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        snapshot = await snapshot_request(request, self._trusted_proxies, self._max_body_bytes)
        ip = snapshot.source_ip
        if self._monitor.is_ip_blocked(ip):
            return self._denied(ip)

        try:
            findings = self._monitor.inspect_request(snapshot)
        except Exception:
            logger.exception("Request inspection failed for %s %s", request.method, request.url.path)
            findings = []

        if findings:
            logger.warning(
                "Threats detected in %s %s from %s: %s",
                request.method, request.url.path, ip,
                ", ".join(f.type for f in findings),
            )
            if self._monitor.is_ip_blocked(ip):
                return self._denied(ip)

        return await call_next(request)
