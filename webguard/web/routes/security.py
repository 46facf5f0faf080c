"""보안 관리 라우트: 상태, 이벤트 조회, IP 차단/해제, 위협 분석, 수동 검사, 내보내기."""

from __future__ import annotations

import logging
import time
from typing import Any, Literal

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from webguard.detection.models import RequestSnapshot, Severity, format_timestamp
from webguard.detection.risk import (
    calculate_risk_level,
    calculate_threat_risk_level,
    count_critical_events,
)
from webguard.monitor import SecurityMonitor
from webguard.storage.event_store import events_to_csv
from webguard.utils.network import validate_ip
from webguard.utils.timewindow import is_valid_time_window

logger = logging.getLogger("webguard.web.routes.security")

_SEVERITIES = {s.value for s in Severity}


class BlockIPRequest(BaseModel):
    ip: str
    reason: str = Field(min_length=1, max_length=500)


class ScanRequest(BaseModel):
    method: Literal["GET", "POST", "PUT", "DELETE", "PATCH"]
    url: str = Field(min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    query: dict[str, Any] = Field(default_factory=dict)


def _bad_window(window: str) -> JSONResponse | None:
    if is_valid_time_window(window):
        return None
    return JSONResponse({"error": f"Invalid time window: {window}"}, status_code=400)


def create_security_router(monitor: SecurityMonitor) -> APIRouter:
    """보안 관리 엔드포인트용 라우터를 생성한다."""
    router = APIRouter(prefix="/security", tags=["security"])

    @router.get("/status")
    async def security_status(window: str = "24h"):
        """모니터링 상태와 지표 요약을 반환한다."""
        error = _bad_window(window)
        if error is not None:
            return error
        metrics = monitor.get_metrics(window)
        return {
            "system": {
                "monitoring": "active",
                "threat_detection": "enabled",
                "automatic_blocking": "enabled",
                "cleanup": "running" if monitor.maintenance.running else "stopped",
                "last_update": format_timestamp(time.time()),
            },
            "metrics": metrics,
            "blocked_ips": {
                "count": metrics["blocked_ips"],
                "recent": monitor.registry.blocked_ips()[:10],
            },
            "configuration": monitor.status(),
        }

    @router.get("/events")
    async def list_events(
        type: str | None = None,
        ip: str | None = None,
        severity: str | None = None,
        limit: int = Query(50, ge=1, le=1000),
        offset: int = Query(0, ge=0),
        time_window: str = "24h",
    ):
        """필터와 페이지네이션을 적용한 보안 이벤트 목록을 반환한다."""
        if ip and not validate_ip(ip):
            return JSONResponse({"error": f"Invalid IP address: {ip}"}, status_code=400)
        if severity and severity not in _SEVERITIES:
            return JSONResponse({"error": f"Invalid severity: {severity}"}, status_code=400)
        error = _bad_window(time_window)
        if error is not None:
            return error

        page = monitor.query(
            event_type=type, ip=ip, severity=severity,
            time_window=time_window, limit=limit, offset=offset,
        )
        return {**page.to_dict(), "time_window": time_window}

    @router.post("/block-ip")
    async def block_ip(body: BlockIPRequest):
        """수동으로 IP 주소를 차단한다."""
        if not validate_ip(body.ip):
            return JSONResponse({"error": f"Invalid IP address: {body.ip}"}, status_code=400)
        if monitor.is_ip_blocked(body.ip):
            return JSONResponse({"error": "IP address is already blocked"}, status_code=409)
        if monitor.trusted.is_trusted(body.ip):
            return JSONResponse({"error": "IP address is trusted and cannot be blocked"}, status_code=400)

        monitor.block_ip(body.ip, f"Manual block: {body.reason}")
        logger.info("IP manually blocked: %s (%s)", body.ip, body.reason)
        return {"ok": True, "ip": body.ip}

    @router.delete("/block-ip/{ip}")
    async def unblock_ip(ip: str, reason: str = "Manual unblock"):
        """IP 차단을 해제한다. 의심 점수도 함께 초기화된다."""
        if not validate_ip(ip):
            return JSONResponse({"error": f"Invalid IP address: {ip}"}, status_code=400)
        if not monitor.is_ip_blocked(ip):
            return JSONResponse({"error": "IP address is not blocked"}, status_code=404)

        monitor.unblock_ip(ip, f"Manual unblock: {reason}")
        logger.info("IP manually unblocked: %s (%s)", ip, reason)
        return {"ok": True, "ip": ip}

    @router.get("/blocked-ips")
    async def blocked_ips():
        """차단된 IP와 의심 점수 기록을 반환한다."""
        blocked = monitor.registry.get_blocks()
        suspicious = monitor.suspicion.snapshot()
        return {
            "blocked": blocked,
            "suspicious": suspicious,
            "total": {"blocked": len(blocked), "suspicious": len(suspicious)},
        }

    @router.get("/threats")
    async def threat_analysis(time_window: str = "24h"):
        """시간 윈도우 내 위협 통계와 위험도를 반환한다."""
        error = _bad_window(time_window)
        if error is not None:
            return error
        metrics = monitor.get_metrics(time_window)
        by_type = metrics["events_by_type"]
        top_types = sorted(by_type.items(), key=lambda item: item[1], reverse=True)[:5]
        return {
            "overview": {
                "total_threats": metrics["total_events"],
                "critical_threats": count_critical_events(by_type),
                "top_threat_types": [{"type": t, "count": c} for t, c in top_types],
                "time_window": time_window,
            },
            "attackers": {
                "top_ips": metrics["top_attacker_ips"],
                "unique_ips": metrics["unique_attacker_ips"],
                "blocked_ips": metrics["blocked_ips"],
            },
            "trends": {
                "current_period": by_type,
                "risk_level": calculate_risk_level(metrics),
            },
        }

    @router.post("/scan-request")
    async def scan_request(body: ScanRequest):
        """요청 데이터를 검사만 하고 결과를 반환한다. 이벤트는 기록하지 않는다."""
        path = body.url.split("?", 1)[0]
        snapshot = RequestSnapshot(
            method=body.method,
            url=body.url,
            path=path,
            query=body.query,
            body=body.body,
            headers=body.headers,
        )
        threats = monitor.detect_threats(snapshot)
        logger.info("Manual security scan: %s %s -> %d threats", body.method, body.url, len(threats))
        return {
            "timestamp": format_timestamp(time.time()),
            "request": {
                "method": body.method,
                "url": body.url,
                "has_body": bool(body.body),
                "has_query": bool(body.query),
            },
            "threats": {
                "count": len(threats),
                "details": [t.to_dict() for t in threats],
                "risk_level": calculate_threat_risk_level(threats),
            },
        }

    @router.get("/export")
    async def export_data(
        time_window: str = "24h",
        format: Literal["json", "csv"] = "json",
    ):
        """보안 데이터를 JSON 또는 CSV로 내보낸다."""
        error = _bad_window(time_window)
        if error is not None:
            return error

        stamp = int(time.time())
        if format == "csv":
            content = events_to_csv(monitor.events_in_window(time_window))
            logger.info("Security data exported (csv, window=%s)", time_window)
            return Response(
                content=content,
                media_type="text/csv",
                headers={"Content-Disposition": f'attachment; filename="security-export-{stamp}.csv"'},
            )

        data = monitor.export_all(time_window)
        logger.info(
            "Security data exported (json, window=%s, events=%d)", time_window, len(data["events"]),
        )
        return JSONResponse(
            data,
            headers={"Content-Disposition": f'attachment; filename="security-export-{stamp}.json"'},
        )

    return router
