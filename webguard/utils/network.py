"""IP 주소 검증, 클라이언트 IP 해석, 아웃바운드 URL 검증 헬퍼."""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, Mapping
from urllib.parse import urlparse

logger = logging.getLogger("webguard.utils.network")

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def validate_ip(ip: str) -> bool:
    """*ip*가 올바른 형식의 IPv4 또는 IPv6 주소인지 검증한다."""
    try:
        ipaddress.ip_address(ip)
        return True
    except ValueError:
        return False


def parse_networks(entries: Iterable[str]) -> list[IPNetwork]:
    """IP/CIDR 문자열 목록을 네트워크 목록으로 변환한다. 잘못된 항목은 경고 후 무시."""
    networks: list[IPNetwork] = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(str(entry).strip(), strict=False))
        except ValueError:
            logger.warning("무효한 네트워크 항목 무시: %s", entry)
    return networks


def resolve_client_ip(
    peer_ip: str | None,
    headers: Mapping[str, str],
    trusted_proxies: list[IPNetwork],
) -> str:
    """신뢰된 프록시 헤더를 고려하여 실제 클라이언트 IP를 추출한다.

    직접 연결이 신뢰된 프록시 주소에서 온 경우에만 X-Forwarded-For,
    X-Real-IP를 신뢰한다. headers 키는 소문자여야 한다.
    """
    direct_ip = peer_ip or "unknown"
    if direct_ip == "unknown":
        return direct_ip
    try:
        addr = ipaddress.ip_address(direct_ip)
    except ValueError:
        return direct_ip
    if not any(addr in net for net in trusted_proxies):
        return direct_ip

    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return direct_ip


def validate_webhook_url(url: str | None) -> str | None:
    """웹훅 URL이 http/https 절대 URL이면 그대로, 아니면 None을 반환한다."""
    if not url:
        return None
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        logger.error("웹훅 URL 형식이 잘못되어 무시됨: %s", url)
        return None
    return url
