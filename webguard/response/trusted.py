"""차단 대상에서 제외되는 신뢰 IP 집합."""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable

from webguard.utils.network import IPNetwork, parse_networks

logger = logging.getLogger("webguard.response.trusted")

# 항상 신뢰하는 루프백 주소
DEFAULT_TRUSTED_IPS: tuple[str, ...] = ("127.0.0.1", "::1")


class TrustedIPSet:
    """시작 시 고정되는 신뢰 IP 집합.

    지원 기능:
    - 정확한 IP 일치 (기본 루프백 포함)
    - CIDR 범위 일치 (예: "10.0.0.0/8")
    """

    def __init__(
        self,
        ips: Iterable[str] | None = None,
        ip_ranges: Iterable[str] | None = None,
    ) -> None:
        """IP 목록과 CIDR 범위 목록으로 집합을 구성한다."""
        self._ips: set[str] = set(DEFAULT_TRUSTED_IPS)
        for ip in ips or []:
            ip = str(ip).strip()
            if ip:
                self._ips.add(ip)
        self._networks: list[IPNetwork] = parse_networks(ip_ranges or [])

        logger.info(
            "Trusted IPs loaded: %d IPs, %d ranges", len(self._ips), len(self._networks),
        )

    def __contains__(self, ip: object) -> bool:
        return isinstance(ip, str) and self.is_trusted(ip)

    def is_trusted(self, ip: str | None) -> bool:
        """IP가 신뢰 집합에 속하는지 확인한다."""
        if not ip:
            return False
        if ip in self._ips:
            return True
        if not self._networks:
            return False
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return any(addr in network for network in self._networks)

    def to_dict(self) -> dict[str, list[str]]:
        """신뢰 집합을 직렬화한다."""
        return {
            "ips": sorted(self._ips),
            "ip_ranges": [str(n) for n in self._networks],
        }
