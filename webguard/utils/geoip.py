"""요청 컨텍스트용 GeoIP 위치 힌트 조회."""

from __future__ import annotations

import ipaddress
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import geoip2.database
import geoip2.errors

logger = logging.getLogger("webguard.utils.geoip")

# 일반적인 GeoLite2 데이터베이스 위치
DEFAULT_DB_PATHS = (
    Path("data/GeoLite2-City.mmdb"),
    Path("/usr/share/GeoIP/GeoLite2-City.mmdb"),
    Path("/var/lib/GeoIP/GeoLite2-City.mmdb"),
)

_geoip_reader: geoip2.database.Reader | None = None
_initialized = False


def configure_geoip(db_path: str | Path | None = None) -> bool:
    """GeoIP2 리더를 초기화한다. 데이터베이스를 찾으면 True를 반환한다.

    db_path가 없으면 기본 위치를 차례로 탐색한다. 데이터베이스가 없으면
    위치 힌트 없이 동작한다.
    """
    global _geoip_reader, _initialized
    _initialized = True
    lookup_geo_hint.cache_clear()

    candidates = [Path(db_path)] if db_path else list(DEFAULT_DB_PATHS)
    for path in candidates:
        if not path.exists():
            continue
        try:
            _geoip_reader = geoip2.database.Reader(str(path))
        except Exception:
            logger.warning("GeoIP database could not be opened: %s", path, exc_info=True)
            continue
        logger.info("GeoIP database loaded: %s", path)
        return True

    _geoip_reader = None
    logger.info("GeoIP database not found, geo hints disabled")
    return False


def _is_private_ip(ip: str) -> bool:
    """IP가 사설/예약/루프백 주소이거나 파싱할 수 없으면 True."""
    try:
        addr = ipaddress.ip_address(ip)
        return addr.is_private or addr.is_reserved or addr.is_loopback
    except ValueError:
        return True


@lru_cache(maxsize=4096)
def lookup_geo_hint(ip: str) -> dict[str, Any] | None:
    """IP 주소의 국가/지역/도시/시간대 힌트를 반환한다.

    사설 IP이거나 GeoIP를 사용할 수 없으면 None을 반환한다.
    """
    if not ip or _is_private_ip(ip):
        return None
    if not _initialized:
        configure_geoip()
    if _geoip_reader is None:
        return None

    try:
        response = _geoip_reader.city(ip)
    except (geoip2.errors.AddressNotFoundError, ValueError):
        return None

    subdivision = response.subdivisions.most_specific
    return {
        "country": response.country.iso_code,
        "region": subdivision.iso_code if subdivision else None,
        "city": response.city.name,
        "timezone": response.location.time_zone,
    }
