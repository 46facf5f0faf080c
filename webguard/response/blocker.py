"""IPBlockRegistry: 차단 IP 집합과 신뢰 IP 집합 관리.

레지스트리는 판정만 보고한다. 실제 요청 거부는 호출 계층의 몫이다.
차단은 멱등이며, 신뢰 IP 차단 시도는 경고 로그만 남기는 no-op이다.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from webguard.detection.models import EventType
from webguard.response.trusted import TrustedIPSet
from webguard.utils.network import validate_ip

logger = logging.getLogger("webguard.response.blocker")

# (event_type, data, source_ip)
EventRecorder = Callable[[EventType, dict[str, Any], str], Any]


@dataclass
class BlockEntry:
    """단일 차단 항목."""

    ip: str
    reason: str
    automatic: bool
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """항목을 JSON 직렬화 가능한 딕셔너리로 변환한다."""
        return {
            "ip": self.ip,
            "reason": self.reason,
            "automatic": self.automatic,
            "created_at": self.created_at,
        }


class IPBlockRegistry:
    """차단/신뢰 IP 멤버십 관리자.

    Parameters
    ----------
    trusted : TrustedIPSet | None
        절대 차단되지 않는 IP 집합. 없으면 루프백만 신뢰한다.
    recorder : EventRecorder | None
        ``ip_blocked``/``ip_unblocked`` 이벤트 기록 콜백.
    """

    def __init__(
        self,
        trusted: TrustedIPSet | None = None,
        recorder: EventRecorder | None = None,
    ) -> None:
        """신뢰 집합과 이벤트 기록 콜백을 설정한다."""
        self._trusted = trusted or TrustedIPSet()
        self._recorder = recorder
        self._blocks: dict[str, BlockEntry] = {}
        self._lock = threading.Lock()

    @property
    def trusted(self) -> TrustedIPSet:
        return self._trusted

    def set_recorder(self, recorder: EventRecorder) -> None:
        """이벤트 기록 콜백을 나중에 주입한다."""
        self._recorder = recorder

    def is_trusted(self, ip: str) -> bool:
        return self._trusted.is_trusted(ip)

    def is_ip_blocked(self, ip: str) -> bool:
        """*ip*가 차단 집합에 있으면 True (O(1))."""
        return ip in self._blocks

    def block_ip(self, ip: str, reason: str, automatic: bool = False) -> bool:
        """*ip*를 차단 집합에 추가한다.

        새로 차단되면 True, 신뢰 IP·형식 오류·이미 차단된 경우 False를 반환한다.
        새 차단마다 ``ip_blocked`` 이벤트가 정확히 한 번 기록된다.
        """
        if self._trusted.is_trusted(ip):
            logger.warning("Attempted to block trusted IP %s (reason: %s)", ip, reason)
            return False

        if not validate_ip(ip):
            logger.warning("무효한 IP 형식으로 차단 거부: %s", ip)
            return False

        with self._lock:
            if ip in self._blocks:
                logger.debug("이미 차단된 IP: %s", ip)
                return False
            self._blocks[ip] = BlockEntry(ip=ip, reason=reason, automatic=automatic)

        logger.warning("IP address blocked: %s (reason: %s, automatic=%s)", ip, reason, automatic)
        if self._recorder is not None:
            self._recorder(EventType.IP_BLOCKED, {
                "ip": ip,
                "reason": reason,
                "automatic_block": automatic,
                "description": f"IP {ip} blocked: {reason}",
            }, ip)
        return True

    def unblock_ip(self, ip: str, reason: str) -> bool:
        """*ip*를 차단 집합에서 제거한다. 차단되어 있었으면 True.

        ``ip_unblocked`` 이벤트는 차단 여부와 무관하게 기록한다.
        """
        with self._lock:
            entry = self._blocks.pop(ip, None)

        if entry is not None:
            logger.info("IP address unblocked: %s (reason: %s, original: %s)", ip, reason, entry.reason)
        else:
            logger.debug("차단 목록에 없는 IP 해제 요청: %s", ip)

        if self._recorder is not None:
            self._recorder(EventType.IP_UNBLOCKED, {
                "ip": ip,
                "reason": reason,
                "manual_unblock": True,
                "description": f"IP {ip} unblocked: {reason}",
            }, ip)
        return entry is not None

    def blocked_ips(self) -> list[str]:
        """차단된 IP 목록 (차단 순서)."""
        with self._lock:
            return list(self._blocks)

    def get_blocks(self) -> list[dict[str, Any]]:
        """모든 차단 항목의 직렬화 목록을 반환한다."""
        with self._lock:
            entries = list(self._blocks.values())
        return [e.to_dict() for e in entries]

    def __len__(self) -> int:
        return len(self._blocks)
