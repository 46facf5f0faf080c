"""출발지 IP별 가중 의심 점수 누적기.

점수는 감쇠하지 않는다. 레코드는 유휴 보존 정리 또는 차단 해제 시에만
삭제되며, 그 전까지 점수는 단조 증가한다.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from webguard.detection.models import EventType, event_type_value

logger = logging.getLogger("webguard.tracking.suspicion")

DEFAULT_WEIGHTS: dict[str, int] = {
    EventType.FAILED_LOGIN.value: 2,
    EventType.SQL_INJECTION.value: 10,
    EventType.XSS_ATTEMPT.value: 5,
    EventType.PATH_TRAVERSAL.value: 8,
    EventType.COMMAND_INJECTION.value: 15,
    EventType.BRUTE_FORCE_ATTEMPT.value: 20,
    EventType.RATE_LIMIT_EXCEEDED.value: 1,
    EventType.SUSPICIOUS_HEADERS.value: 3,
}
DEFAULT_WEIGHT = 1


@dataclass
class SuspicionRecord:
    """단일 IP의 의심 활동 레코드. 변경은 lock을 잡은 상태에서만 한다."""
    activity_counts: dict[str, int] = field(default_factory=dict)
    total_score: int = 0
    first_seen: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    # 정리로 맵에서 제거됨. 이 레코드에 대한 갱신은 새 레코드로 재시도한다.
    removed: bool = field(default=False, repr=False, compare=False)

    def to_dict(self, ip: str) -> dict[str, Any]:
        """레코드를 JSON 직렬화 가능한 딕셔너리로 변환한다."""
        with self.lock:
            return {
                "ip": ip,
                "score": self.total_score,
                "first_seen": self.first_seen,
                "last_seen": self.last_seen,
                "activities": dict(self.activity_counts),
            }


class SuspicionTracker:
    """IP별 가중 활동 점수를 누적하고 임계값 초과 시 차단 콜백을 호출한다.

    Parameters
    ----------
    threshold : int
        차단을 트리거하는 누적 점수.
    weights : dict[str, int] | None
        이벤트 유형별 가중치. 기본 가중치 위에 병합된다.
    is_trusted : Callable[[str], bool] | None
        신뢰 IP 판정 함수. 신뢰 IP는 점수가 넘어도 차단하지 않는다.
    on_threshold : Callable[[str, int], Any] | None
        ``(ip, score)``로 호출되는 차단 콜백. 임계값을 넘은 뒤에는 매 갱신마다
        호출되므로 멱등이어야 한다.
    """

    def __init__(
        self,
        threshold: int = 10,
        weights: dict[str, int] | None = None,
        is_trusted: Callable[[str], bool] | None = None,
        on_threshold: Callable[[str, int], Any] | None = None,
    ) -> None:
        """임계값, 가중치, 콜백을 설정한다."""
        self._threshold = threshold
        self._weights = {**DEFAULT_WEIGHTS, **(weights or {})}
        self._is_trusted = is_trusted or (lambda ip: False)
        self._on_threshold = on_threshold
        self._records: dict[str, SuspicionRecord] = {}
        self._lock = threading.Lock()

    @property
    def threshold(self) -> int:
        """차단 임계 점수."""
        return self._threshold

    def set_threshold_callback(self, callback: Callable[[str, int], Any]) -> None:
        """차단 콜백을 나중에 주입한다."""
        self._on_threshold = callback

    def weight_for(self, event_type: EventType | str) -> int:
        """이벤트 유형의 가중치. 목록에 없으면 기본 가중치."""
        return self._weights.get(event_type_value(event_type), DEFAULT_WEIGHT)

    def _get_or_create(self, ip: str) -> SuspicionRecord:
        """레코드를 조회하거나 처음 본 IP면 생성한다."""
        with self._lock:
            record = self._records.get(ip)
            if record is None:
                record = SuspicionRecord()
                self._records[ip] = record
            return record

    def update_suspicious_activity(self, ip: str, event_type: EventType | str) -> int:
        """IP의 활동을 누적하고 갱신된 총점을 반환한다."""
        type_value = event_type_value(event_type)
        weight = self.weight_for(type_value)

        while True:
            record = self._get_or_create(ip)
            with record.lock:
                if record.removed:
                    continue
                record.last_seen = time.time()
                record.activity_counts[type_value] = record.activity_counts.get(type_value, 0) + 1
                record.total_score += weight
                score = record.total_score
                break

        logger.debug("Suspicion score for %s: %d (+%d %s)", ip, score, weight, type_value)

        if score >= self._threshold and not self._is_trusted(ip):
            if self._on_threshold is not None:
                self._on_threshold(ip, score)
        return score

    def get_score(self, ip: str) -> int:
        """IP의 현재 점수. 레코드가 없으면 0."""
        record = self._records.get(ip)
        if record is None:
            return 0
        with record.lock:
            return record.total_score

    def get_record(self, ip: str) -> dict[str, Any] | None:
        """IP 레코드의 직렬화 사본을 반환한다."""
        record = self._records.get(ip)
        return record.to_dict(ip) if record else None

    def purge(self, ip: str) -> bool:
        """IP 레코드를 완전히 삭제한다 (점수 0으로 초기화)."""
        with self._lock:
            record = self._records.pop(ip, None)
            if record is None:
                return False
            with record.lock:
                record.removed = True
            return True

    def snapshot(self) -> list[dict[str, Any]]:
        """모든 레코드의 직렬화 사본을 반환한다."""
        with self._lock:
            items = list(self._records.items())
        return [record.to_dict(ip) for ip, record in items]

    def top(self, limit: int = 10) -> list[dict[str, Any]]:
        """점수 상위 IP 목록을 반환한다."""
        records = self.snapshot()
        records.sort(key=lambda r: r["score"], reverse=True)
        return records[:limit]

    def cleanup(self, cutoff: float) -> int:
        """last_seen이 cutoff 이전인 레코드를 삭제하고 삭제 건수를 반환한다.

        잠금 순서는 맵 잠금 다음 레코드 잠금으로 고정한다.
        """
        with self._lock:
            items = list(self._records.items())

        removed = 0
        for ip, record in items:
            try:
                with self._lock, record.lock:
                    if record.last_seen < cutoff and self._records.get(ip) is record:
                        del self._records[ip]
                        record.removed = True
                        removed += 1
            except Exception:
                logger.exception("Failed to clean suspicion record for %s", ip)
        return removed

    def __len__(self) -> int:
        return len(self._records)
