"""로그인 시도 추적기: (식별자, 출발지 IP)별 슬라이딩 윈도우 무차별 대입 잠금.

상태는 Unlocked(윈도우 내 시도 추적)와 Locked(lock_expiry까지 모든 시도 거부)
두 가지다. 잠금 만료는 백그라운드 타이머가 아니라 다음 접근 시점에
지연(lazy) 처리된다.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from webguard.detection.models import EventType

logger = logging.getLogger("webguard.tracking.login")

LOCKED_REASON = "locked"


@dataclass
class LoginAttempt:
    timestamp: float
    success: bool
    source_ip: str
    user_agent: str | None = None


@dataclass
class LoginLockState:
    """키별 잠금 상태. locked는 lock_expiry와 함께일 때만 의미가 있다."""
    attempts: list[LoginAttempt] = field(default_factory=list)
    locked: bool = False
    lock_expiry: float | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    # 정리로 맵에서 제거됨. 이 상태에 대한 시도는 새 상태로 재시도한다.
    removed: bool = field(default=False, repr=False, compare=False)

    def last_activity(self) -> float | None:
        """마지막 시도 시각. 시도가 없으면 None."""
        return self.attempts[-1].timestamp if self.attempts else None

    def to_dict(self, key: str) -> dict[str, Any]:
        """상태를 JSON 직렬화 가능한 딕셔너리로 변환한다."""
        with self.lock:
            return {
                "key": key,
                "attempts": [
                    {
                        "timestamp": a.timestamp,
                        "success": a.success,
                        "source_ip": a.source_ip,
                        "user_agent": a.user_agent,
                    }
                    for a in self.attempts
                ],
                "locked": self.locked,
                "lock_expiry": self.lock_expiry,
            }


@dataclass
class LoginVerdict:
    """로그인 시도 판정. allowed가 토큰 발급 여부를 결정한다."""
    allowed: bool
    reason: str | None = None
    lock_expiry: float | None = None
    remaining_attempts: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """None 필드를 제외한 딕셔너리를 반환한다."""
        result: dict[str, Any] = {"allowed": self.allowed}
        if self.reason is not None:
            result["reason"] = self.reason
        if self.lock_expiry is not None:
            result["lock_expiry"] = self.lock_expiry
        if self.remaining_attempts is not None:
            result["remaining_attempts"] = self.remaining_attempts
        return result


# (event_type, data, source_ip, user_agent)
EventEmitter = Callable[[EventType, dict[str, Any], str, "str | None"], Any]


def make_key(identifier: str, source_ip: str) -> str:
    """상태 맵 키를 만든다."""
    return f"{identifier}:{source_ip}"


class LoginAttemptTracker:
    """무차별 대입 로그인 잠금 상태 머신.

    Parameters
    ----------
    max_attempts : int
        잠금을 트리거하는 윈도우 내 실패 횟수.
    window_seconds : float
        실패 시도를 집계하는 슬라이딩 윈도우.
    lockout_seconds : float
        잠금 지속 시간.
    emit : EventEmitter | None
        ``failed_login``/``brute_force_attempt`` 이벤트를 내보내는 콜백.
        키 잠금을 해제한 뒤 호출된다.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 300,
        lockout_seconds: float = 1800,
        emit: EventEmitter | None = None,
    ) -> None:
        """임계값과 윈도우, 이벤트 콜백을 설정한다."""
        self._max_attempts = max_attempts
        self._window = window_seconds
        self._lockout = lockout_seconds
        self._emit = emit
        self._states: dict[str, LoginLockState] = {}
        self._lock = threading.Lock()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def lockout_seconds(self) -> float:
        return self._lockout

    def set_emitter(self, emit: EventEmitter) -> None:
        """이벤트 콜백을 나중에 주입한다."""
        self._emit = emit

    def _get_or_create(self, key: str) -> LoginLockState:
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = LoginLockState()
                self._states[key] = state
            return state

    def track_login_attempt(
        self,
        identifier: str,
        success: bool,
        source_ip: str | None = None,
        user_agent: str | None = None,
    ) -> LoginVerdict:
        """로그인 시도를 기록하고 허용/거부 판정을 반환한다."""
        ip = source_ip or "unknown"
        key = make_key(identifier, ip)

        while True:
            state = self._get_or_create(key)
            with state.lock:
                if state.removed:
                    continue
                verdict, pending = self._apply_attempt(state, key, identifier, success, ip, user_agent)
                break

        if pending is not None:
            if pending[0] is EventType.BRUTE_FORCE_ATTEMPT:
                logger.warning(
                    "Login locked for %s after %d failed attempts (until %.0f)",
                    key, pending[1]["failed_attempts"], verdict.lock_expiry,
                )
            if self._emit is not None:
                self._emit(pending[0], pending[1], ip, user_agent)
        return verdict

    def _apply_attempt(
        self,
        state: LoginLockState,
        key: str,
        identifier: str,
        success: bool,
        ip: str,
        user_agent: str | None,
    ) -> tuple[LoginVerdict, tuple[EventType, dict[str, Any]] | None]:
        """state.lock을 잡은 상태에서 시도를 반영한다. (판정, 내보낼 이벤트)를 반환한다."""
        now = time.time()

        if state.locked and state.lock_expiry is not None and now < state.lock_expiry:
            return LoginVerdict(
                allowed=False, reason=LOCKED_REASON, lock_expiry=state.lock_expiry,
            ), None
        if state.locked:
            # 지연 만료: 잠금 해제 후 기록 초기화
            state.locked = False
            state.lock_expiry = None
            state.attempts = []
            logger.info("Login lock expired for %s", key)

        state.attempts.append(LoginAttempt(
            timestamp=now, success=success, source_ip=ip, user_agent=user_agent,
        ))
        window_start = now - self._window
        state.attempts = [a for a in state.attempts if a.timestamp >= window_start]

        failed_count = sum(1 for a in state.attempts if not a.success)

        if failed_count >= self._max_attempts:
            state.locked = True
            state.lock_expiry = now + self._lockout
            return LoginVerdict(
                allowed=False, reason=LOCKED_REASON, lock_expiry=state.lock_expiry,
            ), (EventType.BRUTE_FORCE_ATTEMPT, {
                "identifier": identifier,
                "ip": ip,
                "failed_attempts": failed_count,
                "lock_duration": self._lockout,
                "description": f"Brute force login attempt against {identifier!r}",
            })
        if not success:
            return LoginVerdict(
                allowed=True, remaining_attempts=self._max_attempts - failed_count,
            ), (EventType.FAILED_LOGIN, {
                "identifier": identifier,
                "ip": ip,
                "failed_attempts": failed_count,
                "description": f"Failed login for {identifier!r}",
            })
        return LoginVerdict(allowed=True), None

    def get_state(self, identifier: str, source_ip: str) -> dict[str, Any]:
        """키의 상태 사본을 반환한다. 없는 키는 잠금 없음, 시도 0으로 취급한다."""
        key = make_key(identifier, source_ip)
        state = self._states.get(key)
        if state is None:
            return {"key": key, "attempts": [], "locked": False, "lock_expiry": None}
        return state.to_dict(key)

    def is_locked(self, identifier: str, source_ip: str) -> bool:
        """현재 시점 기준 잠금 여부. 상태를 변경하지 않는다."""
        state = self._states.get(make_key(identifier, source_ip))
        if state is None:
            return False
        with state.lock:
            return (
                state.locked
                and state.lock_expiry is not None
                and time.time() < state.lock_expiry
            )

    def snapshot(self) -> list[dict[str, Any]]:
        """모든 키 상태의 직렬화 사본을 반환한다."""
        with self._lock:
            items = list(self._states.items())
        return [state.to_dict(key) for key, state in items]

    def cleanup(self, cutoff: float) -> int:
        """cutoff 이전 시도를 잘라내고 비었거나 만료된 상태를 삭제한다.

        잠금 순서는 맵 잠금 다음 상태 잠금으로 고정한다.
        """
        with self._lock:
            items = list(self._states.items())

        now = time.time()
        removed = 0
        for key, state in items:
            try:
                with self._lock, state.lock:
                    state.attempts = [a for a in state.attempts if a.timestamp >= cutoff]
                    lock_active = (
                        state.locked
                        and state.lock_expiry is not None
                        and now < state.lock_expiry
                    )
                    if not state.attempts and not lock_active and self._states.get(key) is state:
                        del self._states[key]
                        state.removed = True
                        removed += 1
            except Exception:
                logger.exception("Failed to clean login state for %s", key)
        return removed

    def __len__(self) -> int:
        return len(self._states)
