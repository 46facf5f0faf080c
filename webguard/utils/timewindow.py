"""``"15m"``, ``"1h"``, ``"7d"`` 형식의 시간 윈도우 파싱."""

from __future__ import annotations

import re

DEFAULT_WINDOW_SECONDS = 24 * 3600

_WINDOW_RE = re.compile(r"^(\d+)([smhd])$")

_MULTIPLIERS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_time_window(window: str | None) -> int:
    """시간 윈도우 문자열을 초 단위로 변환한다.

    형식이 맞지 않으면 기본값(24시간)을 반환한다.
    """
    if not window:
        return DEFAULT_WINDOW_SECONDS
    match = _WINDOW_RE.match(str(window).strip())
    if not match:
        return DEFAULT_WINDOW_SECONDS
    value, unit = match.groups()
    return int(value) * _MULTIPLIERS[unit]


def is_valid_time_window(window: str) -> bool:
    """API 입력 검증용: 형식이 올바르면 True."""
    return bool(_WINDOW_RE.match(window or ""))
