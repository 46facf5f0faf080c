"""로테이팅 파일 핸들러와 선택적 JSON 포맷을 지원하는 로깅 설정."""

from __future__ import annotations

import json as json_mod
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from webguard.utils.config import Config

LOG_FORMAT  = "%(asctime)s [%(levelname)-8s] %(name)-30s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 보안 이벤트 로그에 extra로 전달되는 구조화 필드
SECURITY_FIELDS = ("event_id", "event_type", "source_ip", "severity")


class JSONFormatter(logging.Formatter):
    """기계 파싱 가능한 출력을 위한 구조화된 JSON 로그 포매터.

    ``logger.warning(..., extra={"event_type": ...})``로 전달된 보안 필드를
    최상위 키로 포함한다.
    """

    def format(self, record: logging.LogRecord) -> str:
        """로그 레코드를 JSON 문자열로 포맷한다."""
        log_obj = {
            "ts": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in SECURITY_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_obj[name] = value
        if record.exc_info and record.exc_info[0] is not None:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json_mod.dumps(log_obj, ensure_ascii=False, default=str)


def setup_logging(config: Config) -> logging.Logger:
    """콘솔 + (선택) 로테이팅 파일 핸들러로 webguard 루트 로거를 설정한다.

    ``logging.directory``가 비어 있으면 파일 핸들러를 생략한다.
    반복 호출 시 이전에 추가한 핸들러를 교체한다.
    """
    level_str    = str(config.get("logging.level", "INFO"))
    directory    = config.get("logging.directory", "data/logs")
    max_bytes    = config.get("logging.max_bytes", 10_485_760)
    backup_count = config.get("logging.backup_count", 5)
    log_format   = config.get("logging.format", "text")

    root = logging.getLogger("webguard")
    root.setLevel(getattr(logging, level_str.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if directory:
        log_dir = Path(directory)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "webguard.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root
