"""nodeagent 日志配置

提供统一的日志配置和格式化功能，支持普通文本和结构化 JSON 两种输出格式，
以及把一次运行期间的日志同步记录进运行报告的捕获 handler。
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from nodeagent.core.report import Report

AGENT_LOGGER = "nodeagent"

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"


def record_time(record: logging.LogRecord) -> datetime:
    """日志事件发生时间（UTC），而非格式化时间"""
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JSONFormatter(logging.Formatter):
    """单行 JSON 日志，字段: time / level / logger / message / where，异常时附 exception"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class ReportLogHandler(logging.Handler):
    """把日志记录追加到运行报告中（报告作为日志目的地）"""

    def __init__(self, report: Report, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.report = report

    def emit(self, record: logging.LogRecord) -> None:
        from nodeagent.core.report import LogEntry
        try:
            self.report.append_log(LogEntry(
                level=record.levelname.lower(),
                message=record.getMessage(),
                source=record.name,
                time=record_time(record),
            ))
        except Exception:  # noqa: BLE001
            self.handleError(record)


@contextmanager
def capture_logs(
    report: Report, logger_name: str = AGENT_LOGGER, level: int = logging.INFO,
) -> Iterator[ReportLogHandler]:
    """运行期间把 logger_name 下的日志记录进报告，退出时无条件摘除

    参数:
        report: 接收日志的运行报告
        logger_name: 捕获范围（默认整个 nodeagent 日志树）
        level: 至少捕获到该级别；日志器的有效级别更高时在作用域内临时下调，
            退出时恢复，不依赖根日志器是否已配置

    示例:
        >>> with capture_logs(report):
        ...     logging.getLogger("nodeagent.x").info("captured")
    """
    handler = ReportLogHandler(report)
    target = logging.getLogger(logger_name)
    saved_level = target.level
    if target.getEffectiveLevel() > level:
        target.setLevel(level)
    target.addHandler(handler)
    try:
        yield handler
    finally:
        target.removeHandler(handler)
        target.setLevel(saved_level)
        handler.close()


def setup_logging(
    level: str = "INFO", json_output: bool = False, *, stream: IO[str] | None = None,
) -> None:
    """配置根日志器，输出到 stream（默认 stderr），替换已有 handler"""
    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
        old.close()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
