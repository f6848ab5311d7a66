"""报告生命周期管理

职责：
- 运行期间把日志捕获进报告
- 分发报告：打印摘要、写本地运行摘要文件、提交报告存储
- 分发过程中的任何失败只记录，不向上传播，不能掩盖运行本身的结果
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import click

from nodeagent.core.exceptions import ValidationError
from nodeagent.utils.logger import ReportLogHandler, capture_logs
from nodeagent.utils.yaml_io import save_yaml

if TYPE_CHECKING:
    from nodeagent.core.config import Config
    from nodeagent.core.protocols import ReportStore
    from nodeagent.core.report import Report

logger = logging.getLogger(__name__)

_OCTAL_MODE = re.compile(r"^[0-7]{3,4}$")


def parse_file_mode(value: str | int) -> int:
    """把配置中的文件权限解析为整数

    字符串按八进制解析（"640" / "0640"）；整数视为已解析的值。

    Raises:
        ValidationError: 不是合法的权限值
    """
    if isinstance(value, bool):
        raise ValidationError(f"文件权限 {value} 无效")
    if isinstance(value, int):
        if 0 <= value <= 0o7777:
            return value
        raise ValidationError(f"文件权限 {value} 无效")
    text = str(value).strip()
    if not _OCTAL_MODE.match(text):
        raise ValidationError(f"文件权限 {text} 无效")
    return int(text, 8)


class ReportManager:
    """运行报告的捕获与分发"""

    def __init__(self, config: Config, store: ReportStore | None = None) -> None:
        self.config = config
        self.store = store

    @contextmanager
    def capture(self, report: Report) -> Iterator[ReportLogHandler]:
        """把报告挂为本次运行的日志目的地，退出时无条件摘除"""
        with capture_logs(report) as handler:
            yield handler

    def dispatch(self, report: Report) -> None:
        """分发报告：摘要输出 → 本地摘要文件 → 报告存储"""
        if self.config.summarize:
            click.echo(report.summary())

        self.write_last_run_summary(report)

        if self.config.report and self.store is not None:
            try:
                self.store.save(report)
            except Exception as e:  # noqa: BLE001
                logger.error("无法发送报告: %s", e, exc_info=True)

    def write_last_run_summary(self, report: Report) -> None:
        """原子写入本地运行摘要文件（YAML），失败只记录"""
        path = Path(self.config.lastrunfile)
        mode: int | None
        try:
            mode = parse_file_mode(self.config.lastrunfile_mode)
        except ValidationError as e:
            logger.error("无法设置本地运行摘要 %s 的权限: %s", path, e)
            mode = None

        try:
            save_yaml(path, report.raw_summary(), mode=mode)
        except Exception as e:  # noqa: BLE001
            logger.error("无法保存本地运行摘要 %s: %s", path, e)
