"""报告存储 - 支持本地目录与远端 REST API

两种后端：
  - local:  按主机分目录保存 YAML 报告（默认）
  - remote: PUT JSON 到报告服务 REST API

保存失败一律抛异常，由 ReportManager 负责记录并吞掉。
"""

from __future__ import annotations

import json
import logging
import urllib.request
from pathlib import Path
from typing import TYPE_CHECKING

from nodeagent.utils.yaml_io import save_yaml

if TYPE_CHECKING:
    from nodeagent.core.config import Config
    from nodeagent.core.report import Report

logger = logging.getLogger(__name__)


class LocalReportStore:
    """本地文件系统报告存储"""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = Path(base_dir)

    def _path(self, report: Report) -> Path:
        host = (report.host or "unknown").replace("/", "_").replace("..", "_")
        stamp = report.time.strftime("%Y%m%d%H%M%S")
        return self.base_dir / host / f"{stamp}-{report.transaction_uuid or 'run'}.yaml"

    def save(self, report: Report) -> str:
        path = self._path(report)
        save_yaml(path, report.to_dict(), mode=0o640)
        logger.info("报告已保存: %s", path)
        return str(path)


class HttpReportStore:
    """远端 REST API 报告存储"""

    def __init__(self, api_url: str, *, timeout: float = 15.0) -> None:
        from nodeagent.utils.net import validate_url_scheme
        validate_url_scheme(api_url, context="report_url")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def save(self, report: Report) -> str:
        url = f"{self.api_url}/{report.host or 'unknown'}"
        payload = json.dumps(report.to_dict(), ensure_ascii=False).encode()
        req = urllib.request.Request(
            url, data=payload, method="PUT",
            headers={"Content-Type": "application/json"},
        )
        with urllib.request.urlopen(req, timeout=self.timeout):  # nosec B310
            pass
        logger.info("报告已提交: %s", url)
        return url


def create_report_store(config: Config) -> LocalReportStore | HttpReportStore:
    """根据配置创建报告存储后端"""
    if config.report_url:
        return HttpReportStore(config.report_url)
    return LocalReportStore(config.report_dir)
