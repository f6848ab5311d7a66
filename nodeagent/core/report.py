"""运行报告模型

一次运行产生且只产生一个 Report：运行开始时创建（或由调用方传入），
运行中不断累积日志、耗时指标和资源结果，运行结束时 finalize 一次后分发。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from nodeagent import __version__
from nodeagent.core.models import CachedCatalogStatus

# 退出码位掩码
EXIT_RUN_FAILED = 1
EXIT_CHANGES = 2
EXIT_FAILURES = 4


@dataclass
class LogEntry:
    """报告中的单条日志"""

    level: str
    message: str
    source: str = ""
    time: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_dict(self) -> dict[str, str]:
        return {
            "level": self.level,
            "message": self.message,
            "source": self.source,
            "time": self.time.isoformat(),
        }


class Report:
    """一次代理运行的报告"""

    def __init__(
        self,
        host: str = "",
        environment: str = "",
        transaction_uuid: str = "",
        job_id: str = "",
    ) -> None:
        self.host = host
        self.environment = environment
        self.transaction_uuid = transaction_uuid
        self.job_id = job_id
        self.time = datetime.now(tz=timezone.utc)
        self.configuration_version = ""
        self.cached_catalog_status: CachedCatalogStatus | None = None
        self.master_used = ""
        self.logs: list[LogEntry] = []
        self.metrics: dict[str, dict[str, float]] = {}
        self.resource_statuses: dict[str, dict[str, bool]] = {}
        self.status = "unchanged"
        self.exit_status: int | None = None
        self.failure_reason = ""
        self.finalized = False

    # ---- 运行中累积 ----

    def append_log(self, entry: LogEntry) -> None:
        self.logs.append(entry)

    def add_times(self, name: str, seconds: float) -> None:
        """记录某阶段耗时（秒）"""
        self.metrics.setdefault("time", {})[str(name)] = float(seconds)

    def record_resource(
        self, ref: str, *, changed: bool = False, failed: bool = False,
        skipped: bool = False,
    ) -> None:
        """由应用引擎记录单个资源的处理结果"""
        self.resource_statuses[ref] = {
            "changed": changed, "failed": failed, "skipped": skipped,
        }

    def mark_failed(self, reason: str) -> None:
        """标记运行级失败（目录缺失、环境不符、应用异常等）"""
        if not self.failure_reason:
            self.failure_reason = reason

    # ---- 结束 ----

    def _resource_counts(self) -> dict[str, int]:
        statuses = self.resource_statuses.values()
        return {
            "total": len(self.resource_statuses),
            "changed": sum(1 for s in statuses if s["changed"]),
            "failed": sum(1 for s in statuses if s["failed"]),
            "skipped": sum(1 for s in statuses if s["skipped"]),
        }

    def finalize_report(self) -> None:
        """计算最终状态和退出码，只生效一次"""
        if self.finalized:
            return
        counts = self._resource_counts()
        exit_status = 0
        if counts["changed"]:
            exit_status |= EXIT_CHANGES
        if counts["failed"]:
            exit_status |= EXIT_FAILURES
        if counts["failed"] or self.failure_reason:
            self.status = "failed"
        elif counts["changed"]:
            self.status = "changed"
        else:
            self.status = "unchanged"
        if self.failure_reason and exit_status == 0:
            exit_status = EXIT_RUN_FAILED
        self.exit_status = exit_status
        self.finalized = True

    # ---- 输出 ----

    def raw_summary(self) -> dict[str, Any]:
        """机器可读的运行摘要（写入 last run summary 文件）"""
        counts = self._resource_counts()
        times = dict(self.metrics.get("time", {}))
        times["last_run"] = int(self.time.timestamp())
        return {
            "version": {
                "config": self.configuration_version,
                "agent": __version__,
            },
            "resources": counts,
            "time": times,
            "changes": {"total": counts["changed"]},
            "events": {
                "failure": counts["failed"],
                "success": counts["changed"],
                "total": counts["failed"] + counts["changed"],
            },
        }

    def summary(self) -> str:
        """人类可读的运行摘要"""
        lines: list[str] = []
        for section, values in self.raw_summary().items():
            lines.append(f"{section.capitalize()}:")
            width = max((len(k) for k in values), default=0) + 2
            for key, value in values.items():
                label = key.replace("_", " ").capitalize()
                if isinstance(value, float):
                    value = f"{value:.2f}"
                lines.append(f"{label:>{width}}: {value}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """完整报告（提交到报告存储）"""
        return {
            "host": self.host,
            "environment": self.environment,
            "transaction_uuid": self.transaction_uuid,
            "job_id": self.job_id,
            "time": self.time.isoformat(),
            "configuration_version": self.configuration_version,
            "cached_catalog_status": (
                self.cached_catalog_status.value
                if self.cached_catalog_status else None
            ),
            "master_used": self.master_used,
            "status": self.status,
            "exit_status": self.exit_status,
            "failure_reason": self.failure_reason,
            "metrics": {k: dict(v) for k, v in self.metrics.items()},
            "resource_statuses": {k: dict(v) for k, v in self.resource_statuses.items()},
            "logs": [entry.to_dict() for entry in self.logs],
        }
