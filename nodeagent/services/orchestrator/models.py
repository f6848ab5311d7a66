"""运行编排数据模型

- RunState: 单次运行在各步骤间传递的可变状态
- MAX_ENVIRONMENT_REFETCHES: 环境协调时最多重新获取目录的次数
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nodeagent.core.models import RunOptions
    from nodeagent.core.report import Report
    from nodeagent.services.catalog_retriever import CatalogRetriever

MAX_ENVIRONMENT_REFETCHES = 1


@dataclass
class RunState:
    """单次运行的状态"""

    options: RunOptions
    report: Report
    retriever: CatalogRetriever
    environment: str
    facts: dict[str, Any] | None = None

    @property
    def catalog_supplied(self) -> bool:
        return self.options.catalog is not None

    def switch_environment(self, environment: str) -> None:
        """切换代理环境，同步修正报告和目录获取器"""
        self.environment = environment
        self.report.environment = environment
        self.retriever.environment = environment
