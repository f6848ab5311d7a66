"""默认应用引擎占位

真正的资源图执行引擎是外部组件；本地运行时用它逐个记录目录中的资源，
不对系统做任何修改。
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nodeagent.core.models import ApplyableCatalog
    from nodeagent.core.report import Report

logger = logging.getLogger(__name__)


class LoggingApplier:
    """只记录资源、不改变系统状态的应用引擎"""

    def apply(
        self, catalog: ApplyableCatalog, *, report: Report, **options: Any,
    ) -> Report:
        suffix = " (noop)" if options.get("noop") else ""
        for ref in catalog.resource_refs():
            logger.info("已评估资源 %s%s", ref, suffix)
            report.record_resource(ref)
        return report
