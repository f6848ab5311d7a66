"""服务容器 - 统一装配运行编排所需的协作方

所有协作方通过容器获取，默认使用本地实现；测试或真实部署可在构造时注入替换：

    container = ServiceContainer(config=cfg, catalog_source=my_source)
    orchestrator = RunOrchestrator(container)

Config 注入:
  容器接受可选 Config 参数；若不提供，则使用全局 get_config()。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nodeagent.core.config import Config
    from nodeagent.core.context import RunContext
    from nodeagent.core.protocols import (
        CatalogApplier,
        CatalogSource,
        FactSource,
        NodeSource,
        PluginSyncer,
        ReportStore,
    )
    from nodeagent.services.report_manager import ReportManager
    from nodeagent.utils.net import ConnectionPool
    from nodeagent.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)

_OVERRIDABLE = frozenset({
    "catalog_source", "node_source", "fact_source", "applier",
    "plugin_syncer", "report_store", "report_manager", "executor",
    "pool_factory",
})


class ServiceContainer:
    """懒加载服务容器 - 每个实例持有一组共享的协作方"""

    def __init__(self, config: Config | None = None, **overrides: Any) -> None:
        unknown = sorted(set(overrides) - _OVERRIDABLE)
        if unknown:
            raise TypeError(f"未知的协作方: {', '.join(unknown)}")
        if config is None:
            from nodeagent.core.config import get_config
            config = get_config()
        self._config = config
        self._instances: dict[str, Any] = dict(overrides)
        self._context: RunContext | None = None

    @property
    def config(self) -> Config:
        return self._config

    @property
    def context(self) -> RunContext:
        """当前生效的服务端设置；协作方请求时据此确定目标服务端"""
        if self._context is None:
            from nodeagent.core.context import RunContext
            self._context = RunContext.from_config(self._config)
        return self._context

    # ---- 外部协作方 ----

    @property
    def catalog_source(self) -> CatalogSource:
        if "catalog_source" not in self._instances:
            from nodeagent.core.catalog_store import YamlCatalogCache, YamlCatalogSource
            self._instances["catalog_source"] = YamlCatalogSource(
                self._config.catalog_dir,
                YamlCatalogCache(self._config.catalog_cache_dir),
                default_environment=self._config.environment,
            )
        return self._instances["catalog_source"]  # type: ignore[return-value]

    @property
    def node_source(self) -> NodeSource:
        if "node_source" not in self._instances:
            from nodeagent.core.node_store import YamlNodeSource
            self._instances["node_source"] = YamlNodeSource(self._config.nodes_file)
        return self._instances["node_source"]  # type: ignore[return-value]

    @property
    def fact_source(self) -> FactSource:
        if "fact_source" not in self._instances:
            from nodeagent.core.facts import LocalFactSource
            self._instances["fact_source"] = LocalFactSource()
        return self._instances["fact_source"]  # type: ignore[return-value]

    @property
    def applier(self) -> CatalogApplier:
        if "applier" not in self._instances:
            from nodeagent.services.applier import LoggingApplier
            self._instances["applier"] = LoggingApplier()
        return self._instances["applier"]  # type: ignore[return-value]

    @property
    def plugin_syncer(self) -> PluginSyncer | None:
        """插件同步没有本地实现，未注入时跳过"""
        return self._instances.get("plugin_syncer")

    @property
    def report_store(self) -> ReportStore:
        if "report_store" not in self._instances:
            from nodeagent.core.report_store import create_report_store
            self._instances["report_store"] = create_report_store(self._config)
        return self._instances["report_store"]  # type: ignore[return-value]

    @property
    def executor(self) -> CommandExecutor:
        if "executor" not in self._instances:
            from nodeagent.utils.shell import get_executor
            self._instances["executor"] = get_executor()
        return self._instances["executor"]  # type: ignore[return-value]

    # ---- 核心服务 ----

    @property
    def report_manager(self) -> ReportManager:
        if "report_manager" not in self._instances:
            from nodeagent.services.report_manager import ReportManager
            self._instances["report_manager"] = ReportManager(
                self._config, store=self.report_store,
            )
        return self._instances["report_manager"]  # type: ignore[return-value]

    def new_connection_pool(self) -> ConnectionPool:
        """每次运行新建一个连接池，运行结束时关闭"""
        factory: Callable[[], ConnectionPool] | None = self._instances.get("pool_factory")
        if factory is not None:
            return factory()
        from nodeagent.utils.net import ConnectionPool
        return ConnectionPool(self._config.http_keepalive_timeout)

