"""运行编排步骤实现

步骤顺序：
1. select_server     - server_list 故障转移（唯一会中止运行的失败）
2. download_plugins  - 插件同步（尽力而为）
3. collect_facts     - 事实收集，确定报告主机名
4. lookup_node       - 节点定义查询，可能切换代理环境
5. retrieve_catalog  - 目录获取
6. convert_catalog   - 转换为可应用形态
7. 运行前钩子 → apply_catalog → 运行后钩子

除 select_server 外，每一步的失败都在本步内记录并转换为空结果。
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from nodeagent.core.exceptions import (
    ExecutionFailure,
    NoFunctionalServerError,
    ValidationError,
)
from nodeagent.core.models import ServerEndpoint, StageResult, parse_server_list
from nodeagent.services.server_selector import ServerSelector
from nodeagent.utils.shell import execute_command, split_command

if TYPE_CHECKING:
    from nodeagent.core.config import Config
    from nodeagent.core.context import RunContext
    from nodeagent.core.models import ApplyableCatalog, Catalog, RunOptions
    from nodeagent.core.report import Report
    from nodeagent.services.container import ServiceContainer
    from nodeagent.services.orchestrator.models import RunState

logger = logging.getLogger(__name__)


def should_pluginsync(config: Config) -> bool:
    """pluginsync 默认值：显式配置时取配置值，否则仅缓存模式下不同步"""
    if config.is_explicit("pluginsync"):
        return config.pluginsync
    return not config.use_cached_catalog


class RunSteps:
    """编排步骤集合"""

    def __init__(self, container: ServiceContainer, context: RunContext) -> None:
        self.c = container
        self.context = context

    @property
    def config(self) -> Config:
        return self.c.config

    # ---- 服务端选择 ----

    def select_server(self, options: RunOptions, report: Report) -> ServerEndpoint | None:
        """步骤1: 在 server_list 中选出可用服务端；未配置或 apply 模式下跳过"""
        server_list = self.config.server_list.strip()
        if options.catalog is not None or not server_list:
            return None
        try:
            endpoints = parse_server_list(server_list, self.config.server_port)
        except ValidationError as e:
            raise NoFunctionalServerError(
                f"无法从 server_list 中选出可用的服务端: '{server_list}' ({e})",
            ) from e
        selector = ServerSelector(self.context.http_pool, timeout=self.config.probe_timeout)
        endpoint = selector.select(endpoints, server_list=server_list)
        report.master_used = str(endpoint)
        return endpoint

    # ---- 插件 / 事实 / 节点 ----

    def download_plugins(self, state: RunState) -> None:
        """步骤2: 插件同步，失败不影响运行"""
        syncer = self.c.plugin_syncer
        if syncer is None:
            logger.debug("未配置插件同步，跳过")
            return
        try:
            syncer.sync(state.environment)
        except Exception as e:  # noqa: BLE001
            logger.warning("插件同步失败，运行继续: %s", e, exc_info=True)

    def collect_facts(self, state: RunState) -> dict[str, Any] | None:
        """步骤3: 收集事实，并据 node_name_fact 确定报告主机名"""
        node_name = self.config.node_name_value
        facts: dict[str, Any] | None
        try:
            facts = self.c.fact_source.find(node_name)
        except Exception as e:  # noqa: BLE001
            logger.warning("事实收集失败，运行继续: %s", e, exc_info=True)
            facts = None

        host = node_name
        fact_name = self.config.node_name_fact
        if fact_name and facts and facts.get(fact_name):
            host = str(facts[fact_name])
        state.report.host = host
        state.facts = facts
        return facts

    def lookup_node(self, state: RunState) -> None:
        """步骤4: 查询节点定义；失败时不带节点数据继续运行"""
        retriever = state.retriever
        try:
            node = self.c.node_source.find(
                self.config.node_name_value,
                transaction_uuid=retriever.transaction_uuid,
                configured_environment=retriever.configured_environment,
                server=self.context.server,
                server_port=self.context.server_port,
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("无法获取节点定义，运行继续: %s", e)
            return
        if node is None:
            logger.warning("未找到节点定义，运行继续")
            return

        if node.environment and node.environment != state.environment:
            logger.info(
                "本地环境 '%s' 与服务端指定的节点环境 '%s' 不符，代理切换到 '%s'",
                state.environment, node.environment, node.environment,
            )
            state.switch_environment(node.environment)
        else:
            logger.info("使用配置的环境 '%s'", state.environment)
        retriever.node_environment = node.environment or state.environment

    # ---- 目录 ----

    def retrieve_catalog(self, state: RunState) -> Catalog | None:
        """步骤5: 获取目录；获取不到时记录错误"""
        catalog = state.retriever.retrieve(state.facts)
        if catalog is None:
            logger.error("无法获取目录，跳过本次运行")
            state.report.mark_failed("无法获取目录")
        return catalog

    def convert_catalog(
        self, catalog: Catalog, duration: float, report: Report | None = None,
    ) -> ApplyableCatalog:
        """步骤6: 转换为可应用形态，写出类文件与资源文件，记录转换耗时"""
        start = time.monotonic()
        applyable = catalog.to_applyable()
        applyable.finalize()
        applyable.retrieval_duration = duration
        try:
            applyable.write_class_file(self.config.classfile)
        except OSError as e:
            logger.error("无法写入类文件 %s: %s", self.config.classfile, e)
        try:
            applyable.write_resource_file(self.config.resourcefile)
        except OSError as e:
            logger.error("无法写入资源文件 %s: %s", self.config.resourcefile, e)
        if report is not None:
            report.add_times("convert_catalog", time.monotonic() - start)
        return applyable

    def apply_catalog(
        self, catalog: ApplyableCatalog, report: Report,
        apply_options: dict[str, Any] | None = None,
    ) -> StageResult:
        """步骤7: 调用应用引擎；异常记录后视为无结果，不再抛出"""
        options = {"noop": self.config.noop, **(apply_options or {})}
        start = time.monotonic()
        try:
            result = self.c.applier.apply(catalog, report=report, **options)
        except Exception as e:  # noqa: BLE001
            logger.error("应用目录失败: %s", e, exc_info=True)
            report.mark_failed(f"应用目录失败: {e}")
            return StageResult.failure(str(e))
        finally:
            report.add_times("apply_catalog", time.monotonic() - start)
        logger.info(
            "目录应用完成，耗时 %.2f 秒", report.metrics["time"]["apply_catalog"],
        )
        return StageResult.success(result)

    # ---- 钩子 ----

    def _execute_hook(self, setting: str, command: str) -> StageResult:
        if not command.strip():
            return StageResult.success()
        try:
            execute_command(split_command(command), executor=self.c.executor)
        except (ExecutionFailure, ValueError) as e:
            logger.warning("无法执行 %s 中的命令: %s", setting, e)
            return StageResult.failure(f"{setting}: {e}")
        return StageResult.success()

    def execute_prerun_command(self) -> StageResult:
        """运行前钩子；失败时跳过目录应用"""
        return self._execute_hook("prerun_command", self.config.prerun_command)

    def execute_postrun_command(self) -> StageResult:
        """运行后钩子；失败只影响返回值，不阻止报告分发"""
        return self._execute_hook("postrun_command", self.config.postrun_command)
