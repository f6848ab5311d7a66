"""运行编排器 - 协调一次完整的代理运行

职责：
- 解析报告并在整次运行中捕获日志
- 故障转移选出服务端，作用域内覆盖运行上下文
- 协调 目录获取 → 转换 → 钩子 → 应用 的顺序
- 保证报告在 finally 中 finalize 并分发
"""

from __future__ import annotations

import logging
import time
import uuid

from nodeagent.core.exceptions import NoFunctionalServerError
from nodeagent.core.models import CachedCatalogStatus, RunOptions, StageResult
from nodeagent.core.report import Report
from nodeagent.services.catalog_retriever import (
    CatalogRetriever,
    strict_environment_violation,
)
from nodeagent.services.container import ServiceContainer
from nodeagent.services.orchestrator.models import MAX_ENVIRONMENT_REFETCHES, RunState
from nodeagent.services.orchestrator.steps import RunSteps, should_pluginsync

logger = logging.getLogger(__name__)


class RunOrchestrator:
    """代理运行编排器（报告总在 finally 中分发）"""

    def __init__(
        self,
        container: ServiceContainer | None = None,
        *,
        transaction_uuid: str | None = None,
        job_id: str = "",
    ) -> None:
        self.c = container or ServiceContainer()
        self.transaction_uuid = transaction_uuid or str(uuid.uuid4())
        self.job_id = job_id
        self.environment = self.c.config.environment
        self.context = self.c.context
        self.steps = RunSteps(self.c, self.context)

    def new_report(self) -> Report:
        return Report(
            host=self.c.config.node_name_value,
            environment=self.environment,
            transaction_uuid=self.transaction_uuid,
            job_id=self.job_id,
        )

    def run(self, options: RunOptions | None = None) -> int | None:
        """执行一次代理运行

        Returns:
            目录成功应用时返回报告退出码，否则返回 None

        Raises:
            NoFunctionalServerError: server_list 中没有可用服务端
        """
        options = options or RunOptions()
        report = options.report or self.new_report()
        manager = self.c.report_manager
        start = time.monotonic()
        pool = self.c.new_connection_pool()
        ok = False

        try:
            with manager.capture(report), self.context.override(http_pool=pool):
                try:
                    endpoint = self.steps.select_server(options, report)
                except NoFunctionalServerError as e:
                    logger.error("%s", e)
                    report.mark_failed(str(e))
                    raise

                if endpoint is None:
                    ok = self._run_internal(options, report)
                else:
                    with self.context.override(
                        server=endpoint.host, server_port=endpoint.port,
                    ):
                        ok = self._run_internal(options, report)
        finally:
            report.add_times("total", time.monotonic() - start)
            report.finalize_report()
            pool.close()
            manager.dispatch(report)

        return report.exit_status if ok else None

    def _run_internal(self, options: RunOptions, report: Report) -> bool:
        """目录阶段 + 钩子；返回目录是否成功应用且运行后钩子成功"""
        retriever = CatalogRetriever(
            self.c.config,
            self.c.catalog_source,
            transaction_uuid=self.transaction_uuid,
            job_id=self.job_id,
            context=self.context,
        )
        retriever.environment = self.environment
        retriever.node_environment = self.environment
        state = RunState(
            options=options, report=report, retriever=retriever,
            environment=self.environment,
        )

        applied = StageResult.failure("未执行")
        try:
            applied = self._converge(state)
        except Exception as e:  # noqa: BLE001
            logger.error("应用目录失败: %s", e, exc_info=True)
            report.mark_failed(f"应用目录失败: {e}")
        finally:
            self.environment = state.environment
            report.cached_catalog_status = retriever.status
            postrun = self.steps.execute_postrun_command()
            if not postrun:
                report.mark_failed(postrun.reason)

        return bool(applied) and bool(postrun)

    def _converge(self, state: RunState) -> StageResult:
        config = self.c.config
        report = state.report
        retriever = state.retriever
        catalog = state.options.catalog

        # 仅缓存模式先查缓存，命中则跳过插件同步和节点查询
        pluginsync = state.options.pluginsync
        if pluginsync is None:
            pluginsync = should_pluginsync(config)
        if catalog is None and config.use_cached_catalog:
            catalog = retriever.try_cache_only()
            if catalog is None and not retriever.cache_missed:
                report.mark_failed("缓存目录环境不符")
                return StageResult.failure("缓存目录环境不符")
            if retriever.cache_missed and state.options.pluginsync is not False:
                pluginsync = True

        if pluginsync and catalog is None:
            self.steps.download_plugins(state)

        self.steps.collect_facts(state)

        if catalog is None and not config.strict_environment_mode:
            self.steps.lookup_node(state)

        if catalog is None:
            catalog = self.steps.retrieve_catalog(state)
            if catalog is None:
                return StageResult.failure("无法获取目录")

        # 缓存目录按原样使用，只对全新获取的目录做环境协调
        retrieved = (
            not state.catalog_supplied
            and retriever.status == CachedCatalogStatus.NOT_USED
        )

        if config.strict_environment_mode:
            message = strict_environment_violation(catalog.environment, config.environment)
            if message:
                logger.error(message)
                report.mark_failed(message)
                return StageResult.failure(message)

        # 环境协调：采用目录所在环境，至多重新获取一次
        refetches = 0
        while retrieved and catalog.environment != state.environment:
            if refetches >= MAX_ENVIRONMENT_REFETCHES:
                message = (
                    f"重新获取后目录环境 '{catalog.environment}' "
                    f"仍与代理环境 '{state.environment}' 不符"
                )
                logger.error(message)
                report.mark_failed(message)
                return StageResult.failure(message)
            logger.warning(
                "本地环境 '%s' 与服务端返回的环境 '%s' 不符，切换代理环境",
                state.environment, catalog.environment,
            )
            state.switch_environment(catalog.environment)
            retriever.node_environment = catalog.environment
            refetches += 1
            catalog = self.steps.retrieve_catalog(state)
            if catalog is None:
                return StageResult.failure("无法获取目录")

        report.configuration_version = catalog.version

        applyable = self.steps.convert_catalog(catalog, retriever.duration, report)

        prerun = self.steps.execute_prerun_command()
        if not prerun:
            report.mark_failed(prerun.reason)
            return prerun

        return self.steps.apply_catalog(applyable, report, state.options.apply_options)
