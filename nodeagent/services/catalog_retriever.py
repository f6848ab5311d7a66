"""目录获取决策

决策树：
  - 仅缓存模式: 先查缓存，命中即用（状态 explicitly_requested）；
    未命中则回落到一次全新获取
  - 常规模式: 跳过缓存直接全新获取（状态 not_used）；
    失败时按 usecacheonfailure 决定是否回落到环境匹配的缓存目录（状态 on_failure）

每次运行创建一个实例，缓存状态、最近一次获取耗时等都是本次运行的状态。
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from nodeagent.core.facts import facts_for_uploading
from nodeagent.core.models import CachedCatalogStatus

if TYPE_CHECKING:
    from nodeagent.core.config import Config
    from nodeagent.core.context import RunContext
    from nodeagent.core.models import Catalog
    from nodeagent.core.protocols import CatalogSource

logger = logging.getLogger(__name__)


def strict_environment_violation(
    catalog_environment: str, agent_environment: str,
) -> str:
    """严格环境模式下目录环境不符时的错误信息；符合时返回空串"""
    if catalog_environment == agent_environment:
        return ""
    return (
        f"不使用该目录: 其环境 '{catalog_environment}' 与代理指定的环境 "
        f"'{agent_environment}' 不符，且已启用 strict_environment_mode"
    )


class CatalogRetriever:
    """缓存 / 全新获取 / 失败回落 的目录获取器"""

    def __init__(
        self,
        config: Config,
        source: CatalogSource,
        *,
        transaction_uuid: str = "",
        job_id: str = "",
        context: RunContext | None = None,
    ) -> None:
        self.config = config
        self.source = source
        self.context = context
        self.transaction_uuid = transaction_uuid
        self.job_id = job_id
        # 代理当前环境，环境协调后由编排器更新
        self.environment = config.environment
        # 节点最近一次已知环境，缓存回落时比对
        self.node_environment = config.environment
        self.status = CachedCatalogStatus.NOT_USED
        self.duration = 0.0
        self._cache_missed = False

    @property
    def configured_environment(self) -> str | None:
        if self.config.is_explicit("environment"):
            return self.config.environment
        return None

    @property
    def cache_missed(self) -> bool:
        """本次运行的仅缓存查询是否未命中"""
        return self._cache_missed

    # ---- 底层查询 ----

    def _timed_find(self, **options: Any) -> Catalog | None:
        start = time.monotonic()
        try:
            return self.source.find(self.config.node_name_value, **options)
        finally:
            self.duration = time.monotonic() - start

    def retrieve_from_cache(self) -> Catalog | None:
        """只查本地缓存，不访问服务端"""
        try:
            return self._timed_find(
                ignore_terminus=True,
                environment=self.environment,
                transaction_uuid=self.transaction_uuid,
                static_catalog=True,
            )
        except Exception as e:  # noqa: BLE001
            logger.error("无法从缓存获取目录: %s", e, exc_info=True)
            return None

    def new_catalog_options(self, facts: dict[str, Any] | None = None) -> dict[str, Any]:
        """全新获取目录时的请求选项"""
        options: dict[str, Any] = {
            "ignore_cache": True,
            "ignore_cache_save": self.config.noop,
            "environment": self.environment,
            "configured_environment": self.configured_environment,
            "static_catalog": True,
            "checksum_type": self.config.checksum_type,
            "transaction_uuid": self.transaction_uuid,
            "job_id": self.job_id,
        }
        if self.context is not None:
            options["server"] = self.context.server
            options["server_port"] = self.context.server_port
        if self.source.supports_fact_upload and facts is not None:
            options.update(facts_for_uploading(facts))
        return options

    def retrieve_new(self, facts: dict[str, Any] | None = None) -> Catalog | None:
        """跳过缓存向目录源请求全新目录，失败返回 None"""
        try:
            return self._timed_find(**self.new_catalog_options(facts))
        except Exception as e:  # noqa: BLE001
            logger.error("无法从远端服务获取目录: %s", e, exc_info=True)
            return None

    # ---- 决策 ----

    def try_cache_only(self) -> Catalog | None:
        """仅缓存模式下的缓存查询；未命中后本次运行不再查缓存"""
        catalog = self.retrieve_from_cache()
        if catalog is None:
            self._cache_missed = True
            self.status = CachedCatalogStatus.NOT_USED
            return None

        if self.config.strict_environment_mode:
            message = strict_environment_violation(
                catalog.environment, self.config.environment,
            )
            if message:
                logger.error(message)
                return None
        self.status = CachedCatalogStatus.EXPLICITLY_REQUESTED
        logger.info("使用来自环境 '%s' 的缓存目录", catalog.environment)
        return catalog

    def retrieve(self, facts: dict[str, Any] | None = None) -> Catalog | None:
        """按决策树获取目录，同时设置 status"""
        if self.config.use_cached_catalog and not self._cache_missed:
            catalog = self.try_cache_only()
            if catalog is not None or not self._cache_missed:
                return catalog

        self.status = CachedCatalogStatus.NOT_USED
        catalog = self.retrieve_new(facts)
        if catalog is not None:
            return catalog

        if not self.config.usecacheonfailure:
            logger.warning("目录获取失败，未启用 usecacheonfailure，不使用缓存目录")
            return None
        if self._cache_missed:
            return None

        catalog = self.retrieve_from_cache()
        if catalog is None:
            return None
        if self.node_environment and catalog.environment != self.node_environment:
            logger.error(
                "不使用缓存目录: 其环境 '%s' 与 '%s' 不符",
                catalog.environment, self.node_environment,
            )
            return None

        self.status = CachedCatalogStatus.ON_FAILURE
        logger.info("使用来自环境 '%s' 的缓存目录", catalog.environment)
        return catalog
