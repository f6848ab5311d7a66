"""外部协作方协议定义

运行编排核心只通过这些窄接口使用外部系统（传输层、应用引擎、事实收集、
插件同步、报告存储），实现依赖倒置。

使用 typing.Protocol 而非 ABC，使得现有类无需修改继承关系即可满足协议。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from nodeagent.core.models import ApplyableCatalog, Catalog, NodeData
    from nodeagent.core.report import Report
    from nodeagent.utils.net import ProbeResponse


# =========================================================================
# 目录 / 节点
# =========================================================================

class CatalogSource(Protocol):
    """目录源协议

    find 的选项包括 ignore_cache / ignore_terminus / ignore_cache_save /
    facts / facts_format / static_catalog / checksum_type /
    transaction_uuid / job_id / environment / server / server_port。
    server / server_port 是故障转移选出的服务端，远端目录源据此发送请求。
    未找到返回 None，出错抛异常。
    """

    # 远端目录源可接收上传的事实；本地目录源不能
    supports_fact_upload: bool

    def find(self, name: str, **options: Any) -> Catalog | None:
        ...


class NodeSource(Protocol):
    """节点定义源协议

    选项: transaction_uuid, configured_environment, server, server_port
    """

    def find(self, name: str, **options: Any) -> NodeData | None:
        ...


class FactSource(Protocol):
    """事实收集协议"""

    def find(self, name: str) -> dict[str, Any]:
        ...


# =========================================================================
# 应用 / 插件 / 报告
# =========================================================================

class CatalogApplier(Protocol):
    """资源图应用引擎协议 - 把可应用目录作用到本机，结果记录进报告"""

    def apply(
        self, catalog: ApplyableCatalog, *, report: Report, **options: Any,
    ) -> Any:
        ...


class PluginSyncer(Protocol):
    """插件/代码同步协议"""

    def sync(self, environment: str) -> None:
        ...


class ReportStore(Protocol):
    """报告存储协议，失败时抛异常"""

    def save(self, report: Report) -> Any:
        ...


# =========================================================================
# 探测
# =========================================================================

class ProbeClient(Protocol):
    """面向单个端点的 HTTP 探测客户端"""

    def get(self, path: str) -> ProbeResponse:
        ...


class ProbeClientFactory(Protocol):
    """按端点提供探测客户端（通常是连接池）"""

    def client(self, host: str, port: int, *, timeout: float = 10.0) -> ProbeClient:
        ...
