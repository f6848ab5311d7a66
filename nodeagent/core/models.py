"""核心数据模型

运行选项、目录、节点数据、服务端端点、目录缓存状态、阶段结果集中定义。
报告模型较重，单独放在 nodeagent.core.report。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from nodeagent.core.exceptions import ValidationError
from nodeagent.utils.yaml_io import atomic_write

if TYPE_CHECKING:
    from nodeagent.core.report import Report


class CachedCatalogStatus(str, Enum):
    """本次运行对缓存目录的使用情况"""

    NOT_USED = "not_used"
    ON_FAILURE = "on_failure"
    EXPLICITLY_REQUESTED = "explicitly_requested"


# =========================================================================
# 运行选项
# =========================================================================


@dataclass(frozen=True)
class RunOptions:
    """单次运行的调用方覆盖项，运行期间不可变"""

    catalog: Catalog | None = None
    report: Report | None = None
    pluginsync: bool | None = None  # None 表示使用配置默认值
    apply_options: dict[str, Any] = field(default_factory=dict)


# =========================================================================
# 目录
# =========================================================================


def _resource_ref(resource: dict[str, Any]) -> str:
    return f"{str(resource.get('type', '')).lower()}[{resource.get('title', '')}]"


@dataclass
class Catalog:
    """获取形态的目录 - 由目录源创建，归本次运行独占"""

    name: str
    environment: str = ""
    transaction_uuid: str = ""
    job_id: str = ""
    version: str = ""
    resources: list[dict[str, Any]] = field(default_factory=list)
    classes: list[str] = field(default_factory=list)

    def to_applyable(self) -> ApplyableCatalog:
        """转换为可应用形态，不修改自身"""
        return ApplyableCatalog(
            name=self.name,
            environment=self.environment,
            transaction_uuid=self.transaction_uuid,
            job_id=self.job_id,
            version=self.version,
            resources=[dict(r) for r in self.resources],
            classes=list(self.classes),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "environment": self.environment,
            "transaction_uuid": self.transaction_uuid,
            "job_id": self.job_id,
            "version": self.version,
            "resources": [dict(r) for r in self.resources],
            "classes": list(self.classes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Catalog:
        if not data.get("name"):
            raise ValidationError("目录缺少 name 字段")
        return cls(
            name=str(data["name"]),
            environment=str(data.get("environment", "")),
            transaction_uuid=str(data.get("transaction_uuid", "")),
            job_id=str(data.get("job_id", "")),
            version=str(data.get("version", "")),
            resources=list(data.get("resources") or []),
            classes=[str(c) for c in data.get("classes") or []],
        )


@dataclass
class ApplyableCatalog(Catalog):
    """可应用形态的目录"""

    finalized: bool = False
    retrieval_duration: float | None = None

    def finalize(self) -> None:
        """校验资源唯一性并冻结资源列表"""
        seen: set[str] = set()
        dupes: list[str] = []
        for r in self.resources:
            ref = _resource_ref(r)
            if ref in seen:
                dupes.append(ref)
            seen.add(ref)
        if dupes:
            raise ValidationError(f"目录中存在重复资源: {', '.join(dupes)}", dupes)
        self.finalized = True

    def resource_refs(self) -> list[str]:
        return [_resource_ref(r) for r in self.resources]

    def write_class_file(self, path: str | Path) -> None:
        """写出本目录包含的类名，每行一个"""
        atomic_write(Path(path), "".join(f"{c}\n" for c in self.classes))

    def write_resource_file(self, path: str | Path) -> None:
        """写出本目录管理的资源引用，每行一个"""
        atomic_write(Path(path), "".join(f"{r}\n" for r in self.resource_refs()))


# =========================================================================
# 节点与服务端
# =========================================================================


@dataclass
class NodeData:
    """节点定义（环境、分类）"""

    name: str
    environment: str = ""
    classes: list[str] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ServerEndpoint:
    """服务端端点 (host, port)"""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def parse(cls, entry: str, default_port: int) -> ServerEndpoint:
        host, sep, port = entry.strip().partition(":")
        if not host:
            raise ValidationError(f"无效的服务端条目: '{entry}'")
        if not sep:
            return cls(host, default_port)
        try:
            return cls(host, int(port))
        except ValueError as e:
            raise ValidationError(f"无效的服务端端口: '{entry}'") from e


def parse_server_list(server_list: str, default_port: int) -> list[ServerEndpoint]:
    """解析逗号分隔的 server_list，保持原有顺序"""
    return [
        ServerEndpoint.parse(entry, default_port)
        for entry in server_list.split(",") if entry.strip()
    ]


# =========================================================================
# 阶段结果
# =========================================================================


@dataclass(frozen=True)
class StageResult:
    """阶段执行结果 - 取代以异常作控制流"""

    ok: bool
    value: Any = None
    reason: str = ""

    @classmethod
    def success(cls, value: Any = None) -> StageResult:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str) -> StageResult:
        return cls(ok=False, reason=reason)

    def __bool__(self) -> bool:
        return self.ok
