"""集中配置管理

代理的全部运行时设置集中在 Config 数据类中。
支持从 YAML 文件加载 + 编程式覆盖，并记录哪些键由配置文件显式设置，
供 configured_environment / pluginsync 默认值等逻辑判断。
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field, fields, replace

import yaml

from nodeagent.core.exceptions import ConfigError
from nodeagent.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CHECKSUM_TYPES = ["md5", "sha256", "sha384", "sha512", "sha224"]

_NUMERIC_FIELDS = {
    "server_port": int,
    "probe_timeout": float,
    "http_keepalive_timeout": float,
}


@dataclass
class Config:
    """代理全局配置"""

    # 节点
    node_name: str = ""
    node_name_fact: str = ""
    environment: str = "production"

    # 目录获取策略
    strict_environment_mode: bool = False
    use_cached_catalog: bool = False
    usecacheonfailure: bool = True
    noop: bool = False
    pluginsync: bool = True
    supported_checksum_types: list[str] = field(
        default_factory=lambda: list(DEFAULT_CHECKSUM_TYPES),
    )

    # 服务端
    server: str = "puppet"
    server_port: int = 8140
    server_list: str = ""
    probe_timeout: float = 10.0
    http_keepalive_timeout: float = 4.0

    # 钩子
    prerun_command: str = ""
    postrun_command: str = ""

    # 报告
    summarize: bool = False
    report: bool = True
    lastrunfile: str = "state/last_run_summary.yaml"
    lastrunfile_mode: str = "0640"
    report_dir: str = "state/reports"
    report_url: str = ""

    # 本地状态文件
    classfile: str = "state/classes.txt"
    resourcefile: str = "state/resources.txt"
    catalog_dir: str = "data/catalogs"
    catalog_cache_dir: str = "state/client_data/catalog"
    nodes_file: str = "data/nodes.yml"

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)
    # 由配置文件显式设置的键
    explicit: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_file(cls, path: str = "configs/agent.yml") -> Config:
        """从 YAML 文件加载配置

        参数:
            path: 配置文件路径；文件不存在时返回全部默认值

        返回:
            Config，其中 explicit 记录文件里出现过的已知键，
            未知键原样放入 extra

        异常:
            ConfigError: 文件无法读取、YAML 格式错误或字段值类型不对
        """
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"无法读取配置文件: {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in fields(cls)} - {"extra", "explicit"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        if isinstance(matched.get("server_list"), list):
            matched["server_list"] = ",".join(str(s) for s in matched["server_list"])
        if isinstance(matched.get("supported_checksum_types"), str):
            matched["supported_checksum_types"] = [
                t.strip() for t in matched["supported_checksum_types"].split(",")
                if t.strip()
            ]
        try:
            for key, kind in _NUMERIC_FIELDS.items():
                if key in matched:
                    matched[key] = kind(matched[key])
            cfg = cls(**matched)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"配置文件内容无效: {path}: {e}") from e
        cfg.extra = extra
        cfg.explicit = frozenset(matched)
        return cfg

    def with_overrides(self, **overrides: object) -> Config:
        """返回应用覆盖值后的新配置，原配置不变

        覆盖的键计入 explicit，与配置文件中显式设置同等对待。

        示例:
            >>> cfg.with_overrides(noop=True, environment="staging")
        """
        return replace(
            self, **overrides, explicit=self.explicit | frozenset(overrides),
        )

    def is_explicit(self, key: str) -> bool:
        return key in self.explicit

    @property
    def node_name_value(self) -> str:
        """节点名，未配置时取本机 FQDN"""
        return self.node_name or socket.getfqdn()

    @property
    def checksum_type(self) -> str:
        """目录请求中的 checksum_type 参数"""
        return ".".join(self.supported_checksum_types)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "configs/agent.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
