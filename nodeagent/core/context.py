"""运行上下文 - 显式传递的可覆盖设置

服务端地址、端口和连接池在故障转移后需要在本次运行内被覆盖，
这里用上下文对象 + 作用域覆盖替代对全局设置的直接赋值。
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any

from nodeagent.core.exceptions import ValidationError

if TYPE_CHECKING:
    from nodeagent.core.config import Config
    from nodeagent.utils.net import ConnectionPool


@dataclass
class RunContext:
    """当前生效的服务端设置"""

    server: str
    server_port: int
    http_pool: ConnectionPool | None = None

    @classmethod
    def from_config(cls, config: Config) -> RunContext:
        return cls(server=config.server, server_port=config.server_port)

    @contextmanager
    def override(self, **values: Any) -> Iterator[RunContext]:
        """作用域内覆盖指定字段，任何退出路径都恢复原值"""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValidationError(f"未知的上下文字段: {', '.join(unknown)}")
        saved = {k: getattr(self, k) for k in values}
        for key, value in values.items():
            setattr(self, key, value)
        try:
            yield self
        finally:
            for key, value in saved.items():
                setattr(self, key, value)
