"""代理异常

所有业务异常继承 AgentError，CLI 层可据此映射退出码并输出友好提示。
只有 NoFunctionalServerError 会穿透运行流程，其余均在阶段内被记录并恢复。
"""

from __future__ import annotations


class AgentError(Exception):
    """代理基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(AgentError):
    """代理配置无法解析"""

    code = "CONFIG_ERROR"


class ValidationError(AgentError):
    """目录、服务端列表等输入不合法；details 列出具体条目"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ExecutionFailure(AgentError):
    """外部命令执行失败（非零退出或无法启动）"""

    code = "EXECUTION_FAILURE"


class CatalogRetrievalError(AgentError):
    """目录获取失败"""

    code = "CATALOG_RETRIEVAL_ERROR"


class NoFunctionalServerError(AgentError):
    """server_list 中没有可用的服务端"""

    code = "NO_FUNCTIONAL_SERVER"
