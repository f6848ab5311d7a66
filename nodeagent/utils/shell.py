"""钩子命令执行

prerun_command / postrun_command 按参数向量执行，不经过 shell。
子进程调用通过 CommandExecutor 协议注入，测试时替换为 mock。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Protocol

from nodeagent.core.exceptions import ExecutionFailure

logger = logging.getLogger(__name__)

# 错误信息中保留的输出长度
_DETAIL_LIMIT = 500


# =========================================================================
# 执行结果
# =========================================================================

@dataclass
class CommandResult:
    """一次命令执行的退出码与输出"""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    argv: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def detail(self) -> str:
        """失败说明：优先 stderr，其次 stdout"""
        return (self.stderr.strip() or self.stdout.strip())[:_DETAIL_LIMIT]


# =========================================================================
# 执行器
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议；无法启动时抛 OSError / SubprocessError"""

    def execute(
        self, argv: list[str], *, cwd: str | None = None, timeout: float | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """在本机直接启动子进程"""

    def execute(
        self, argv: list[str], *, cwd: str | None = None, timeout: float | None = None,
    ) -> CommandResult:
        proc = subprocess.run(
            argv, capture_output=True, text=True,
            cwd=cwd, check=False, timeout=timeout,
        )
        return CommandResult(proc.returncode, proc.stdout, proc.stderr, list(argv))


_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """当前默认执行器"""
    return _executor


def set_executor(executor: CommandExecutor) -> None:
    """替换默认执行器（测试或远程执行）"""
    global _executor  # noqa: PLW0603
    _executor = executor


# =========================================================================
# 入口
# =========================================================================

def split_command(cmd: str) -> list[str]:
    """把配置中的命令字符串拆成参数向量

    示例:
        >>> split_command("/usr/bin/notify \"run done\" -v")
        ['/usr/bin/notify', 'run done', '-v']

    异常:
        ValueError: 引号不配对
    """
    return shlex.split(cmd)


def execute_command(
    argv: list[str], *,
    executor: CommandExecutor | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """执行命令并要求成功退出

    参数:
        argv: 参数向量，不经过 shell
        executor: 执行器，默认取 get_executor()
        timeout: 超时秒数，None 表示不限

    返回:
        CommandResult（returncode 恒为 0）

    异常:
        ExecutionFailure: 非零退出（信息附 stderr 或 stdout 摘要）、
            无法启动或超时
    """
    executor = executor or get_executor()
    logger.debug("执行命令: %s", argv)
    try:
        result = executor.execute(argv, timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        raise ExecutionFailure(f"无法执行 {argv[0]}: {e}") from e
    if not result.success:
        message = f"命令 {' '.join(argv)} 退出码 {result.returncode}"
        if result.detail:
            message += f": {result.detail}"
        raise ExecutionFailure(message)
    return result
