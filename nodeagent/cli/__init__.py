"""nodeagent 命令行接口

子命令模块通过 register(main) 挂载到 main 上。
"""

import os

import click

from nodeagent import __version__
from nodeagent.utils.logger import setup_logging


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """nodeagent - 配置管理代理"""
    setup_logging(
        level=os.getenv("NODEAGENT_LOG_LEVEL", "INFO"),
        json_output=os.getenv("NODEAGENT_LOG_JSON", "") == "1",
    )


# 注册子命令
from nodeagent.cli.cmd_run import register as _reg_run  # noqa: E402

_reg_run(main)
