"""CLI - 代理运行命令"""

from __future__ import annotations

import sys

import click
import yaml

from nodeagent.core.exceptions import (
    AgentError,
    NoFunctionalServerError,
    ValidationError,
)

EXIT_NO_RESULT = 1
EXIT_NO_SERVER = 3


def register(group: click.Group) -> None:
    group.add_command(run)


@click.command()
@click.option("--config", "-c", default="configs/agent.yml", help="配置文件路径")
@click.option(
    "--catalog", "catalog_file", default="",
    type=click.Path(dir_okay=False), help="直接应用指定目录文件，不访问服务端",
)
@click.option("--noop", is_flag=True, help="只模拟，不做实际修改")
@click.option(
    "--use-cached-catalog", is_flag=True, help="优先使用本地缓存目录",
)
@click.option("--pluginsync/--no-pluginsync", default=None, help="是否同步插件")
@click.option("--environment", "-e", default="", help="代理环境")
def run(
    config: str, catalog_file: str, noop: bool,
    use_cached_catalog: bool, pluginsync: bool | None, environment: str,
) -> None:
    """执行一次代理运行"""
    from nodeagent.core.config import init_config
    from nodeagent.core.models import Catalog, RunOptions
    from nodeagent.services.container import ServiceContainer
    from nodeagent.services.orchestrator import RunOrchestrator
    from nodeagent.utils.yaml_io import load_yaml

    try:
        cfg = init_config(config)
        overrides: dict[str, object] = {}
        if noop:
            overrides["noop"] = noop
        if use_cached_catalog:
            overrides["use_cached_catalog"] = use_cached_catalog
        if pluginsync is not None:
            overrides["pluginsync"] = pluginsync
        if environment:
            overrides["environment"] = environment
        if overrides:
            cfg = cfg.with_overrides(**overrides)

        catalog = None
        if catalog_file:
            try:
                data = load_yaml(catalog_file)
            except (OSError, ValueError, yaml.YAMLError) as e:
                raise ValidationError(f"无法读取目录文件 {catalog_file}: {e}") from e
            if not data:
                raise click.BadParameter(f"目录文件为空或不存在: {catalog_file}")
            catalog = Catalog.from_dict(data)

        orchestrator = RunOrchestrator(ServiceContainer(config=cfg))
        status = orchestrator.run(RunOptions(catalog=catalog))
    except NoFunctionalServerError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_NO_SERVER)
    except AgentError as e:
        click.echo(f"运行失败: {e}", err=True)
        sys.exit(EXIT_NO_RESULT)

    sys.exit(EXIT_NO_RESULT if status is None else status)
