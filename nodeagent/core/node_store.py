"""本地节点定义源 - 从 nodes.yml 读取节点环境与分类

文件格式:
    nodes:
      web01.example.com:
        environment: staging
        classes: [nginx]
        parameters: {role: web}
"""

from __future__ import annotations

import logging
from typing import Any

from nodeagent.core.models import NodeData
from nodeagent.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


class YamlNodeSource:
    """本地节点注册表"""

    def __init__(self, nodes_file: str) -> None:
        self.nodes_file = nodes_file

    def find(self, name: str, **options: Any) -> NodeData | None:
        nodes = load_yaml(self.nodes_file).get("nodes") or {}
        entry = nodes.get(name)
        if entry is None:
            logger.debug("节点未注册: %s (%s)", name, self.nodes_file)
            return None
        environment = entry.get("environment") or options.get("configured_environment") or ""
        return NodeData(
            name=name,
            environment=str(environment),
            classes=[str(c) for c in entry.get("classes") or []],
            parameters=dict(entry.get("parameters") or {}),
        )
