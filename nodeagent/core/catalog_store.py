"""本地目录源 - YAML 文件目录 + 本地目录缓存

两层存储：
  - terminus: catalog_dir 下按环境/节点组织的目录文件（本地编译产物）
  - cache:    catalog_cache_dir 下最近一次成功获取的目录

find 选项语义：
  - ignore_terminus=True:   只查缓存
  - ignore_cache=True:      跳过缓存读取，直接查 terminus
  - ignore_cache_save=True: terminus 命中后不回写缓存（noop 模式）
  - server / server_port:   本地文件源不访问服务端，忽略
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from nodeagent.core.exceptions import CatalogRetrievalError
from nodeagent.core.models import Catalog
from nodeagent.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)


def _safe_key(key: str) -> str:
    # 避免路径穿越
    return key.replace("/", "_").replace("..", "_")


class YamlCatalogCache:
    """本地目录缓存"""

    def __init__(self, cache_dir: str) -> None:
        self.cache_dir = Path(cache_dir)

    def _path(self, name: str) -> Path:
        return self.cache_dir / f"{_safe_key(name)}.yaml"

    def get(self, name: str) -> Catalog | None:
        data = load_yaml(self._path(name))
        if not data:
            return None
        return Catalog.from_dict(data)

    def put(self, catalog: Catalog) -> str:
        path = self._path(catalog.name)
        save_yaml(path, catalog.to_dict(), mode=0o640)
        logger.debug("目录已缓存: %s -> %s", catalog.name, path)
        return str(path)


class YamlCatalogSource:
    """从本地 YAML 文件读取目录的目录源（不接收事实上传）"""

    supports_fact_upload = False

    def __init__(
        self, catalog_dir: str, cache: YamlCatalogCache,
        *, default_environment: str = "production",
    ) -> None:
        self.catalog_dir = Path(catalog_dir)
        self.cache = cache
        self.default_environment = default_environment

    def _terminus_find(self, name: str, environment: str) -> Catalog | None:
        candidates = [
            self.catalog_dir / _safe_key(environment) / f"{_safe_key(name)}.yaml",
            self.catalog_dir / f"{_safe_key(name)}.yaml",
        ]
        for path in candidates:
            try:
                data = load_yaml(path)
            except (OSError, ValueError, yaml.YAMLError) as e:
                raise CatalogRetrievalError(f"无法读取目录文件 {path}: {e}") from e
            if data:
                data.setdefault("name", name)
                data.setdefault("environment", environment)
                return Catalog.from_dict(data)
        return None

    def find(self, name: str, **options: Any) -> Catalog | None:
        if options.get("ignore_terminus"):
            return self.cache.get(name)
        if not options.get("ignore_cache"):
            cached = self.cache.get(name)
            if cached is not None:
                return cached

        environment = options.get("environment") or self.default_environment
        catalog = self._terminus_find(name, environment)
        if catalog is None:
            return None
        catalog.transaction_uuid = options.get("transaction_uuid", "") or catalog.transaction_uuid
        catalog.job_id = options.get("job_id", "") or catalog.job_id
        if not options.get("ignore_cache_save"):
            self.cache.put(catalog)
        return catalog
