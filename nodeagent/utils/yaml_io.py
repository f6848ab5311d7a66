"""YAML 状态文件读写

配置、节点定义、目录缓存和运行摘要都以 YAML 落盘。
写入一律走 atomic_write，读取对缺失或空文件返回空字典。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 单个 YAML 文件读取上限 (10MB)
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str, *, mode: int | None = None) -> None:
    """写入同目录临时文件后 os.replace 到目标位置

    mode 在替换前设置到临时文件上，目标文件从不以默认权限出现。
    任何失败都会删除临时文件并重新抛出 OSError。
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp",
    )
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            tmp.chmod(mode)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 映射

    参数:
        path: 文件路径

    返回:
        解析得到的 dict；缺失、空文件或顶层不是映射时返回 {}

    异常:
        ValueError: 文件超过 MAX_YAML_SIZE
        yaml.YAMLError: 格式错误
        OSError: 读取失败

    示例:
        >>> load_yaml("state/last_run_summary.yaml").get("version", {})
    """
    p = Path(path)
    if not p.is_file():
        return {}

    size = p.stat().st_size
    if size > MAX_YAML_SIZE:
        raise ValueError(f"YAML 文件过大: {p} ({size} > {MAX_YAML_SIZE} 字节)")

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as e:
        logger.error("读取 YAML 失败 %s: %s", p, e)
        raise

    if data is None:
        return {}
    if isinstance(data, dict):
        return data
    logger.warning("%s 顶层为 %s 而非映射，按空处理", p, type(data).__name__)
    return {}


def dump_yaml(data: Any) -> str:
    """块格式、保持键顺序、不转义中文"""
    return yaml.safe_dump(
        data, default_flow_style=False, allow_unicode=True, sort_keys=False,
    )


def save_yaml(path: str | Path, data: Any, *, mode: int | None = None) -> None:
    """序列化后原子写入，失败时记录日志并重新抛出"""
    try:
        atomic_write(Path(path), dump_yaml(data), mode=mode)
    except (yaml.YAMLError, OSError) as e:
        logger.error("写入 YAML 失败 %s: %s", path, e)
        raise
