"""事实收集与上传编码

完整的事实收集由外部组件负责，这里只提供一份本机基础事实，
以及目录请求中上传事实时使用的编码。
"""

from __future__ import annotations

import json
import platform
import socket
from typing import Any
from urllib.parse import quote

from nodeagent import __version__

FACTS_FORMAT = "json"


class LocalFactSource:
    """本机基础事实"""

    def find(self, name: str) -> dict[str, Any]:
        return {
            "certname": name,
            "hostname": socket.gethostname(),
            "fqdn": socket.getfqdn(),
            "kernel": platform.system(),
            "kernelrelease": platform.release(),
            "architecture": platform.machine(),
            "python_version": platform.python_version(),
            "agent_version": __version__,
        }


def facts_for_uploading(facts: dict[str, Any]) -> dict[str, str]:
    """编码事实，作为目录请求的 facts / facts_format 参数"""
    text = json.dumps(facts, sort_keys=True, ensure_ascii=False, default=str)
    return {"facts": quote(text, safe=""), "facts_format": FACTS_FORMAT}
