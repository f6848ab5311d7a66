"""网络工具 - URL 安全校验、状态探测客户端、连接池"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from urllib.parse import urlparse

from nodeagent.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    异常:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


@dataclass(frozen=True)
class ProbeResponse:
    """探测响应"""

    status: int
    reason: str = ""
    body: str = ""


class HttpProbeClient:
    """面向单个 (host, port) 的轻量 HTTP GET 客户端"""

    def __init__(
        self, host: str, port: int, *,
        timeout: float = 10.0, scheme: str = "https",
    ) -> None:
        self.base_url = f"{scheme}://{host}:{port}"
        validate_url_scheme(self.base_url, context="probe")
        self.timeout = timeout

    def get(self, path: str) -> ProbeResponse:
        """发送 GET 请求

        参数:
            path: 以 / 开头的请求路径，如 /status/v1/simple/master

        返回:
            ProbeResponse；4xx / 5xx 也作为响应返回，由调用方判断是否可用

        异常:
            OSError: 连接被拒绝、超时、DNS 解析失败等连接类错误
        """
        url = f"{self.base_url}{path}"
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp:  # nosec B310
                body = resp.read().decode("utf-8", errors="replace")
                return ProbeResponse(resp.status, resp.reason or "", body)
        except urllib.error.HTTPError as e:
            return ProbeResponse(e.code, str(e.reason or ""), "")


class ConnectionPool:
    """单次运行内复用的探测客户端池，运行结束时关闭"""

    def __init__(self, keepalive_timeout: float = 4.0, *, scheme: str = "https") -> None:
        self.keepalive_timeout = keepalive_timeout
        self.scheme = scheme
        self._clients: dict[tuple[str, int], HttpProbeClient] = {}
        self.closed = False

    def client(self, host: str, port: int, *, timeout: float = 10.0) -> HttpProbeClient:
        """按 (host, port) 复用客户端；首次请求时的 timeout 生效"""
        key = (host, port)
        if key not in self._clients:
            self._clients[key] = HttpProbeClient(
                host, port, timeout=timeout, scheme=self.scheme,
            )
        return self._clients[key]

    def close(self) -> None:
        if self._clients:
            logger.debug("关闭连接池: %d 个客户端", len(self._clients))
        self._clients.clear()
        self.closed = True
