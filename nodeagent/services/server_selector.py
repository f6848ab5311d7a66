"""服务端故障转移选择

按 server_list 顺序逐个探测状态接口，遇到第一个可用端点即停止。
200 与 403 都视为可用：403 说明服务在线只是拒绝了本次检查。
"""

from __future__ import annotations

import http.client
import logging
from typing import TYPE_CHECKING

from nodeagent.core.exceptions import NoFunctionalServerError, ValidationError

if TYPE_CHECKING:
    from nodeagent.core.models import ServerEndpoint
    from nodeagent.core.protocols import ProbeClientFactory

logger = logging.getLogger(__name__)

STATUS_PATH = "/status/v1/simple/master"
FUNCTIONAL_STATUSES = frozenset({200, 403})


class ServerSelector:
    """从候选端点中选出一个可用服务端"""

    def __init__(self, pool: ProbeClientFactory, *, timeout: float = 10.0) -> None:
        self.pool = pool
        self.timeout = timeout

    def select(
        self, endpoints: list[ServerEndpoint], *, server_list: str = "",
    ) -> ServerEndpoint:
        """返回第一个可用端点

        Args:
            endpoints: 按优先级排列的候选端点
            server_list: 原始 server_list 配置文本，用于错误信息

        Raises:
            NoFunctionalServerError: 全部端点都不可用
        """
        for endpoint in endpoints:
            try:
                client = self.pool.client(
                    endpoint.host, endpoint.port, timeout=self.timeout,
                )
                response = client.get(STATUS_PATH)
            except (OSError, http.client.HTTPException, ValidationError) as e:
                logger.debug("无法连接 server_list 中的服务端 %s: %s", endpoint, e)
                continue

            if response.status in FUNCTIONAL_STATUSES:
                logger.debug("从 server_list 选定服务端: %s", endpoint)
                return endpoint
            logger.debug(
                "服务端 %s 不可用: %d %s",
                endpoint, response.status, response.reason,
            )

        listing = server_list or ",".join(str(e) for e in endpoints)
        raise NoFunctionalServerError(
            f"无法从 server_list 中选出可用的服务端: '{listing}'",
        )
