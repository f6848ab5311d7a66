"""运行编排模块

- models.py: 运行状态与常量
- steps.py: 各步骤实现
- orchestrator.py: 协调器
"""

from nodeagent.services.orchestrator.models import MAX_ENVIRONMENT_REFETCHES, RunState
from nodeagent.services.orchestrator.orchestrator import RunOrchestrator
from nodeagent.services.orchestrator.steps import RunSteps, should_pluginsync

__all__ = [
    "MAX_ENVIRONMENT_REFETCHES",
    "RunOrchestrator",
    "RunState",
    "RunSteps",
    "should_pluginsync",
]
