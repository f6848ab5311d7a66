"""nodeagent - 配置管理代理的运行编排核心"""

__version__ = "0.1.0"
