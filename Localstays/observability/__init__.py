"""
Localstays 可观测性模块

日志配置与上下文追踪。
"""

from .logging import (
    LogModule,
    LogContext,
    ContextFilter,
    configure_logging,
    current_context,
    get_logger,
    get_module_logger,
)

__all__ = [
    "LogModule",
    "LogContext",
    "ContextFilter",
    "configure_logging",
    "current_context",
    "get_logger",
    "get_module_logger",
]
