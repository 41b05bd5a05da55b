"""
配置模块

集中管理全局配置（Settings 及其子配置）。
"""

from .settings import (
    Settings,
    LoggingConfig,
    DatabaseConfig,
    EntitlementConfig,
    BillingConfig,
    NotificationConfig,
    get_settings,
    set_settings,
    reset_settings,
)

__all__ = [
    "Settings",
    "LoggingConfig",
    "DatabaseConfig",
    "EntitlementConfig",
    "BillingConfig",
    "NotificationConfig",
    "get_settings",
    "set_settings",
    "reset_settings",
]
