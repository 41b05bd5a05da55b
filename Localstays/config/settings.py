"""
统一配置管理

Settings for the entitlement / advertising-slot engine.
提供类型安全的配置访问和环境变量支持
标准化命名规范：LS_{MODULE}_{KEY}
"""

import os
from typing import Any, Dict, Optional
from dataclasses import dataclass, field, asdict

from dotenv import load_dotenv

load_dotenv()


@dataclass
class LoggingConfig:
    """日志配置"""
    global_level: str = "INFO"
    console_level: str = "INFO"
    file_level: str = "DEBUG"
    log_dir: str = "logs"

    # 模块级别配置
    module_levels: Dict[str, str] = field(default_factory=lambda: {
        "billing": "INFO",
        "entitlement": "INFO",
        "listing": "INFO",
        "database": "WARNING",
        "scheduler": "INFO",
    })

    console_format: str = "%(name)s - %(message)s"
    file_format: str = "%(asctime)s | %(name)s | [%(levelname)s] | %(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
    datetime_format: str = "%Y-%m-%d %H:%M:%S"


@dataclass
class DatabaseConfig:
    """数据库配置"""
    url: str = ""
    echo: bool = False

    def __post_init__(self):
        self.url = os.getenv("DATABASE_URL", self.url)
        self.echo = os.getenv("LS_DB_ECHO", str(self.echo)).lower() == "true"


@dataclass
class EntitlementConfig:
    """广告位 / 订阅权益配置

    所有参数支持通过 LS_ENTITLEMENT_* 环境变量覆盖。
    """
    max_commission_slots_per_host: int = 100
    max_review_compensation_days: int = 60
    expiry_warning_days: int = 7
    expiring_soon_days: int = 7
    feature_flag_ttl_seconds: int = 300
    feature_flags_path: str = "config/feature_flags.yaml"

    def __post_init__(self):
        self.max_commission_slots_per_host = int(os.getenv(
            "LS_ENTITLEMENT_MAX_COMMISSION_SLOTS", str(self.max_commission_slots_per_host)
        ))
        self.max_review_compensation_days = int(os.getenv(
            "LS_ENTITLEMENT_MAX_COMPENSATION_DAYS", str(self.max_review_compensation_days)
        ))
        self.expiry_warning_days = int(os.getenv(
            "LS_ENTITLEMENT_EXPIRY_WARNING_DAYS", str(self.expiry_warning_days)
        ))
        self.expiring_soon_days = int(os.getenv(
            "LS_ENTITLEMENT_EXPIRING_SOON_DAYS", str(self.expiring_soon_days)
        ))
        self.feature_flag_ttl_seconds = int(os.getenv(
            "LS_ENTITLEMENT_FLAG_TTL_SECONDS", str(self.feature_flag_ttl_seconds)
        ))
        self.feature_flags_path = os.getenv("LS_ENTITLEMENT_FLAGS_PATH", self.feature_flags_path)


@dataclass
class BillingConfig:
    """Stripe 计费配置"""
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    default_sort_order: int = 99

    def __post_init__(self):
        self.stripe_secret_key = os.getenv("STRIPE_SECRET_KEY", self.stripe_secret_key or "") or None
        self.stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET", self.stripe_webhook_secret or "") or None
        self.default_sort_order = int(os.getenv("LS_BILLING_DEFAULT_SORT_ORDER", str(self.default_sort_order)))


@dataclass
class NotificationConfig:
    """系统 Webhook 通知配置（SYSTEM_WEBHOOK_*）"""
    webhook_url: str = ""
    webhook_secret: str = ""
    enabled: bool = False
    timeout_seconds: float = 5.0
    max_retries: int = 2

    def __post_init__(self):
        self.webhook_url = os.getenv("SYSTEM_WEBHOOK_URL", self.webhook_url).strip()
        self.webhook_secret = os.getenv("SYSTEM_WEBHOOK_SECRET", self.webhook_secret).strip()
        self.enabled = os.getenv("SYSTEM_WEBHOOK_ENABLED", str(self.enabled)).lower() == "true"
        self.timeout_seconds = float(os.getenv("SYSTEM_WEBHOOK_TIMEOUT", str(self.timeout_seconds)))
        self.max_retries = int(os.getenv("SYSTEM_WEBHOOK_MAX_RETRIES", str(self.max_retries)))

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.webhook_url) and bool(self.webhook_secret)

@dataclass
class Settings:
    """
    统一配置类

    使用 dataclass 提供类型安全的配置访问
    支持从环境变量加载
    """
    project_dir: str = field(default_factory=lambda: os.path.abspath(
        os.path.join(os.path.dirname(__file__), "..")
    ))

    # 子配置
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    entitlement: EntitlementConfig = field(default_factory=EntitlementConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    def __post_init__(self):
        # 从环境变量覆盖日志配置
        self.logging.global_level = os.getenv("LS_INFRA_LOG_LEVEL", os.getenv("LOG_LEVEL", self.logging.global_level))
        self.logging.console_level = os.getenv("CONSOLE_LOG_LEVEL", self.logging.console_level)
        self.logging.file_level = os.getenv("FILE_LOG_LEVEL", self.logging.file_level)
        self.logging.log_dir = os.getenv("LS_PATH_LOGS", self.logging.log_dir)

        # 模块级日志级别
        for module in list(self.logging.module_levels.keys()):
            level = os.getenv(f"LS_LOG_{module.upper()}")
            if level:
                self.logging.module_levels[module] = level.upper()

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        data = asdict(self)
        data["billing"].pop("stripe_secret_key", None)
        data["billing"].pop("stripe_webhook_secret", None)
        data["notifications"].pop("webhook_secret", None)
        return data


# 全局配置实例
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """获取全局配置实例"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """设置全局配置实例（主要用于测试）"""
    global _settings
    _settings = settings


def reset_settings() -> None:
    """重置全局配置，下次访问时重新从环境变量加载"""
    global _settings
    _settings = None
