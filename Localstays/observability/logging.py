"""
统一日志配置模块

`configure_logging(settings)` 是唯一的初始化入口（API 进程与 scripts/ 下的批处理共用）。
基于标准 logging + dictConfig：

- stdout 输出 + logs/app 下的轮转文件（app.log / error.log）
- billing.log：Stripe 事件处理的独立审计轨迹，便于按 event_id 排查重放
- 上下文字段注入：host_id / listing_id / event_id / request_id
- LogModule 业务分类，对应 "Localstays.<module>" logger
"""

import contextvars
import logging
import logging.config
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from Localstays.config.settings import LoggingConfig, get_settings


LOG_DIR_ENV = "LS_PATH_LOGS"
CONSOLE_LEVEL_ENV = "CONSOLE_LOG_LEVEL"
FILE_LEVEL_ENV = "FILE_LOG_LEVEL"
GLOBAL_LEVEL_ENV = "LS_INFRA_LOG_LEVEL"
LOGGING_ENABLED_ENV = "LS_LOGGING_ENABLED"
LOGGING_FORCE_ENV = "LS_LOGGING_FORCE_CONFIG"

ROOT_LOGGER = "Localstays"
ROTATE_BYTES = 10 * 1024 * 1024

# third-party loggers we route explicitly; everything else falls through to root
LIBRARY_LOG_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
    "stripe": "WARNING",
    "httpx": "WARNING",
    "sqlalchemy.engine": "WARNING",
}


class LogModule:
    """日志模块分类常量

    Usage:
        logger = get_module_logger(LogModule.BILLING)
        logger.info("Processing Stripe event batch")
    """
    BILLING = "billing"            # Stripe 事件同步
    ENTITLEMENT = "entitlement"    # 订阅 / 广告位权益
    LISTING = "listing"            # 上架 / 下架编排
    DATABASE = "database"          # 数据库操作
    SCHEDULER = "scheduler"        # 定时清理任务
    SYSTEM = "system"              # 系统级别


CONTEXT_FIELDS = ("host_id", "listing_id", "event_id", "request_id")

_context_vars: Dict[str, contextvars.ContextVar] = {
    name: contextvars.ContextVar(name, default=None) for name in CONTEXT_FIELDS
}


class ContextFilter(logging.Filter):
    """把当前上下文写进 LogRecord，未设置的字段记为 "-" """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, var in _context_vars.items():
            setattr(record, key, var.get() or "-")
        return True


class LogContext:
    """临时设置日志上下文；退出时恢复进入前的值（可嵌套）

    Usage:
        with LogContext(host_id=host_id, event_id=event["id"]):
            ...
    """

    def __init__(self, **fields: Any):
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context field(s): {sorted(unknown)}")
        self._fields = fields
        self._tokens: Dict[str, contextvars.Token] = {}

    def __enter__(self) -> "LogContext":
        for key, value in self._fields.items():
            self._tokens[key] = _context_vars[key].set(value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        for key, token in self._tokens.items():
            _context_vars[key].reset(token)
        self._tokens.clear()
        return False


def current_context() -> Dict[str, Optional[str]]:
    return {key: var.get() for key, var in _context_vars.items()}


def _level(env_name: str, default: str) -> str:
    return os.getenv(env_name, default).upper()


def _file_handler(path: Path, level: Any, backups: int = 5) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "context",
        "filename": str(path),
        "maxBytes": ROTATE_BYTES,
        "backupCount": backups,
        "encoding": "utf-8",
        "filters": ["context"],
    }


def _build_dict_config(config: LoggingConfig) -> Dict[str, Any]:
    """构建 dictConfig 字典"""
    log_dir = Path(os.getenv(LOG_DIR_ENV, config.log_dir)).resolve() / "app"
    log_dir.mkdir(parents=True, exist_ok=True)

    global_level = _level(GLOBAL_LEVEL_ENV, config.global_level)
    context_format = (
        "%(asctime)s | %(name)s | [%(levelname)s] | host=%(host_id)s listing=%(listing_id)s"
        " event=%(event_id)s request=%(request_id)s | %(filename)s:%(lineno)d | %(message)s"
    )
    shared: List[str] = ["console", "app_file", "error_file"]

    loggers: Dict[str, Dict[str, Any]] = {
        name: {"level": level, "handlers": shared, "propagate": False}
        for name, level in LIBRARY_LOG_LEVELS.items()
    }
    loggers[ROOT_LOGGER] = {"level": global_level, "handlers": shared, "propagate": False}

    # module overrides: LS_LOG_<MODULE> > settings.module_levels
    for module, level in config.module_levels.items():
        handlers = shared + ["billing_file"] if module == LogModule.BILLING else shared
        loggers[f"{ROOT_LOGGER}.{module}"] = {
            "level": os.getenv(f"LS_LOG_{module.upper()}", level).upper(),
            "handlers": handlers,
            "propagate": False,
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"context": {"()": ContextFilter}},
        "formatters": {
            "console": {"format": config.console_format, "datefmt": config.datetime_format},
            "context": {"format": context_format, "datefmt": config.datetime_format},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": _level(CONSOLE_LEVEL_ENV, config.console_level),
                "formatter": "console",
                "stream": "ext://sys.stdout",
                "filters": ["context"],
            },
            "app_file": _file_handler(log_dir / "app.log", _level(FILE_LEVEL_ENV, config.file_level)),
            "error_file": _file_handler(log_dir / "error.log", logging.ERROR),
            "billing_file": _file_handler(log_dir / "billing.log", logging.INFO, backups=10),
        },
        "loggers": loggers,
        "root": {"level": global_level, "handlers": shared},
    }


def configure_logging(settings: Optional[LoggingConfig] = None, force: bool = False) -> None:
    """
    统一日志配置入口

    Args:
        settings: 日志配置；None 时取 get_settings().logging
        force: 已有 handlers 时也重新配置（LS_LOGGING_FORCE_CONFIG 同义）
    """
    if os.getenv(LOGGING_ENABLED_ENV, "true").lower() != "true":
        return
    if settings is None:
        settings = get_settings().logging

    force = force or os.getenv(LOGGING_FORCE_ENV, "true").lower() == "true"
    if logging.getLogger().handlers and not force:
        return

    try:
        logging.config.dictConfig(_build_dict_config(settings))
    except (OSError, ValueError) as e:
        # 日志目录不可写等情况下退回 stderr，不阻断启动
        sys.stderr.write(f"Failed to configure logging: {e}\n")
        logging.basicConfig(level=logging.INFO, format=settings.console_format)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_module_logger(module: str) -> logging.Logger:
    """业务模块 Logger，名称为 "Localstays.<module>"，例如 "Localstays.billing" """
    return logging.getLogger(f"{ROOT_LOGGER}.{module}")
