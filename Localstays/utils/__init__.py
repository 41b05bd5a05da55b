"""
通用工具模块
"""

from .exceptions import (
    BaseAppException,
    ValidationError,
    MalformedEventError,
    NotFoundError,
    ConflictError,
    StateError,
    DatabaseException,
    ConfigException,
    APIException,
)
from .timeutils import utc_now, to_naive_utc, from_timestamp

__all__ = [
    "BaseAppException",
    "ValidationError",
    "MalformedEventError",
    "NotFoundError",
    "ConflictError",
    "StateError",
    "DatabaseException",
    "ConfigException",
    "APIException",
    "utc_now",
    "to_naive_utc",
    "from_timestamp",
]
