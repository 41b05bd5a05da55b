"""
Common Schemas - 通用响应结构
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict


class BaseSchema(BaseModel):
    """ORM 友好的基础 Schema；枚举按值输出，日期为 naive UTC"""
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        validate_assignment=True,
    )


class ErrorResponse(BaseModel):
    """错误响应"""
    code: str = Field(..., description="机器可读的错误码")
    message: str = Field(..., description="错误信息")
    details: Optional[Dict[str, Any]] = Field(None, description="附加信息")
