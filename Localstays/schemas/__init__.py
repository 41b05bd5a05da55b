"""
Pydantic Schemas
"""

from .common import BaseSchema, ErrorResponse

__all__ = ["BaseSchema", "ErrorResponse"]
