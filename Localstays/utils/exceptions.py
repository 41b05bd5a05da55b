"""
Unified Exception Hierarchy for Localstays
"""


class BaseAppException(Exception):
    """Base exception for all application-specific errors"""
    code = "APP_ERROR"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(BaseAppException):
    """Malformed input (bad plan id, out-of-range compensation inputs)"""
    code = "VALIDATION_ERROR"


class MalformedEventError(ValidationError):
    """Billing envelope that can never succeed; dropped without retry"""
    code = "MALFORMED_EVENT"


class NotFoundError(BaseAppException):
    """No subscription / slot / listing for the given key"""
    code = "NOT_FOUND"


class ConflictError(BaseAppException):
    """Lost a reuse race, stale version, or slot already in the target model"""
    code = "CONFLICT"


class StateError(BaseAppException):
    """Operation invalid for the current subscription or slot status"""
    code = "INVALID_STATE"


class DatabaseException(BaseAppException):
    """Fatal database errors (connection failed, table missing)"""
    code = "DATABASE_ERROR"


class ConfigException(BaseAppException):
    """Configuration errors (missing env vars, invalid YAML)"""
    code = "CONFIG_ERROR"


class APIException(BaseAppException):
    """External API call failures (Stripe)"""
    code = "EXTERNAL_API_ERROR"
