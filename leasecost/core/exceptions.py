from typing import Optional, Dict, Any


class LeaseCostError(Exception):
    """Base exception for all leasecost errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class AdapterError(LeaseCostError):
    """Raised when the cost query collaborator fails."""
    def __init__(self, message: str, code: str = "adapter_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class ConfigurationError(LeaseCostError):
    """Raised when a query or the application configuration is invalid."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)
