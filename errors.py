"""
Typed failures raised by the storefront components.

main.py maps these to HTTP responses; the components never build responses.
"""
from typing import Dict, List, Optional


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str = "Server error"):
        super().__init__(message)
        self.message = message


class ValidationFailed(StorefrontError):
    """Input rejected; carries a field-level error list."""

    status_code = 400

    def __init__(self, errors: List[Dict[str, str]], message: str = "Invalid input"):
        super().__init__(message)
        self.errors = errors

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationFailed":
        return cls([{"field": field, "message": message}])


class NotFound(StorefrontError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class InvalidTransition(StorefrontError):
    status_code = 409

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        super().__init__(message or f"Cannot move order from {current} to {requested}")
        self.current = current
        self.requested = requested


class DatabaseUnavailable(StorefrontError):
    status_code = 503


class PaymentProviderError(StorefrontError):
    status_code = 502
