"""Custom exception classes for the application."""

from enum import Enum
from typing import Optional


class BaseAppException(Exception):
    """Base exception class for all application exceptions."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return type(self).__name__


class AuthenticationError(BaseAppException):
    """Raised when an inbound event signature is missing, malformed or wrong."""
    pass


class ConfigurationError(BaseAppException):
    """Raised when there's a configuration error."""
    pass


class IdentityConflictError(BaseAppException):
    """Raised when an external identifier is claimed by two local entities."""
    pass


class NotFoundError(BaseAppException):
    """Raised when an operator addresses a local entity that does not exist."""
    pass


class ValidationError(BaseAppException):
    """Raised when a payload or request has missing or malformed fields."""
    pass


class PersistenceError(BaseAppException):
    """Raised when a local store transaction fails."""
    pass


class LockTimeoutError(PersistenceError):
    """Raised when a per-variant lock cannot be acquired in time."""
    pass


class RemoteErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    UNAVAILABLE = "unavailable"


RETRYABLE_KINDS = {RemoteErrorKind.RATE_LIMITED, RemoteErrorKind.UNAVAILABLE}


class RemotePlatformError(BaseAppException):
    """Raised when the Shopify API call fails.

    ``kind`` classifies the failure; only rate-limited and unavailable
    failures are worth retrying.
    """

    def __init__(
        self,
        message: str,
        kind: RemoteErrorKind = RemoteErrorKind.UNAVAILABLE,
        details: dict = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, details)
        self.error_kind = RemoteErrorKind(kind)
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.error_kind in RETRYABLE_KINDS

    @property
    def kind(self) -> str:
        return f"RemotePlatformError.{self.error_kind.value}"
