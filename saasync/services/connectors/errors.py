"""
Connector Errors
Exception taxonomy shared by every provider integration

RETRY POLICY:
- RateLimitError: always retryable, carries retry-after
- ApiError: retryable iff upstream returned 5xx, 429 or 408
- Everything else: not retryable unless constructed with retryable=True

SECURITY: messages never include signature values, secrets or raw bodies.
"""
from datetime import datetime
from typing import Any, List, Optional


class ConnectorError(Exception):
    """Base class for connector failures."""

    def __init__(self, message: str, connector: Optional[str] = None, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.connector = connector
        self.retryable = retryable


class WebhookVerificationError(ConnectorError):
    """Webhook signature could not be verified."""

    def __init__(self, reason: str = "Invalid signature", connector: Optional[str] = None):
        super().__init__(f"Webhook verification failed: {reason}", connector, retryable=False)
        self.reason = reason


class RateLimitError(ConnectorError):
    """Upstream rate limit hit."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        connector: Optional[str] = None,
        retry_after_seconds: Optional[float] = None,
        reset_at: Optional[datetime] = None,
    ):
        super().__init__(message, connector, retryable=True)
        self.retry_after_seconds = retry_after_seconds
        self.reset_at = reset_at


class ApiError(ConnectorError):
    """Upstream HTTP failure."""

    RETRYABLE_STATUS_CODES = {408, 429}

    def __init__(
        self,
        message: str,
        status_code: int,
        connector: Optional[str] = None,
        response: Any = None,
    ):
        retryable = status_code >= 500 or status_code in self.RETRYABLE_STATUS_CODES
        super().__init__(message, connector, retryable=retryable)
        self.status_code = status_code
        self.response = response


class EntityNotFoundError(ConnectorError):
    """Referenced entity does not exist upstream."""

    def __init__(self, external_id: str, resource_type: str, connector: Optional[str] = None):
        super().__init__(f"{resource_type} {external_id} not found", connector, retryable=False)
        self.external_id = external_id
        self.resource_type = resource_type


class NormalizationError(ConnectorError):
    """Provider payload for a known resource is malformed."""

    def __init__(
        self,
        message: str,
        resource_type: str,
        field: Optional[str] = None,
        connector: Optional[str] = None,
    ):
        super().__init__(message, connector, retryable=False)
        self.resource_type = resource_type
        self.field = field


class ConfigurationError(ConnectorError):
    """Invalid or missing credentials/settings. Blocks the operation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        connector: Optional[str] = None,
        errors: Optional[List[Any]] = None,
    ):
        super().__init__(message, connector, retryable=False)
        self.field = field
        self.errors = errors or []


def is_retryable_error(error: BaseException) -> bool:
    if isinstance(error, ConnectorError):
        return error.retryable
    return False


def get_retry_after_seconds(error: BaseException) -> Optional[float]:
    if isinstance(error, RateLimitError):
        return error.retry_after_seconds
    return None
