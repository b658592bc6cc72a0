"""
Custom exception hierarchy for outbound integrations and request validation.

Exception Hierarchy:
    IntegrationError (base)
    ├── IntegrationConnectionError  - Network/timeout issues (recoverable)
    ├── IntegrationAPIError         - Remote service returned an error response
    │   └── RateLimitedError        - 429, may carry retry_after
    └── IntegrationConfigError      - Token / id not configured

    ValidationError                 - Input validation failed
    QueryTimeoutError               - DuckDB query exceeded its timeout
"""
from typing import Any, Optional


class IntegrationError(Exception):
    """Base exception for WooCommerce, GoHighLevel, Notion and LLM failures."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class IntegrationConnectionError(IntegrationError):
    """
    Network-related errors (timeout, connection refused, etc.).

    These are typically recoverable with retry.
    """

    def __init__(self, message: str, details: str = None, retry_after: float = None):
        super().__init__(message, details)
        self.retry_after = retry_after


class IntegrationAPIError(IntegrationError):
    """Remote API returned a status >= 400."""

    def __init__(
        self,
        message: str,
        details: str = None,
        status_code: int = None,
        body: Any = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.body = body


class RateLimitedError(IntegrationAPIError):
    """Remote API answered 429 Too Many Requests."""

    def __init__(self, message: str, details: str = None, retry_after: Optional[float] = None):
        super().__init__(message, details, status_code=429)
        self.retry_after = retry_after


class IntegrationConfigError(IntegrationError):
    """A required token or identifier is not configured."""


class ValidationError(Exception):
    """
    Input validation failed.

    `message` is the user-facing text returned in the 400 response.
    """

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


class QueryTimeoutError(Exception):
    """
    Database query exceeded timeout.

    Indicates a long-running query that should be investigated:
    - Missing index
    - Too much data being scanned
    """

    def __init__(self, query: str, timeout: float, details: str = None):
        self.query = query[:200] + "..." if len(query) > 200 else query
        self.timeout = timeout
        self.details = details
        message = f"Query timed out after {timeout}s"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)

    def __str__(self) -> str:
        return f"QueryTimeoutError: Query timed out after {self.timeout}s - {self.query}"
