"""
Tests for core.exceptions module.
"""
from core.exceptions import (
    IntegrationError,
    IntegrationConnectionError,
    IntegrationAPIError,
    IntegrationConfigError,
    RateLimitedError,
    ValidationError,
    QueryTimeoutError,
)


class TestIntegrationError:
    """Tests for base IntegrationError exception."""

    def test_message_only(self):
        """Error with message only."""
        error = IntegrationError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details is None

    def test_message_with_details(self):
        """Error with message and details."""
        error = IntegrationError("Notion request failed", "HTTP 502")
        assert str(error) == "Notion request failed: HTTP 502"


class TestIntegrationSubclasses:
    """Tests for the integration error family."""

    def test_connection_error_retry_after(self):
        error = IntegrationConnectionError("Timed out", retry_after=5)
        assert isinstance(error, IntegrationError)
        assert error.retry_after == 5

    def test_api_error_carries_status_and_body(self):
        error = IntegrationAPIError("Bad request", status_code=400, body={"message": "nope"})
        assert isinstance(error, IntegrationError)
        assert error.status_code == 400
        assert error.body == {"message": "nope"}

    def test_rate_limited_is_429(self):
        """RateLimitedError is an API error with status 429."""
        error = RateLimitedError("Slow down", retry_after=2.5)
        assert isinstance(error, IntegrationAPIError)
        assert error.status_code == 429
        assert error.retry_after == 2.5

    def test_config_error(self):
        assert isinstance(IntegrationConfigError("NOTION_TOKEN missing"), IntegrationError)


class TestValidationError:
    """Tests for ValidationError exception."""

    def test_without_value(self):
        error = ValidationError("storeId", "Missing storeId")
        assert str(error) == "storeId: Missing storeId"
        assert error.message == "Missing storeId"

    def test_with_value(self):
        """The offending value is shown in repr form."""
        error = ValidationError("type", "Invalid filter type", "brand")
        assert str(error) == "type: Invalid filter type (got: 'brand')"


class TestQueryTimeoutError:
    """Tests for QueryTimeoutError exception."""

    def test_long_query_truncated(self):
        error = QueryTimeoutError("SELECT " + "x" * 500, 30.0)
        assert len(error.query) == 203
        assert error.query.endswith("...")
        assert error.timeout == 30.0
