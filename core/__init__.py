"""
Core library for the WooCommerce analytics API.

Shared by web/ and scripts/:
- exceptions: Integration / validation exception hierarchy
- validators: Query parameter parsing
- config: Centralized configuration
- duckdb_store + repositories: Analytics store
- woo_client, ghl_client, notion_client, llm_client: Outbound integrations
"""

# Import in dependency order
from core.exceptions import (
    IntegrationError,
    IntegrationConnectionError,
    IntegrationAPIError,
    IntegrationConfigError,
    RateLimitedError,
    ValidationError,
    QueryTimeoutError,
)

from core.validators import (
    require_store_id,
    parse_positive_int,
    parse_int_param,
    validate_filter_type,
)

from core.config import config

__all__ = [
    # Exceptions
    "IntegrationError",
    "IntegrationConnectionError",
    "IntegrationAPIError",
    "IntegrationConfigError",
    "RateLimitedError",
    "ValidationError",
    "QueryTimeoutError",
    # Validators
    "require_store_id",
    "parse_positive_int",
    "parse_int_param",
    "validate_filter_type",
    # Config
    "config",
]
