"""
Centralized configuration for the WooCommerce analytics API.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from core.config import config

    tz = config.analytics.timezone
    token = config.notion.token
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


@dataclass(frozen=True)
class DatabaseConfig:
    """DuckDB storage configuration."""

    path: Path = field(
        default_factory=lambda: Path(
            os.getenv("DUCKDB_PATH", str(PROJECT_ROOT / "data" / "woo_analytics.duckdb"))
        )
    )
    query_timeout: float = 30.0
    long_query_timeout: float = 120.0


@dataclass(frozen=True)
class AnalyticsConfig:
    """Date bucketing and derived-table settings."""

    timezone: str = field(
        default_factory=lambda: os.getenv("ANALYTICS_TIMEZONE", "America/Los_Angeles")
    )
    daily_summary_days: int = 120
    anomaly_lookback_days: int = 60


@dataclass(frozen=True)
class AssistantConfig:
    """Analytics assistant (Anthropic) configuration."""

    anthropic_api_key: str = field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""))
    model: str = field(
        default_factory=lambda: os.getenv("ASSISTANT_MODEL", "claude-sonnet-4-20250514")
    )
    max_tokens: int = 1024
    mock: bool = field(default_factory=lambda: os.getenv("ASSISTANT_MOCK", "") == "1")
    internal_api_base: str = field(default_factory=lambda: os.getenv("INTERNAL_API_BASE", ""))
    default_store_id: str = field(default_factory=lambda: os.getenv("STORE_ID", ""))
    tool_timeout: float = 30.0


@dataclass(frozen=True)
class NotionConfig:
    """Notion KPI snapshot configuration."""

    token: str = field(default_factory=lambda: os.getenv("NOTION_TOKEN", ""))
    kpi_database_id: str = field(
        default_factory=lambda: os.getenv("NOTION_DB_ID_KPIS") or os.getenv("NOTION_DB_ID", "")
    )
    api_base: str = "https://api.notion.com/v1"
    version: str = "2022-06-28"
    request_timeout: float = 30.0


@dataclass(frozen=True)
class GHLConfig:
    """GoHighLevel (CRM) configuration."""

    pit: str = field(default_factory=lambda: os.getenv("GHL_PIT", ""))
    location_id: str = field(default_factory=lambda: os.getenv("GHL_LOCATION_ID", ""))
    api_base: str = field(
        default_factory=lambda: os.getenv("GHL_API_BASE", "https://services.leadconnectorhq.com")
    )
    version: str = "2021-07-28"
    max_retries: int = 3
    request_timeout: float = 30.0


@dataclass(frozen=True)
class CronConfig:
    """Externally triggered job configuration."""

    secret: str = field(default_factory=lambda: os.getenv("CRON_SECRET", ""))
    public_base_url: str = field(
        default_factory=lambda: os.getenv("PUBLIC_API_BASE", "http://localhost:3001")
    )


@dataclass(frozen=True)
class WooConfig:
    """WooCommerce REST sync configuration."""

    auth_mode: str = field(default_factory=lambda: os.getenv("WC_AUTH_MODE", "qs"))
    per_page: int = 50
    request_timeout: float = 60.0
    max_retries: int = 3


@dataclass(frozen=True)
class WebConfig:
    """HTTP API server configuration."""

    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _int_env("PORT", 3001))
    cors_origins: List[str] = field(
        default_factory=lambda: [
            o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
        ]
    )


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "0.4.0"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    assistant: AssistantConfig = field(default_factory=AssistantConfig)
    notion: NotionConfig = field(default_factory=NotionConfig)
    ghl: GHLConfig = field(default_factory=GHLConfig)
    cron: CronConfig = field(default_factory=CronConfig)
    woo: WooConfig = field(default_factory=WooConfig)
    web: WebConfig = field(default_factory=WebConfig)


# Global config instance
config = AppConfig()

VERSION = config.version


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def disabled_integrations(cfg: AppConfig = config) -> List[str]:
    """Names of optional integrations that have no credentials configured."""
    disabled = []
    if not cfg.assistant.anthropic_api_key:
        disabled.append("assistant LLM (ANTHROPIC_API_KEY), mock answers only")
    if not cfg.notion.token:
        disabled.append("Notion KPI snapshots (NOTION_TOKEN)")
    if not cfg.ghl.pit:
        disabled.append("GoHighLevel (GHL_PIT)")
    return disabled


def validate_config(cfg: AppConfig = config) -> None:
    """
    Validate configuration values.

    Call this on application startup to fail fast with clear error messages
    instead of cryptic runtime failures. Missing integration secrets are not
    errors; see disabled_integrations().

    Raises:
        ConfigurationError: If configuration is invalid
    """
    errors = []

    try:
        ZoneInfo(cfg.analytics.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(
            f"ANALYTICS_TIMEZONE '{cfg.analytics.timezone}' is not a valid IANA timezone"
        )

    if cfg.woo.auth_mode not in ("qs", "basic"):
        errors.append(f"WC_AUTH_MODE must be 'qs' or 'basic' (got '{cfg.woo.auth_mode}')")

    if not 0 < cfg.web.port < 65536:
        errors.append(f"PORT must be between 1 and 65535 (got {cfg.web.port})")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
