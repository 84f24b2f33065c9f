# -*- coding: utf-8 -*-
"""Location: ./toolchest/config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

ToolChest Admin Configuration.
This module defines configuration settings for the ToolChest admin core using Pydantic.
It loads configuration from environment variables with sensible defaults.

Environment variables:
- APP_NAME: Application name (default: "ToolChest Admin")
- HOST: Host to bind to (default: "127.0.0.1")
- PORT: Port to listen on (default: 8000)
- DATABASE_URL: Database URL (default: "sqlite:///./toolchest.db")
- LOG_LEVEL: Logging level (default: "INFO")
- LOG_FORMAT: "json" or "text" (default: "json")
- CACHE_DEFAULT_TTL: Default service cache TTL in seconds (default: 300)
- ANALYTICS_CACHE_TTL: Analytics cache TTL in seconds (default: 600)
- PERFORMANCE_CACHE_TTL: System performance cache TTL in seconds (default: 60)
- BULK_CONFIRMATION_THRESHOLD: Changes above which a bulk operation needs confirmation (default: 50)
- MONITORING_ENABLED: Run the background metrics sampler (default: True)
- MONITORING_INTERVAL_SECONDS: Sampling interval (default: 30)

Examples:
    >>> from toolchest.config import Settings
    >>> s = Settings(log_level='debug')
    >>> s.log_level
    'DEBUG'
    >>> s.cache_default_ttl
    300
    >>> s.alert_thresholds['memory_usage']
    80.0
"""

# Standard
from functools import lru_cache
import logging
from pathlib import Path
import sys
from typing import Any, Dict, Literal, Optional

# Third-Party
import orjson
from pydantic import Field, field_validator, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

# Only configure basic logging if no handlers exist yet
# This prevents conflicts with LoggingService while ensuring config logging works
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    ToolChest admin configuration settings.

    Examples:
        >>> from toolchest.config import Settings
        >>> s = Settings()
        >>> s.app_name
        'ToolChest Admin'
        >>> s.port
        8000
        >>> s.bulk_confirmation_threshold
        50
        >>> Settings(log_format='text').log_format
        'text'
    """

    app_name: str = "ToolChest Admin"
    host: str = "127.0.0.1"
    port: PositiveInt = Field(default=8000, ge=1, le=65535)
    app_root_path: str = ""

    # Database
    database_url: str = "sqlite:///./toolchest.db"
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 3600
    db_sqlite_busy_timeout: int = Field(default=5000, ge=1000, le=60000, description="SQLite busy timeout in milliseconds")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_format: Literal["json", "text"] = "json"  # json or text
    log_to_file: bool = False  # Enable file logging (default: stdout/stderr only)
    log_filemode: str = "a+"  # append or overwrite
    log_file: Optional[str] = None  # Only used if log_to_file=True
    log_folder: Optional[str] = None  # Only used if log_to_file=True

    # Log Rotation (optional - only used if log_to_file=True)
    log_rotation_enabled: bool = False
    log_max_size_mb: int = 1  # Max file size in MB before rotation
    log_backup_count: int = 5

    # Service caches
    cache_default_ttl: int = Field(default=300, ge=0, description="Default TTL for BaseService cache entries in seconds")
    cache_max_entries: int = Field(default=1000, ge=1, description="Upper bound on entries held by one service cache")
    relationship_cache_ttl: int = Field(default=300, ge=0, description="TTL for relationship listings and tag statistics")
    analytics_cache_ttl: int = Field(default=600, ge=0, description="TTL for analytics summaries and charts")
    performance_cache_ttl: int = Field(default=60, ge=0, description="TTL for system performance snapshots")

    # Relationship engine
    bulk_confirmation_threshold: int = Field(default=50, ge=1, description="Bulk operations with more changes than this require confirmation")

    # Analytics
    analytics_default_range_days: int = Field(default=30, ge=1, description="Trailing window used when no time range is supplied")
    analytics_top_tools_limit: int = Field(default=5, ge=1)
    analytics_chart_top_tools_limit: int = Field(default=10, ge=1)

    # Monitoring
    monitoring_enabled: bool = True
    monitoring_interval_seconds: int = Field(default=30, ge=1)
    monitoring_retention_days: int = Field(default=30, ge=1, description="Error log retention")
    metrics_history_hours: int = Field(default=24, ge=1, description="How long metric snapshots are kept")
    metrics_history_size: int = Field(default=2880, ge=10, description="Maximum number of metric snapshots kept in memory")
    request_window_seconds: int = Field(default=300, ge=10, description="Window for response time and error rate statistics")
    error_log_max_entries: int = Field(default=10000, ge=100)
    error_log_query_limit: int = Field(default=1000, ge=1)

    # Alert thresholds
    alert_threshold_response_time_ms: float = 1000.0
    alert_threshold_error_rate: float = 5.0  # percent
    alert_threshold_memory_percent: float = 80.0
    alert_threshold_disk_percent: float = 85.0

    # Health check bands
    health_db_healthy_ms: float = 100.0
    health_db_degraded_ms: float = 500.0
    health_memory_healthy_percent: float = 70.0
    health_memory_degraded_percent: float = 85.0

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Normalize and validate the log level value.

        Args:
            v (str): The log level string provided via configuration or environment.

        Returns:
            str: The validated and normalized (uppercase) log level.

        Raises:
            ValueError: If the provided value is not one of
                {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}.

        Examples:
            >>> Settings(log_level='warning').log_level
            'WARNING'
            >>> try:
            ...     Settings(log_level='loud')
            ... except ValueError:
            ...     print('error')
            error
        """
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_up = str(v).upper()
        if v_up not in allowed:
            raise ValueError(f"Invalid log_level: {v}")
        return v_up

    @property
    def alert_thresholds(self) -> Dict[str, float]:
        """Alert thresholds keyed by monitored metric name.

        Returns:
            Dict[str, float]: Threshold per metric.
        """
        return {
            "response_time": self.alert_threshold_response_time_ms,
            "error_rate": self.alert_threshold_error_rate,
            "memory_usage": self.alert_threshold_memory_percent,
            "disk_usage": self.alert_threshold_disk_percent,
        }

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    def validate_database(self) -> None:
        """Validate database configuration.

        Creates the parent directory of a file-based SQLite database if needed.

        Examples:
            >>> s = Settings(database_url='sqlite:///:memory:')
            >>> s.validate_database()
        """
        if self.database_url.startswith("sqlite") and ":memory:" not in self.database_url:
            db_path = Path(self.database_url.replace("sqlite:///", ""))
            db_dir = db_path.parent
            if not db_dir.exists():
                db_dir.mkdir(parents=True)

    def log_summary(self) -> None:
        """
        Log a summary of the application settings.

        Dumps the current settings to a dictionary while excluding the
        database URL, which may carry credentials, and logs it at the INFO level.
        """
        summary = self.model_dump(exclude={"database_url"})
        logger.info(f"Application settings summary: {summary}")


@lru_cache()
def get_settings(**kwargs: Any) -> Settings:
    """Get cached settings instance.

    Args:
        **kwargs: Keyword arguments to pass to the Settings setup.

    Returns:
        Settings: A cached instance of the Settings class.

    Examples:
        >>> settings = get_settings()
        >>> isinstance(settings, Settings)
        True
        >>> settings is get_settings()
        True
    """
    cfg = Settings(**kwargs)
    cfg.validate_database()
    return cfg


def generate_settings_schema() -> dict[str, Any]:
    """
    Return the JSON Schema describing the Settings model.

    Returns:
        dict: A dictionary representing the JSON Schema of the Settings model.
    """
    return Settings.model_json_schema(mode="validation")


# Lazy "instance" of settings
class LazySettingsWrapper:
    """Lazily initialize settings singleton on getattr"""

    def __getattr__(self, key: str) -> Any:
        """Get the real settings object and forward to it

        Args:
            key: The key to fetch from settings

        Returns:
            Any: The value of the attribute on the settings
        """
        return getattr(get_settings(), key)


settings = LazySettingsWrapper()


if __name__ == "__main__":
    if "--schema" in sys.argv:
        schema = generate_settings_schema()
        print(orjson.dumps(schema, option=orjson.OPT_INDENT_2).decode())
        sys.exit(0)
    settings.log_summary()
