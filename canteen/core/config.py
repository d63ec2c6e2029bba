"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports three modes:
    - DEVELOPMENT: File-backed storage in the local data directory
    - STAGING: Same backends as production, separate data
    - PRODUCTION: Shared storage (Redis or SQL) for the menu catalog

The STORAGE_BACKEND variable selects the durable key-value store used by
the menu catalog. When it is left unset the mode decides: development uses
the JSON file store, staging and production use Redis.

Usage:
    from canteen.core.config import get_settings

    settings = get_settings()
    print(settings.resolved_storage_backend)

Version: 1.0.0
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local work, file-backed storage
        PRODUCTION: Live environment with shared storage
        STAGING: Pre-production testing with shared storage
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class StorageBackend(str, Enum):
    """Durable key-value backends available to the menu catalog."""
    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"
    SQL = "sql"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.

    Attributes:
        env_mode: Current environment (development/production/staging)
        debug: Enable verbose logging and error details

        # Storage
        storage_backend: Explicit key-value backend (memory/file/redis/sql)
        data_directory: Directory for the file backend and default SQLite file
        storage_lock_timeout: Seconds to wait for the file backend's lock
        menu_storage_key: Slot holding the serialized menu catalog

        # Menu / QR
        default_menu_category: Category given to items created without one
        qr_namespace: Prefix of the short shop QR payload

        # Cart / Orders
        max_line_quantity: Cap on one cart line's quantity
        order_storage_prefix: Slot prefix of the per-vendor order lists
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Canteen Ordering API",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8001,
        description="API server port"
    )

    # ==========================================================================
    # DURABLE STORAGE
    # ==========================================================================

    storage_backend: Optional[StorageBackend] = Field(
        default=None,
        description="Key-value backend; derived from env_mode when unset"
    )
    data_directory: str = Field(
        default="data",
        description="Directory for data files"
    )
    storage_lock_timeout: int = Field(
        default=30,
        description="Seconds to wait for file lock"
    )
    menu_storage_key: str = Field(
        default="canteen_menu_catalog",
        description="Storage slot holding the whole menu catalog"
    )
    mock_failure_rate: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Simulated failure rate of the in-memory backend"
    )

    # ==========================================================================
    # REDIS
    # ==========================================================================

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    redis_key_prefix: str = Field(
        default="canteen:",
        description="Prefix applied to every Redis key"
    )
    redis_socket_timeout: float = Field(
        default=5.0,
        description="Redis socket timeout in seconds"
    )

    # ==========================================================================
    # DATABASE
    # ==========================================================================

    database_url: str = Field(
        default="sqlite+aiosqlite:///data/canteen.db",
        description="SQLAlchemy async URL for the SQL key-value backend"
    )
    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )

    # ==========================================================================
    # MENU & QR
    # ==========================================================================

    default_menu_category: str = Field(
        default="Default",
        description="Category assigned to menu items created without one"
    )
    default_vendor_name: str = Field(
        default="Default Canteen",
        description="Name embedded in menu QR payloads when none is given"
    )
    qr_namespace: str = Field(
        default="ezyeats-shop",
        description="Namespace of the short shop QR payload"
    )

    # ==========================================================================
    # CART & ORDERS
    # ==========================================================================

    max_line_quantity: int = Field(
        default=99,
        ge=1,
        description="Largest quantity a single cart line may hold"
    )
    order_storage_prefix: str = Field(
        default="canteen_orders:",
        description="Storage slot prefix; each vendor's orders live in <prefix><vendor_id>"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    @field_validator("storage_backend", mode="before")
    @classmethod
    def validate_storage_backend(cls, v):
        if v is None or isinstance(v, StorageBackend):
            return v
        if isinstance(v, str) and not v.strip():
            return None
        try:
            return StorageBackend(str(v).lower())
        except ValueError:
            valid = [b.value for b in StorageBackend]
            raise ValueError(f"Invalid storage_backend. Must be one of: {valid}")

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def is_staging(self) -> bool:
        """Check if running in staging mode."""
        return self.env_mode == EnvironmentMode.STAGING

    @property
    def resolved_storage_backend(self) -> StorageBackend:
        """Backend actually used once the environment default is applied."""
        if self.storage_backend is not None:
            return self.storage_backend
        if self.is_development:
            return StorageBackend.FILE
        return StorageBackend.REDIS

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Report settings that are unsafe outside development.

        Returns:
            List of problems (empty if the configuration looks fine)
        """
        problems = []

        if not self.is_development:
            if self.resolved_storage_backend == StorageBackend.MEMORY:
                problems.append("STORAGE_BACKEND=memory loses the menu catalog on restart")
            if self.mock_failure_rate > 0:
                problems.append("MOCK_FAILURE_RATE should be 0")
            if self.debug:
                problems.append("DEBUG exposes internal error details")

        return problems


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are loaded only once.

    Returns:
        Settings: Configured application settings

    Example:
        >>> settings = get_settings()
        >>> print(settings.env_mode)
        EnvironmentMode.DEVELOPMENT
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    settings = get_settings()

    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-25s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("filelock").setLevel(logging.WARNING)

    return logging.getLogger("canteen")

