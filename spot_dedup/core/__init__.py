"""
Core module for spot-dedup.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - database: Thread-safe SQLite store for playlists and duplicates
    - logger: Logging system with multiple outputs

Usage:
    from spot_dedup.core import (
        Config, load_config,
        Database,
        setup_logging, get_logger,
        SpotDedupError, ConfigError, DatabaseError
    )
"""

from spot_dedup.core.config import (
    Config,
    SpotifyConfig,
    StorageConfig,
    SyncConfig,
    load_config,
)
from spot_dedup.core.database import Database
from spot_dedup.core.exceptions import (
    AuthorizationMissingError,
    ConfigError,
    DatabaseError,
    SnapshotConflictError,
    SpotDedupError,
    SpotifyError,
)
from spot_dedup.core.logger import (
    get_logger,
    log_removed_duplicates,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "SpotifyConfig",
    "StorageConfig",
    "SyncConfig",
    "load_config",
    # Database
    "Database",
    # Exceptions
    "SpotDedupError",
    "ConfigError",
    "DatabaseError",
    "SpotifyError",
    "AuthorizationMissingError",
    "SnapshotConflictError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_removed_duplicates",
    "shutdown_logging",
]
