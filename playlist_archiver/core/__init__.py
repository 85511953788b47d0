"""
Core module for playlist-archiver.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - logger: Logging system with multiple outputs
    - persistence: Atomic JSON storage for the index and source states
    - progress: Rich progress bar for passes

Usage:
    from playlist_archiver.core import (
        Config, load_config,
        setup_logging, get_logger,
        ArchiverError, ConfigError, PersistenceError
    )
"""

from playlist_archiver.core.config import (
    Config,
    PathsConfig,
    SyncConfig,
    ToolsConfig,
    load_config,
)
from playlist_archiver.core.exceptions import (
    ArchiverError,
    ConfigError,
    DownloadError,
    DownloadErrorKind,
    FetchError,
    FetchErrorKind,
    PersistenceError,
    PlatformError,
)
from playlist_archiver.core.logger import (
    get_logger,
    log_archive_failure,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "PathsConfig",
    "SyncConfig",
    "ToolsConfig",
    "load_config",
    # Exceptions
    "ArchiverError",
    "ConfigError",
    "PersistenceError",
    "PlatformError",
    "FetchError",
    "FetchErrorKind",
    "DownloadError",
    "DownloadErrorKind",
    # Logger
    "setup_logging",
    "get_logger",
    "log_archive_failure",
    "shutdown_logging",
]
