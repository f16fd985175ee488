"""
Core module for flac-capture.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Layered configuration loading and validation
    - logger: Logging system with multiple outputs
    - file_manager: Output naming and playlist relocation

Usage:
    from flac_capture.core import (
        Config, load_config,
        setup_logging, get_logger,
        FlacCaptureError, ConfigurationError
    )
"""

from flac_capture.core.config import (
    CaptureConfig,
    Config,
    EncodingConfig,
    LoggingConfig,
    OutputConfig,
    WatchConfig,
    load_config,
)
from flac_capture.core.exceptions import (
    AssemblyError,
    CancellationError,
    ConfigurationError,
    EmptyPlaylistError,
    EncodingError,
    EncodingFailed,
    EncodingUnavailable,
    FetchError,
    FlacCaptureError,
    PlaylistError,
    RelocationError,
)
from flac_capture.core.logger import (
    get_logger,
    log_banner,
    log_fetch_failure,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "WatchConfig",
    "OutputConfig",
    "CaptureConfig",
    "EncodingConfig",
    "LoggingConfig",
    "load_config",
    # Exceptions
    "FlacCaptureError",
    "ConfigurationError",
    "PlaylistError",
    "EmptyPlaylistError",
    "FetchError",
    "CancellationError",
    "AssemblyError",
    "EncodingError",
    "EncodingUnavailable",
    "EncodingFailed",
    "RelocationError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_banner",
    "log_fetch_failure",
    "shutdown_logging",
]
