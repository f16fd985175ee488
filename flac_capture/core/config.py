"""
Configuration management for flac-capture.

This module builds the application configuration from four layers, each
overriding the previous one:

    1. Built-in defaults
    2. A YAML file (config.yaml in the current directory, or --config)
    3. Environment variables (FLAC_CAPTURE_*), with .env support
    4. Command-line overrides

Example config.yaml:
    watch:
      input_directory: "~/Capture/input"
      scan_interval_seconds: 30
      settle_seconds: 2
      patterns: ["*.m3u", "*.m3u8"]

    output:
      directory: "~/Capture/output"
      filename_prefix: "capture_"

    capture:
      fetch_timeout_seconds: 1800
      monitor_volume: 0.7

    encoding:
      auto_convert: true
      delete_uncompressed: true
      quality: 100
      flac_executable: null

    logging:
      level: INFO
"""

import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from flac_capture.core.exceptions import ConfigurationError


# Default configuration file name (looked up in the current working directory)
CONFIG_FILENAME = "config.yaml"

ENV_PREFIX = "FLAC_CAPTURE_"

DEFAULT_INPUT_DIRECTORY = "./input"
DEFAULT_OUTPUT_DIRECTORY = "./output"
DEFAULT_SCAN_INTERVAL = 30.0
DEFAULT_SETTLE_SECONDS = 2.0
DEFAULT_PATTERNS = ("*.m3u", "*.m3u8")
DEFAULT_FETCH_TIMEOUT = 1800.0
MAX_FETCH_TIMEOUT = 86400.0
DEFAULT_MONITOR_VOLUME = 0.7
DEFAULT_PREFIX = "capture_"
DEFAULT_QUALITY = 100

# Environment variable -> (section, key)
ENVIRONMENT_KEYS = {
    "INPUT_DIR": ("watch", "input_directory"),
    "SCAN_INTERVAL": ("watch", "scan_interval_seconds"),
    "SETTLE_SECONDS": ("watch", "settle_seconds"),
    "OUTPUT_DIR": ("output", "directory"),
    "PREFIX": ("output", "filename_prefix"),
    "FETCH_TIMEOUT": ("capture", "fetch_timeout_seconds"),
    "VOLUME": ("capture", "monitor_volume"),
    "TEMP_DIR": ("capture", "temp_directory"),
    "AUTO_CONVERT": ("encoding", "auto_convert"),
    "DELETE_WAV": ("encoding", "delete_uncompressed"),
    "QUALITY": ("encoding", "quality"),
    "FLAC_PATH": ("encoding", "flac_executable"),
    "LOG_LEVEL": ("logging", "level"),
}

SECTIONS = ("watch", "output", "capture", "encoding", "logging")

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class WatchConfig:
    """
    Input directory monitoring configuration.

    Attributes:
        input_directory: Directory watched for new playlist files.
        scan_interval_seconds: Period of the full re-scan that complements
                               filesystem notifications.
        settle_seconds: Delay between admission and reading a playlist, so a
                        file that is still being written is read complete.
        patterns: Glob patterns a file name must match to be a playlist.
    """
    input_directory: Path
    scan_interval_seconds: float
    settle_seconds: float
    patterns: tuple[str, ...]


@dataclass(frozen=True)
class OutputConfig:
    """
    Output location configuration.

    Attributes:
        directory: Directory receiving WAV/FLAC files and the logs/ folder.
        filename_prefix: Prepended to every output file name.
    """
    directory: Path
    filename_prefix: str


@dataclass(frozen=True)
class CaptureConfig:
    """
    Stream capture configuration.

    Attributes:
        fetch_timeout_seconds: Total time allowed for one URL.
        monitor_volume: Playback volume for live monitoring, clamped to 0.0-1.0.
        temp_directory: Where fetched streams are buffered. None means the
                        system temporary directory.
    """
    fetch_timeout_seconds: float
    monitor_volume: float
    temp_directory: Path | None


@dataclass(frozen=True)
class EncodingConfig:
    """
    Lossless encoding configuration.

    Attributes:
        auto_convert: Encode each assembled WAV to FLAC.
        delete_uncompressed: Delete the WAV after a successful encode.
        quality: Compression effort, 0 (fastest) to 100 (smallest).
        flac_executable: Explicit path to the external flac tool.
    """
    auto_convert: bool
    delete_uncompressed: bool
    quality: int
    flac_executable: Path | None


@dataclass(frozen=True)
class LoggingConfig:
    """Console log level (files always receive DEBUG)."""
    level: str


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable.

    Example:
        config = load_config()
        print(f"Watching: {config.watch.input_directory}")
        print(f"Quality: {config.encoding.quality}")
    """
    watch: WatchConfig
    output: OutputConfig
    capture: CaptureConfig
    encoding: EncodingConfig
    logging: LoggingConfig


def load_config(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None
) -> Config:
    """
    Load, merge and validate the configuration.

    Args:
        config_path: Explicit YAML file. Must exist when given. If None,
                     config.yaml in the current directory is used when present.
        overrides: Dotted keys to values, e.g. {"encoding.quality": 80}.
                   None values are ignored so unset CLI options do not
                   override lower layers.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigurationError: If the file is missing or invalid YAML, or if any
                            value is of the wrong type or out of range.
    """
    raw: dict[str, dict[str, Any]] = {section: {} for section in SECTIONS}

    _merge_file(raw, config_path)
    _merge_environment(raw)
    _merge_overrides(raw, overrides or {})

    return Config(
        watch=_parse_watch_config(raw["watch"]),
        output=_parse_output_config(raw["output"]),
        capture=_parse_capture_config(raw["capture"]),
        encoding=_parse_encoding_config(raw["encoding"]),
        logging=_parse_logging_config(raw["logging"]),
    )


def _merge_file(raw: dict[str, dict[str, Any]], config_path: Path | None) -> None:
    """Merge the YAML layer into raw, if a file applies."""
    if config_path is None:
        candidate = Path.cwd() / CONFIG_FILENAME
        if not candidate.exists():
            return
        config_path = candidate
    elif not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if parsed is None:
        return

    if not isinstance(parsed, dict):
        raise ConfigurationError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    for section, values in parsed.items():
        if section not in raw:
            raise ConfigurationError(
                f"Unknown configuration section: '{section}'",
                details={"file_path": str(config_path), "section": section}
            )
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigurationError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )
        raw[section].update(values)


def _merge_environment(raw: dict[str, dict[str, Any]]) -> None:
    """Merge FLAC_CAPTURE_* variables (after loading .env) into raw."""
    load_dotenv()
    for suffix, (section, key) in ENVIRONMENT_KEYS.items():
        value = os.environ.get(ENV_PREFIX + suffix)
        if value is not None and value.strip() != "":
            raw[section][key] = value.strip()


def _merge_overrides(raw: dict[str, dict[str, Any]], overrides: dict[str, Any]) -> None:
    for dotted, value in overrides.items():
        if value is None:
            continue
        section, _, key = dotted.partition(".")
        if section not in raw or not key:
            raise ConfigurationError(
                f"Invalid configuration override: '{dotted}'",
                details={"field": dotted}
            )
        raw[section][key] = value


def _as_path(value: Any, field: str) -> Path:
    if isinstance(value, Path):
        return value.expanduser().resolve()
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(
            f"'{field}' must be a non-empty path",
            details={"field": field, "value": value}
        )
    return Path(value.strip()).expanduser().resolve()


def _as_optional_path(value: Any, field: str) -> Path | None:
    if value is None or value == "":
        return None
    return _as_path(value, field)


def _as_float(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(
            f"'{field}' must be a number",
            details={"field": field, "value": value}
        )
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"'{field}' must be a number",
            details={"field": field, "value": value}
        ) from e
    if not math.isfinite(number):
        raise ConfigurationError(
            f"'{field}' must be a finite number",
            details={"field": field, "value": value}
        )
    return number


def _as_int(value: Any, field: str) -> int:
    number = _as_float(value, field)
    if number != int(number):
        raise ConfigurationError(
            f"'{field}' must be an integer",
            details={"field": field, "value": value}
        )
    return int(number)


def _as_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConfigurationError(
        f"'{field}' must be true or false",
        details={"field": field, "value": value}
    )


def clamp_volume(volume: float) -> float:
    """Clamp a monitoring volume to the 0.0-1.0 range."""
    return max(0.0, min(1.0, volume))


def validate_quality(quality: Any, field: str = "encoding.quality") -> int:
    """
    Validate a compression quality value.

    Args:
        quality: Candidate value (int or numeric string).
        field: Name used in the error message.

    Returns:
        The quality as an int in 0-100.

    Raises:
        ConfigurationError: If the value is not an integer in 0-100.
    """
    value = _as_int(quality, field)
    if not 0 <= value <= 100:
        raise ConfigurationError(
            f"'{field}' must be between 0 and 100",
            details={"field": field, "value": quality}
        )
    return value


def _parse_watch_config(section: dict[str, Any]) -> WatchConfig:
    input_directory = _as_path(
        section.get("input_directory", DEFAULT_INPUT_DIRECTORY), "watch.input_directory"
    )

    interval = _as_float(
        section.get("scan_interval_seconds", DEFAULT_SCAN_INTERVAL), "watch.scan_interval_seconds"
    )
    if interval <= 0:
        raise ConfigurationError(
            "'watch.scan_interval_seconds' must be greater than 0",
            details={"field": "watch.scan_interval_seconds", "value": interval}
        )

    settle = _as_float(section.get("settle_seconds", DEFAULT_SETTLE_SECONDS), "watch.settle_seconds")
    if settle < 0:
        raise ConfigurationError(
            "'watch.settle_seconds' must not be negative",
            details={"field": "watch.settle_seconds", "value": settle}
        )

    raw_patterns = section.get("patterns", DEFAULT_PATTERNS)
    if isinstance(raw_patterns, str):
        raw_patterns = [raw_patterns]
    if not isinstance(raw_patterns, (list, tuple)) or not raw_patterns or not all(
        isinstance(p, str) and p.strip() for p in raw_patterns
    ):
        raise ConfigurationError(
            "'watch.patterns' must be a non-empty list of glob patterns",
            details={"field": "watch.patterns", "value": raw_patterns}
        )

    return WatchConfig(
        input_directory=input_directory,
        scan_interval_seconds=interval,
        settle_seconds=settle,
        patterns=tuple(p.strip() for p in raw_patterns),
    )


def _parse_output_config(section: dict[str, Any]) -> OutputConfig:
    directory = _as_path(section.get("directory", DEFAULT_OUTPUT_DIRECTORY), "output.directory")

    prefix = section.get("filename_prefix", DEFAULT_PREFIX)
    if prefix is None:
        prefix = ""
    if not isinstance(prefix, str) or "/" in prefix or "\\" in prefix:
        raise ConfigurationError(
            "'output.filename_prefix' must be a string without path separators",
            details={"field": "output.filename_prefix", "value": prefix}
        )

    return OutputConfig(directory=directory, filename_prefix=prefix)


def _parse_capture_config(section: dict[str, Any]) -> CaptureConfig:
    timeout = _as_float(
        section.get("fetch_timeout_seconds", DEFAULT_FETCH_TIMEOUT), "capture.fetch_timeout_seconds"
    )
    if not 1 <= timeout <= MAX_FETCH_TIMEOUT:
        raise ConfigurationError(
            f"'capture.fetch_timeout_seconds' must be between 1 and {int(MAX_FETCH_TIMEOUT)}",
            details={"field": "capture.fetch_timeout_seconds", "value": timeout}
        )

    volume = _as_float(section.get("monitor_volume", DEFAULT_MONITOR_VOLUME), "capture.monitor_volume")

    return CaptureConfig(
        fetch_timeout_seconds=timeout,
        monitor_volume=clamp_volume(volume),
        temp_directory=_as_optional_path(section.get("temp_directory"), "capture.temp_directory"),
    )


def _parse_encoding_config(section: dict[str, Any]) -> EncodingConfig:
    return EncodingConfig(
        auto_convert=_as_bool(section.get("auto_convert", True), "encoding.auto_convert"),
        delete_uncompressed=_as_bool(
            section.get("delete_uncompressed", True), "encoding.delete_uncompressed"
        ),
        quality=validate_quality(section.get("quality", DEFAULT_QUALITY)),
        flac_executable=_as_optional_path(section.get("flac_executable"), "encoding.flac_executable"),
    )


def _parse_logging_config(section: dict[str, Any]) -> LoggingConfig:
    level = section.get("level", "INFO")
    if not isinstance(level, str) or not isinstance(logging.getLevelName(level.upper()), int):
        raise ConfigurationError(
            "'logging.level' must be a logging level name (DEBUG, INFO, WARNING, ERROR)",
            details={"field": "logging.level", "value": level}
        )
    return LoggingConfig(level=level.upper())
