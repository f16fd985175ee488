"""
Utility functions for flac-capture.

This module provides small formatting and path helpers used across the
application:
    - Human-readable file sizes and durations
    - Directory creation

Usage:
    from flac_capture.utils import format_file_size, ensure_directory
"""

from pathlib import Path


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable string.

    Examples:
        format_file_size(512)      # "512 B"
        format_file_size(1536)     # "1.5 KB"
        format_file_size(1048576)  # "1.0 MB"
    """
    if size_bytes < 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(size_bytes)
    unit_index = 0

    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1

    if unit_index == 0:
        return f"{int(size)} {units[unit_index]}"
    return f"{size:.1f} {units[unit_index]}"


def format_duration(seconds: float) -> str:
    """
    Format a duration in seconds as M:SS or H:MM:SS.

    Examples:
        format_duration(90)    # "1:30"
        format_duration(3661)  # "1:01:01"
    """
    if seconds < 0:
        return "0:00"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def ensure_directory(path: Path) -> Path:
    """
    Ensure a directory exists, creating it and its parents if necessary.

    Returns:
        The same path (for chaining).

    Raises:
        OSError: If the directory cannot be created.
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
