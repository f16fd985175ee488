"""
Exception classes for flac-capture.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message and an optional details
dictionary, so callers can log context without parsing strings.

Exception Hierarchy:
    FlacCaptureError (base)
        ConfigurationError - Invalid settings (fatal at startup)
        PlaylistError - Playlist file unreadable
            EmptyPlaylistError - No URL left after filtering
        FetchError - A single stream URL could not be downloaded
        CancellationError - Work was aborted by a stop request
        AssemblyError - No usable audio could be combined
        EncodingError - Base class for lossless encoder failures
            EncodingUnavailable - No encoder is present
            EncodingFailed - An encoder ran and failed
        RelocationError - Playlist could not be moved after processing
"""

from pathlib import Path


class FlacCaptureError(Exception):
    """
    Base exception for all flac-capture errors.

    Attributes:
        message: Human-readable error description.
        details: Dictionary with additional context (paths, URLs, exit codes).

    Example:
        try:
            # some operation
        except FlacCaptureError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description shown to the operator.
            details: Optional dictionary containing additional context.
                     Common keys include:
                     - 'path': File involved in the error
                     - 'url': Stream URL that caused the error
                     - 'original_error': The underlying exception text
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigurationError(FlacCaptureError):
    """
    Raised when a configuration value is missing or out of range.

    This is a CRITICAL error: the CLI exits with code 1 when it is raised
    during startup. The encoder also raises it when called with a quality
    outside 0-100.

    Example:
        raise ConfigurationError(
            "'encoding.quality' must be between 0 and 100",
            details={'field': 'encoding.quality', 'value': 150}
        )
    """
    pass


class PlaylistError(FlacCaptureError):
    """
    Raised when a playlist file cannot be read or decoded.

    NON-CRITICAL for the watch service: the playlist is marked failed and
    moved to failed/, other playlists continue.
    """
    pass


class EmptyPlaylistError(PlaylistError):
    """Raised when a playlist contains no URL after comments and blanks are removed."""
    pass


class FetchError(FlacCaptureError):
    """
    Raised (or carried on a FetchResult) when one stream URL cannot be fetched.

    NON-CRITICAL: the remaining URLs of the playlist are still fetched.

    Common causes:
        - Non-2xx HTTP status
        - Connection refused or DNS failure
        - Total fetch timeout exceeded
        - Disk error while writing the temporary file

    Attributes:
        url: The URL that failed.
        status: HTTP status code, if the server answered.
    """

    def __init__(
        self,
        message: str,
        url: str,
        status: int | None = None,
        details: dict | None = None
    ) -> None:
        merged = {"url": url, "status": status}
        merged.update(details or {})
        super().__init__(message, merged)
        self.url = url
        self.status = status


class CancellationError(FlacCaptureError):
    """
    Raised when a stop request aborts a fetch or an encode.

    Not a subclass of FetchError. Cancellation stops the remaining URLs of
    a playlist, a fetch error does not.
    """
    pass


class AssemblyError(FlacCaptureError):
    """
    Raised when no usable audio can be assembled into the output container.

    This is fatal to the job: the playlist is marked failed.

    Common causes:
        - Every fetch failed (nothing to assemble)
        - The first stream cannot be decoded
        - The output file cannot be written
    """
    pass


class EncodingError(FlacCaptureError):
    """
    Base class for lossless encoder failures.

    Encoding failures never fail a capture job: the uncompressed file is kept
    and its path is available as `source_path`.

    Attributes:
        source_path: The uncompressed input that was left untouched.
    """

    def __init__(
        self,
        message: str,
        source_path: Path | None = None,
        details: dict | None = None
    ) -> None:
        merged = {"source_path": str(source_path) if source_path else None}
        merged.update(details or {})
        super().__init__(message, merged)
        self.source_path = source_path


class EncodingUnavailable(EncodingError):
    """Raised when neither the in-process encoder nor an external flac executable is available."""
    pass


class EncodingFailed(EncodingError):
    """
    Raised when an encoder was available but produced no valid output.

    Example:
        raise EncodingFailed(
            "flac exited with code 1",
            source_path=wav_path,
            details={'exit_code': 1, 'stderr': 'ERROR: input file is not a WAVE file'}
        )
    """
    pass


class RelocationError(FlacCaptureError):
    """
    Raised when a processed playlist cannot be moved into processed/ or failed/.

    NON-CRITICAL: the playlist stays terminal in the in-memory registry and
    is not reprocessed during this run.
    """
    pass
