"""
File management for flac-capture.

This module owns every path decision of the pipeline: output names,
temporary file cleanup, and moving finished playlists out of the watched
directory.

Architecture:
    input_directory/
    ├── evening_show.m3u          # waiting to be processed
    ├── processed/                # playlists that produced audio
    │   └── morning_show.m3u
    └── failed/                   # playlists that produced nothing
        ├── broken.m3u
        └── broken_20240101_120000_123.m3u   # renamed on collision

    output_directory/
    ├── capture_evening_show_20240101_120000.wav
    ├── capture_morning_show_20240101_080000.flac
    └── logs/

File Naming:
    - Output: {prefix}{playlist stem}_{YYYYmmdd_HHMMSS}.{wav|flac}
    - Relocation collision: {stem}_{YYYYmmdd_HHMMSS_fff}{suffix}

Usage:
    from flac_capture.core.file_manager import FileManager, relocate_playlist

    fm = FileManager(input_dir, output_dir)
    wav = fm.wav_path("capture_evening_show_20240101_120000")
    relocate_playlist(playlist_path, input_dir, succeeded=True)
"""

import re
import shutil
from datetime import datetime
from pathlib import Path

from flac_capture.core.exceptions import RelocationError
from flac_capture.core.logger import get_logger
from flac_capture.utils import ensure_directory

logger = get_logger(__name__)


PROCESSED_DIRNAME = "processed"
FAILED_DIRNAME = "failed"

# Characters that are invalid in filenames on various operating systems
_INVALID_CHARS_PATTERN = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

# Maximum filename length (conservative for cross-platform compatibility)
_MAX_FILENAME_LENGTH = 200


def sanitize_filename(name: str) -> str:
    """
    Sanitize a string for use in a filename.

    Args:
        name: The string to sanitize.

    Returns:
        A sanitized string safe for use in filenames.

    Behavior:
        - Replaces invalid characters with underscores
        - Strips leading/trailing whitespace and dots
        - Truncates to maximum length
        - Returns "playlist" if result is empty
    """
    if not name:
        return "playlist"

    result = _INVALID_CHARS_PATTERN.sub("_", name)

    # Strip whitespace and dots (dots at start can hide files on Unix)
    result = result.strip(" .")

    if len(result) > _MAX_FILENAME_LENGTH:
        result = result[:_MAX_FILENAME_LENGTH].rstrip(" .")

    return result if result else "playlist"


def build_output_base(prefix: str, playlist_path: Path, when: datetime | None = None) -> str:
    """
    Build the extension-less output name for a playlist.

    Example:
        build_output_base("capture_", Path("in/Evening Show.m3u"), datetime(2024, 1, 1, 12))
        # Returns: "capture_Evening Show_20240101_120000"
    """
    when = when or datetime.now()
    return f"{prefix}{sanitize_filename(playlist_path.stem)}_{when:%Y%m%d_%H%M%S}"


def unique_destination(target_dir: Path, file_name: str, when: datetime | None = None) -> Path:
    """
    Return a path in target_dir for file_name that does not exist yet.

    When file_name is taken, a millisecond timestamp is appended to the stem.
    A counter is added in the unlikely case the timestamped name is taken too.

    Args:
        target_dir: Destination directory.
        file_name: Desired file name.
        when: Timestamp to use on collision (defaults to now).

    Returns:
        A non-existing destination path.
    """
    target = target_dir / file_name
    if not target.exists():
        return target

    when = when or datetime.now()
    stem = Path(file_name).stem
    suffix = Path(file_name).suffix
    stamp = when.strftime("%Y%m%d_%H%M%S_%f")[:-3]

    target = target_dir / f"{stem}_{stamp}{suffix}"
    counter = 1
    while target.exists():
        target = target_dir / f"{stem}_{stamp}_{counter}{suffix}"
        counter += 1
    return target


def relocate_playlist(
    playlist_path: Path,
    input_dir: Path,
    succeeded: bool,
    when: datetime | None = None
) -> Path:
    """
    Move a finished playlist into processed/ or failed/ under input_dir.

    Args:
        playlist_path: The playlist file to move.
        input_dir: The watched input directory.
        succeeded: True moves to processed/, False to failed/.
        when: Timestamp used if the destination name is taken.

    Returns:
        The new location of the playlist.

    Raises:
        RelocationError: If the directory cannot be created or the move fails.
    """
    subdir = PROCESSED_DIRNAME if succeeded else FAILED_DIRNAME
    target_dir = input_dir / subdir

    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        target = unique_destination(target_dir, playlist_path.name, when)
        shutil.move(str(playlist_path), str(target))
    except OSError as e:
        raise RelocationError(
            f"Could not move playlist to {subdir}/: {e}",
            details={"path": str(playlist_path), "target_dir": str(target_dir), "original_error": str(e)}
        ) from e

    if succeeded:
        logger.info(f"Playlist moved to: {subdir}/{target.name}")
    else:
        logger.warning(f"Playlist moved to: {subdir}/{target.name} (processing failed)")

    return target


def remove_quietly(path: Path | None) -> bool:
    """
    Delete a file if it exists.

    Returns:
        True if a file was removed. A failure to remove is logged as a
        warning and reported as False.
    """
    if path is None:
        return False
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Could not remove temporary file {path}: {e}")
        return False


class FileManager:
    """
    Resolves the directories and output paths of a capture run.

    Attributes:
        input_dir: Watched directory holding incoming playlists.
        output_dir: Directory receiving WAV and FLAC files.
    """

    def __init__(self, input_dir: Path, output_dir: Path) -> None:
        """
        Initialize FileManager.

        Behavior:
            Creates input_dir and output_dir if they don't exist.
            processed/ and failed/ are created on demand by relocate_playlist().
        """
        self.input_dir = ensure_directory(input_dir)
        self.output_dir = ensure_directory(output_dir)

    @property
    def processed_dir(self) -> Path:
        return self.input_dir / PROCESSED_DIRNAME

    @property
    def failed_dir(self) -> Path:
        return self.input_dir / FAILED_DIRNAME

    def wav_path(self, output_base: str) -> Path:
        """Path of the assembled WAV for an output base name."""
        return self.output_dir / f"{output_base}.wav"

    def flac_path(self, output_base: str) -> Path:
        """Path of the encoded FLAC for an output base name."""
        return self.output_dir / f"{output_base}.flac"

    def unique_output_base(self, output_base: str, when: datetime | None = None) -> str:
        """
        Return output_base, or a timestamped variant of it when a WAV or FLAC
        of that name already exists in output_dir.
        """
        base = output_base
        while self.wav_path(base).exists() or self.flac_path(base).exists():
            taken = self.flac_path(base) if self.flac_path(base).exists() else self.wav_path(base)
            base = unique_destination(self.output_dir, taken.name, when).stem
        return base

    def is_playlist_candidate(self, path: Path) -> bool:
        """
        Check that path is a regular file directly inside input_dir.

        Files inside processed/ and failed/ are never candidates.
        """
        return path.parent.resolve() == self.input_dir.resolve() and path.is_file()
