"""
Playlist source.

A playlist is a UTF-8 text file with one stream URL per line. Blank lines
and lines starting with '#' (M3U directives such as #EXTM3U and #EXTINF
included) are ignored. URLs are not validated here: a bad URL surfaces as a
FetchError for that line only.

Example:
    #EXTM3U
    # Morning show
    https://radio.example/part1.wav

    https://radio.example/part2.wav
"""

from datetime import datetime
from pathlib import Path

from flac_capture.capture.models import PlaylistJob
from flac_capture.core.exceptions import EmptyPlaylistError, PlaylistError
from flac_capture.core.file_manager import build_output_base
from flac_capture.core.logger import get_logger

logger = get_logger(__name__)


COMMENT_PREFIX = "#"


def parse_playlist(text: str) -> list[str]:
    """
    Extract stream URLs from playlist text.

    Args:
        text: Raw playlist content.

    Returns:
        Trimmed non-comment lines in file order. May be empty.
    """
    urls = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(COMMENT_PREFIX):
            continue
        urls.append(stripped)
    return urls


def read_playlist(path: Path) -> list[str]:
    """
    Read and parse a playlist file.

    A UTF-8 byte order mark is tolerated.

    Raises:
        PlaylistError: If the file cannot be read or is not valid UTF-8.
    """
    try:
        text = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise PlaylistError(
            f"Cannot read playlist {path.name}: {e}",
            details={"path": str(path), "original_error": str(e)}
        ) from e
    return parse_playlist(text)


def load_job(path: Path, prefix: str = "", now: datetime | None = None) -> PlaylistJob:
    """
    Build a PlaylistJob from a playlist file.

    Args:
        path: Playlist file.
        prefix: Output filename prefix.
        now: Discovery time (defaults to now). Also stamps the output name.

    Returns:
        A job with at least one URL.

    Raises:
        PlaylistError: If the file cannot be read.
        EmptyPlaylistError: If no URL remains after filtering.
    """
    now = now or datetime.now()
    urls = read_playlist(path)

    if not urls:
        raise EmptyPlaylistError(
            f"Playlist {path.name} contains no stream URLs",
            details={"path": str(path)}
        )

    logger.debug(f"Loaded {len(urls)} URL(s) from {path.name}")

    return PlaylistJob(
        identity=path.resolve(),
        urls=tuple(urls),
        discovered_at=now,
        output_base=build_output_base(prefix, path, now),
    )
