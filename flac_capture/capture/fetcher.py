"""
Stream fetcher.

Downloads one stream URL at a time into a temporary file using a shared
aiohttp session. The payload is streamed to disk chunk by chunk and never
held in memory as a whole.

A fetch never raises for per-URL problems. It returns a FetchResult whose
outcome tells the caller what happened:

    OK          payload is in result.path (the caller owns the file)
    ERROR       result.error is a FetchError, no file is left behind
    CANCELLED   result.error is a CancellationError, no file is left behind

Usage:
    async with StreamFetcher(timeout_seconds=1800) as fetcher:
        result = await fetcher.fetch(url, cancel_event=stop)
"""

import asyncio
import os
import tempfile
from pathlib import Path
from urllib.parse import urlparse

import aiohttp
from tqdm import tqdm

from flac_capture.capture.models import FetchOutcome, FetchResult
from flac_capture.core.config import DEFAULT_FETCH_TIMEOUT
from flac_capture.core.exceptions import CancellationError, FetchError
from flac_capture.core.file_manager import remove_quietly
from flac_capture.core.logger import get_logger, log_fetch_failure
from flac_capture.utils import format_file_size

logger = get_logger(__name__)


CHUNK_SIZE = 64 * 1024
TEMP_PREFIX = "stream_"
DEFAULT_SUFFIX = ".tmp"

# Extensions kept on the temporary file so decoders can sniff the container
AUDIO_SUFFIXES = {".wav", ".wave", ".mp3", ".flac", ".ogg", ".oga", ".opus", ".m4a", ".aac", ".aif", ".aiff"}


def temp_suffix_for(url: str) -> str:
    """
    Pick the temporary file suffix for a URL.

    Example:
        temp_suffix_for("https://radio.example/show/part1.WAV?token=x")  # ".wav"
        temp_suffix_for("https://radio.example/live")                   # ".tmp"
    """
    suffix = Path(urlparse(url).path).suffix.lower()
    return suffix if suffix in AUDIO_SUFFIXES else DEFAULT_SUFFIX


class StreamFetcher:
    """
    Sequential HTTP stream downloader.

    Attributes:
        timeout_seconds: Total time allowed for one URL, headers to last byte.
        temp_dir: Directory for temporary files (None = system default).
        chunk_size: Bytes requested per read.
        playlist_name: Used to label entries in the fetch failure report.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_FETCH_TIMEOUT,
        temp_dir: Path | None = None,
        chunk_size: int = CHUNK_SIZE,
        playlist_name: str | None = None
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.temp_dir = temp_dir
        self.chunk_size = chunk_size
        self.playlist_name = playlist_name
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "StreamFetcher":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        """Create the HTTP session. Called by the async context manager."""
        if self._session is not None:
            return
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch(self, url: str, cancel_event: asyncio.Event | None = None) -> FetchResult:
        """
        Download one URL into a fresh temporary file.

        Args:
            url: Stream URL.
            cancel_event: When set, the download stops at the next chunk
                          boundary (or immediately while waiting for data).

        Returns:
            FetchResult describing the outcome.

        Raises:
            RuntimeError: If the fetcher has not been opened.
            asyncio.CancelledError: If the calling task is cancelled. The
                                    partial file is removed first.
        """
        if self._session is None:
            raise RuntimeError("StreamFetcher is not open; use 'async with StreamFetcher()'")

        if cancel_event is not None and cancel_event.is_set():
            return self._cancelled(url, None)

        fd, name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=temp_suffix_for(url), dir=self.temp_dir)
        temp_path = Path(name)
        written = 0

        logger.info(f"Fetching: {url}")

        try:
            with os.fdopen(fd, "wb") as out:
                async with self._session.get(url) as response:
                    if not 200 <= response.status < 300:
                        raise FetchError(
                            f"HTTP {response.status} {response.reason or ''}".strip(),
                            url=url,
                            status=response.status
                        )

                    total = response.content_length
                    if total:
                        logger.info(f"  Size: {format_file_size(total)}")

                    with tqdm(
                        total=total,
                        unit="B",
                        unit_scale=True,
                        unit_divisor=1024,
                        desc="  Downloading",
                        leave=False,
                        disable=None,
                    ) as progress:
                        while True:
                            chunk = await self._read_chunk(response, url, cancel_event)
                            if not chunk:
                                break
                            out.write(chunk)
                            written += len(chunk)
                            progress.update(len(chunk))

        except CancellationError:
            return self._cancelled(url, temp_path)

        except FetchError as e:
            return self._failed(url, temp_path, e)

        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            reason = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e) or type(e).__name__
            error = FetchError(reason, url=url, details={"original_error": repr(e)})
            return self._failed(url, temp_path, error)

        except asyncio.CancelledError:
            remove_quietly(temp_path)
            raise

        logger.info(f"  Downloaded {format_file_size(written)}")
        return FetchResult(url=url, path=temp_path, size=written, outcome=FetchOutcome.OK)

    async def _read_chunk(
        self,
        response: aiohttp.ClientResponse,
        url: str,
        cancel_event: asyncio.Event | None
    ) -> bytes:
        """Read the next chunk, giving up as soon as cancel_event is set."""
        if cancel_event is None:
            return await response.content.read(self.chunk_size)

        if cancel_event.is_set():
            raise CancellationError("Fetch cancelled", details={"url": url})

        read = asyncio.ensure_future(response.content.read(self.chunk_size))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not read.done():
                read.cancel()

        if cancel_event.is_set():
            raise CancellationError("Fetch cancelled", details={"url": url})
        return read.result()

    def _cancelled(self, url: str, temp_path: Path | None) -> FetchResult:
        remove_quietly(temp_path)
        logger.warning(f"Fetch cancelled: {url}")
        return FetchResult(
            url=url,
            outcome=FetchOutcome.CANCELLED,
            error=CancellationError("Fetch cancelled", details={"url": url}),
        )

    def _failed(self, url: str, temp_path: Path, error: FetchError) -> FetchResult:
        remove_quietly(temp_path)
        log_fetch_failure(logger, url, error.message, playlist=self.playlist_name)
        return FetchResult(url=url, outcome=FetchOutcome.ERROR, error=error)
