"""
Lossless encoder (WAV -> FLAC).

Two encoding paths are tried in order:

    1. In-process: libsndfile through soundfile. The input is opened with up
       to 3 attempts (200 ms, then 400 ms between attempts) in case the
       stage that wrote it still holds the file. The result is checked with
       mutagen before it is accepted.
    2. External: the reference `flac` command line tool, located via the
       configured path, the program directory, then PATH.

Errors:
    EncodingUnavailable   no path could run (no libsndfile FLAC support and
                          no flac executable)
    EncodingFailed        the last path that ran produced no valid output
    CancellationError     the cancel event was set while encoding

In every failure case the WAV is left untouched and partial FLAC output is
removed.

Usage:
    encoder = LosslessEncoder(flac_executable=None)
    encoded = await encoder.encode(Path("show.wav"), quality=100, delete_source=True)
    print(f"{encoded.size_reduction_percent:.1f}% smaller")
"""

import asyncio
import os
import shutil
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import Sequence

import soundfile as sf
from mutagen import MutagenError
from mutagen.flac import FLAC

from flac_capture.core.config import validate_quality
from flac_capture.core.exceptions import (
    CancellationError,
    EncodingFailed,
    EncodingUnavailable,
)
from flac_capture.core.file_manager import remove_quietly
from flac_capture.core.logger import get_logger
from flac_capture.encode.models import EncodedAudio
from flac_capture.utils import format_file_size

logger = get_logger(__name__)


ENCODER_SOUNDFILE = "soundfile"
ENCODER_FLAC_CLI = "flac-cli"

OPEN_ATTEMPTS = 3
OPEN_BASE_DELAY = 0.2  # seconds, doubled after each failed attempt

BLOCK_FRAMES = 64 * 1024

# WAV subtype -> FLAC subtype supported by libsndfile
FLAC_SUBTYPES = {
    "PCM_U8": "PCM_S8",
    "PCM_S8": "PCM_S8",
    "PCM_16": "PCM_16",
    "PCM_24": "PCM_24",
}

SUBTYPE_BITS = {"PCM_S8": 8, "PCM_16": 16, "PCM_24": 24}

FLAC_EXECUTABLE_NAMES = ("flac", "flac.exe")


def find_flac_executable(
    explicit: Path | None = None,
    search_dirs: Sequence[Path] = ()
) -> Path | None:
    """
    Locate the external flac encoder.

    Args:
        explicit: Configured executable path, checked first.
        search_dirs: Directories checked next (the program directory by
                     default in LosslessEncoder).

    Returns:
        Path to an executable file, or None if none was found.
    """
    candidates: list[Path] = []
    if explicit is not None:
        candidates.append(explicit)
    for directory in search_dirs:
        candidates.extend(directory / name for name in FLAC_EXECUTABLE_NAMES)

    for candidate in candidates:
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate

    found = shutil.which("flac")
    return Path(found) if found else None


def flac_level_flag(quality: int) -> str:
    """
    Map quality 0-100 onto the flac tool's compression levels.

    100 selects --best (level 8); lower values scale linearly onto -0 to -8.
    """
    if quality >= 100:
        return "--best"
    return f"-{round(quality * 8 / 100)}"


class LosslessEncoder:
    """
    WAV to FLAC encoder with in-process primary path and external fallback.

    Attributes:
        flac_executable: Explicit path to the flac tool, if configured.
        search_dirs: Extra directories searched for the flac tool.
        use_soundfile: Set False to force the external path.
    """

    def __init__(
        self,
        flac_executable: Path | None = None,
        search_dirs: Sequence[Path] | None = None,
        use_soundfile: bool = True
    ) -> None:
        self.flac_executable = flac_executable
        if search_dirs is None:
            search_dirs = [Path(sys.argv[0]).resolve().parent]
        self.search_dirs = list(search_dirs)
        self.use_soundfile = use_soundfile

    def soundfile_available(self) -> bool:
        """True when libsndfile was built with FLAC support."""
        return self.use_soundfile and "FLAC" in sf.available_formats()

    async def encode(
        self,
        input_path: Path,
        output_path: Path | None = None,
        quality: int = 100,
        *,
        delete_source: bool = False,
        cancel_event: asyncio.Event | None = None
    ) -> EncodedAudio:
        """
        Encode a WAV file to FLAC.

        Args:
            input_path: WAV file to encode.
            output_path: Destination (defaults to input_path with .flac).
            quality: 0 (fastest) to 100 (smallest output).
            delete_source: Delete input_path after a successful encode.
            cancel_event: When set, encoding stops and partial output is removed.

        Returns:
            EncodedAudio with sizes and the encoder that was used.

        Raises:
            ConfigurationError: If quality is outside 0-100.
            EncodingFailed: If the input is missing or the encoder failed.
            EncodingUnavailable: If no encoder could be run.
            CancellationError: If cancel_event was set.
        """
        quality = validate_quality(quality, "quality")
        if output_path is None:
            output_path = input_path.with_suffix(".flac")

        if not input_path.is_file():
            raise EncodingFailed(
                f"Input file not found: {input_path}",
                source_path=input_path
            )

        input_size = input_path.stat().st_size
        logger.info(f"Converting to FLAC (quality: {quality})...")

        encoder_name: str | None = None

        if self.soundfile_available():
            try:
                await self._encode_in_process(input_path, output_path, quality, cancel_event)
                encoder_name = ENCODER_SOUNDFILE
            except (CancellationError, asyncio.CancelledError):
                remove_quietly(output_path)
                raise
            except (EncodingFailed, RuntimeError, OSError, ValueError) as e:
                remove_quietly(output_path)
                logger.warning(f"  In-process FLAC encoder failed: {e}")
                logger.info("  Falling back to external flac encoder...")
        else:
            logger.info("  In-process FLAC encoder not available, using external flac encoder")

        if encoder_name is None:
            await self._encode_external(input_path, output_path, quality, cancel_event)
            encoder_name = ENCODER_FLAC_CLI

        encoded = EncodedAudio(
            path=output_path,
            source_path=input_path,
            input_size=input_size,
            output_size=output_path.stat().st_size,
            encoder=encoder_name,
        )

        logger.info(f"FLAC output: {output_path}")
        logger.info(
            f"  Size: {format_file_size(encoded.input_size)} -> {format_file_size(encoded.output_size)}"
        )
        logger.info(f"  Compression: {encoded.size_reduction_percent:.1f}% reduction")

        if delete_source:
            try:
                input_path.unlink()
                encoded = replace(encoded, source_deleted=True)
                logger.info(f"  Deleted uncompressed file: {input_path.name}")
            except OSError as e:
                logger.warning(f"  Could not delete uncompressed file {input_path}: {e}")

        return encoded

    async def _open_with_retry(self, input_path: Path) -> sf.SoundFile:
        """Open the WAV, retrying while another writer may still hold it."""
        delay = OPEN_BASE_DELAY
        attempt = 1
        while True:
            try:
                return sf.SoundFile(str(input_path))
            except (RuntimeError, OSError) as e:
                if attempt >= OPEN_ATTEMPTS:
                    raise
                logger.info(
                    f"  Waiting for file to be released (attempt {attempt}/{OPEN_ATTEMPTS}): {e}"
                )
                await asyncio.sleep(delay)
                delay *= 2
                attempt += 1

    async def _encode_in_process(
        self,
        input_path: Path,
        output_path: Path,
        quality: int,
        cancel_event: asyncio.Event | None
    ) -> None:
        source = await self._open_with_retry(input_path)
        stop = threading.Event()
        watcher = None
        if cancel_event is not None:
            if cancel_event.is_set():
                stop.set()
            watcher = asyncio.ensure_future(_relay_cancel(cancel_event, stop))

        try:
            await asyncio.to_thread(self._transcode, source, input_path, output_path, quality, stop)
        except asyncio.CancelledError:
            stop.set()
            raise
        finally:
            if watcher is not None:
                watcher.cancel()

    def _transcode(
        self,
        source: sf.SoundFile,
        input_path: Path,
        output_path: Path,
        quality: int,
        stop: threading.Event
    ) -> None:
        """Blocking copy of source into a FLAC file, block by block."""
        with source:
            subtype = FLAC_SUBTYPES.get(source.subtype)
            if subtype is None:
                raise EncodingFailed(
                    f"Sample format {source.subtype} is not supported by the in-process encoder",
                    source_path=input_path,
                    details={"subtype": source.subtype}
                )

            logger.info(
                f"  Input format: {source.samplerate} Hz, {source.subtype_info}, {source.channels} ch"
            )

            try:
                with sf.SoundFile(
                    str(output_path),
                    mode="w",
                    samplerate=source.samplerate,
                    channels=source.channels,
                    format="FLAC",
                    subtype=subtype,
                    compression_level=quality / 100,
                ) as out:
                    for block in source.blocks(blocksize=BLOCK_FRAMES, dtype="int32", always_2d=True):
                        if stop.is_set():
                            raise CancellationError(
                                "Encoding cancelled",
                                details={"source_path": str(input_path)}
                            )
                        out.write(block)
            except CancellationError:
                # the awaiting task may already have been cancelled
                remove_quietly(output_path)
                raise

            self._verify(
                output_path,
                input_path,
                (source.samplerate, source.channels, SUBTYPE_BITS[subtype], source.frames),
            )

    def _verify(
        self,
        output_path: Path,
        input_path: Path,
        expected: tuple[int, int, int, int]
    ) -> None:
        """Check rate, channels, bit depth and length of the written FLAC."""
        try:
            info = FLAC(str(output_path)).info
        except MutagenError as e:
            raise EncodingFailed(
                f"Encoded file is not valid FLAC: {e}",
                source_path=input_path
            ) from e

        actual = (info.sample_rate, info.channels, info.bits_per_sample, info.total_samples)
        if actual != expected:
            raise EncodingFailed(
                "Encoded FLAC does not match the input",
                source_path=input_path,
                details={"expected": expected, "actual": actual}
            )

    async def _encode_external(
        self,
        input_path: Path,
        output_path: Path,
        quality: int,
        cancel_event: asyncio.Event | None
    ) -> None:
        executable = find_flac_executable(self.flac_executable, self.search_dirs)
        if executable is None:
            logger.error("FLAC encoder (flac) not found.")
            logger.error("  Install it from https://xiph.org/flac/ or set encoding.flac_executable")
            raise EncodingUnavailable(
                "No FLAC encoder available",
                source_path=input_path
            )

        args = [
            str(executable),
            flac_level_flag(quality),
            "--verify",
            "--silent",
            "-f",
            "-o", str(output_path),
            str(input_path),
        ]
        logger.debug(f"Running: {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodingFailed(
                f"Cannot run {executable}: {e}",
                source_path=input_path,
                details={"executable": str(executable)}
            ) from e

        communicate = asyncio.ensure_future(process.communicate())
        waiter = None
        try:
            if cancel_event is not None:
                waiter = asyncio.ensure_future(cancel_event.wait())
                await asyncio.wait({communicate, waiter}, return_when=asyncio.FIRST_COMPLETED)
                if not communicate.done():
                    raise CancellationError(
                        "Encoding cancelled",
                        details={"source_path": str(input_path)}
                    )
            _, stderr = await communicate
        except (CancellationError, asyncio.CancelledError):
            _kill(process)
            await process.wait()
            communicate.cancel()
            remove_quietly(output_path)
            raise
        finally:
            if waiter is not None:
                waiter.cancel()

        if process.returncode != 0 or not output_path.exists():
            remove_quietly(output_path)
            message = stderr.decode("utf-8", errors="replace").strip()
            raise EncodingFailed(
                f"flac exited with code {process.returncode}",
                source_path=input_path,
                details={"exit_code": process.returncode, "stderr": message[-500:]}
            )


async def _relay_cancel(cancel_event: asyncio.Event, stop: threading.Event) -> None:
    await cancel_event.wait()
    stop.set()


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
