"""
Audio assembler.

Combines the successfully fetched streams of a playlist into one WAV file.

Behavior:
    - One fetched file that is already a WAV is moved into place unchanged
      (byte-identical output).
    - Anything else is decoded with pydub, conformed to the canonical format
      (the format of the first decoded stream) and appended, in playlist
      order, to a WAV written with soundfile.

Canonical format rules:
    - Sample rate and channel count come from the first stream.
    - 8-bit sources are widened to 16-bit (8-bit WAV is unsigned).
    - 24-bit sources stay 24-bit; 32-bit integer sources stay 32-bit.
    - A later stream with a different rate or channel count is resampled and
      re-channeled to the canonical format, and a warning is logged.

The output is written to "<name>.part" and renamed once complete, so a
half-written WAV never carries the final name. Every temporary fetch file is
removed whether assembly succeeds or not.
"""

import os
import shutil
from pathlib import Path
from typing import Sequence

import numpy as np
import soundfile as sf
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from flac_capture.capture.models import AssembledAudio, AudioFormat, FetchResult
from flac_capture.core.exceptions import AssemblyError
from flac_capture.core.file_manager import remove_quietly
from flac_capture.core.logger import get_logger
from flac_capture.utils import format_duration, format_file_size

logger = get_logger(__name__)


WAV_FORMATS = {"WAV", "WAVEX"}

# libsndfile subtype -> bits per sample
SUBTYPE_BITS = {
    "PCM_S8": 8,
    "PCM_U8": 8,
    "PCM_16": 16,
    "PCM_24": 24,
    "PCM_32": 32,
    "FLOAT": 32,
    "DOUBLE": 32,
}

# canonical bits -> (soundfile subtype, pydub sample width, numpy dtype)
OUTPUT_LAYOUT = {
    16: ("PCM_16", 2, np.int16),
    24: ("PCM_24", 4, np.int32),
    32: ("PCM_32", 4, np.int32),
}

DECODE_ERRORS = (CouldntDecodeError, OSError, ValueError, EOFError)


def probe_format(path: Path) -> tuple[str, AudioFormat] | None:
    """
    Inspect a file with libsndfile.

    Returns:
        (container format, AudioFormat), or None if libsndfile cannot read it.
    """
    try:
        info = sf.info(str(path))
    except (RuntimeError, OSError):
        return None
    bits = SUBTYPE_BITS.get(info.subtype, 16)
    return info.format, AudioFormat(info.samplerate, bits, info.channels)


def is_wav(path: Path) -> bool:
    probed = probe_format(path)
    return probed is not None and probed[0] in WAV_FORMATS


class AudioAssembler:
    """
    Builds the single WAV of a job from its fetch results.

    This class is blocking (file and codec work). The orchestrator runs it
    through asyncio.to_thread().
    """

    def assemble(self, results: Sequence[FetchResult], output_path: Path) -> AssembledAudio:
        """
        Assemble the OK results, in order, into output_path.

        Args:
            results: Fetch results of one job. Non-OK results are ignored.
            output_path: Destination WAV file.

        Returns:
            AssembledAudio describing the written file.

        Raises:
            AssemblyError: If no result is usable, the first stream cannot be
                           decoded, or the output cannot be written.
        """
        sources = [r.path for r in results if r.ok and r.path is not None and r.path.exists()]

        try:
            if not sources:
                raise AssemblyError(
                    "No successfully fetched streams to assemble",
                    details={"output": str(output_path), "attempted": len(results)}
                )

            output_path.parent.mkdir(parents=True, exist_ok=True)

            if len(sources) == 1 and is_wav(sources[0]):
                return self._adopt(sources[0], output_path)

            return self._combine(sources, output_path)
        finally:
            for result in results:
                remove_quietly(result.path)

    def _adopt(self, source: Path, output_path: Path) -> AssembledAudio:
        """Move a single WAV into place without touching its bytes."""
        _, audio_format = probe_format(source)

        try:
            shutil.move(str(source), str(output_path))
        except OSError as e:
            raise AssemblyError(
                f"Cannot move stream to {output_path}: {e}",
                details={"source": str(source), "output": str(output_path)}
            ) from e

        logger.info(f"Single WAV stream saved as {output_path.name} ({audio_format})")
        return AssembledAudio(
            path=output_path,
            audio_format=audio_format,
            source_count=1,
            copied=True,
        )

    def _combine(self, sources: list[Path], output_path: Path) -> AssembledAudio:
        part_path = output_path.with_name(output_path.name + ".part")
        canonical: AudioFormat | None = None
        writer: sf.SoundFile | None = None
        frames = 0
        used = 0

        try:
            for index, source in enumerate(sources, start=1):
                try:
                    segment, source_format = self._decode(source)
                    if canonical is None:
                        canonical = _canonical_format(source_format)
                        logger.info(f"Canonical format: {canonical}")
                    samples = self._conform(segment, source_format, canonical, index)
                except DECODE_ERRORS as e:
                    if writer is None:
                        raise AssemblyError(
                            f"Cannot decode stream {index}/{len(sources)}: {e}",
                            details={"source": str(source), "original_error": str(e)}
                        ) from e
                    logger.error(f"Skipping stream {index}/{len(sources)}, cannot decode: {e}")
                    continue

                if writer is None:
                    subtype = OUTPUT_LAYOUT[canonical.bits_per_sample][0]
                    writer = sf.SoundFile(
                        str(part_path),
                        mode="w",
                        samplerate=canonical.sample_rate,
                        channels=canonical.channels,
                        format="WAV",
                        subtype=subtype,
                    )

                writer.write(samples)
                frames += len(samples)
                used += 1
                logger.debug(f"Appended stream {index}/{len(sources)}: {len(samples)} frames")

            writer.close()
            writer = None
            os.replace(part_path, output_path)

        except (RuntimeError, OSError) as e:
            raise AssemblyError(
                f"Cannot write {output_path.name}: {e}",
                details={"output": str(output_path), "original_error": str(e)}
            ) from e
        finally:
            if writer is not None:
                writer.close()
            remove_quietly(part_path)

        duration = frames / canonical.sample_rate
        logger.info(
            f"Assembled {used} stream(s) into {output_path.name}: "
            f"{format_duration(duration)}, {format_file_size(output_path.stat().st_size)}"
        )
        return AssembledAudio(
            path=output_path,
            audio_format=canonical,
            source_count=used,
            frames=frames,
        )

    def _decode(self, source: Path) -> tuple[AudioSegment, AudioFormat]:
        """
        Decode a fetched file.

        WAV input is parsed by pydub directly; other containers go through
        ffmpeg.
        """
        probed = probe_format(source)
        if probed is not None and probed[0] in WAV_FORMATS:
            segment = AudioSegment.from_file(str(source), format="wav")
        else:
            segment = AudioSegment.from_file(str(source))

        bits = segment.sample_width * 8
        # pydub stores 24-bit audio in 32-bit containers
        if probed is not None and probed[1].bits_per_sample == 24 and segment.sample_width == 4:
            bits = 24

        return segment, AudioFormat(segment.frame_rate, bits, segment.channels)

    def _conform(
        self,
        segment: AudioSegment,
        source_format: AudioFormat,
        canonical: AudioFormat,
        index: int
    ) -> np.ndarray:
        """Convert a segment to the canonical layout and return interleaved frames."""
        if (source_format.sample_rate, source_format.channels) != (canonical.sample_rate, canonical.channels):
            logger.warning(
                f"Stream {index} is {source_format}, converting to {canonical}"
            )
            segment = segment.set_frame_rate(canonical.sample_rate).set_channels(canonical.channels)

        _, width, dtype = OUTPUT_LAYOUT[canonical.bits_per_sample]
        segment = segment.set_sample_width(width)

        samples = np.frombuffer(segment.raw_data, dtype=dtype)
        return samples.reshape(-1, canonical.channels)


def _canonical_format(first: AudioFormat) -> AudioFormat:
    bits = first.bits_per_sample
    if bits not in OUTPUT_LAYOUT:
        bits = 16
    return AudioFormat(first.sample_rate, bits, first.channels)
