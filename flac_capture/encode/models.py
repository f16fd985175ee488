"""Result type of the lossless encoder."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class EncodedAudio:
    """
    A successfully encoded FLAC file.

    Attributes:
        path: Location of the FLAC file.
        source_path: The WAV that was encoded.
        input_size: Size of the WAV in bytes.
        output_size: Size of the FLAC in bytes.
        encoder: "soundfile" (in-process) or "flac-cli" (external).
        source_deleted: True when the WAV was removed after encoding.
    """
    path: Path
    source_path: Path
    input_size: int
    output_size: int
    encoder: str
    source_deleted: bool = False

    @property
    def compression_ratio(self) -> float:
        """Output size over input size (below 1.0 means smaller)."""
        if self.input_size == 0:
            return 0.0
        return self.output_size / self.input_size

    @property
    def size_reduction_percent(self) -> float:
        return (1.0 - self.compression_ratio) * 100
