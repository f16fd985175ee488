"""
Lossless encoding for flac-capture.

Usage:
    from flac_capture.encode import LosslessEncoder

    encoder = LosslessEncoder()
    encoded = await encoder.encode(wav_path, quality=100)
"""

from flac_capture.encode.flac import (
    ENCODER_FLAC_CLI,
    ENCODER_SOUNDFILE,
    LosslessEncoder,
    find_flac_executable,
    flac_level_flag,
)
from flac_capture.encode.models import EncodedAudio

__all__ = [
    "LosslessEncoder",
    "EncodedAudio",
    "find_flac_executable",
    "flac_level_flag",
    "ENCODER_SOUNDFILE",
    "ENCODER_FLAC_CLI",
]
