"""
Data models for the capture pipeline.

These dataclasses are the values passed between pipeline stages:

    PlaylistJob ─► StreamFetcher ─► FetchResult (one per URL)
                                        │
                                        ▼
                                   AudioAssembler ─► AssembledAudio
                                                          │
                                                          ▼
                                                  LosslessEncoder ─► EncodedAudio

A CaptureOrchestrator run over one PlaylistJob yields one JobResult.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from flac_capture.core.exceptions import EncodingError, FlacCaptureError
from flac_capture.encode.models import EncodedAudio


class FetchOutcome(Enum):
    """Outcome of fetching one stream URL."""
    OK = "ok"
    ERROR = "error"
    CANCELLED = "cancelled"


class CaptureStage(Enum):
    """Stages of one orchestrator run, in order."""
    IDLE = "idle"
    FETCHING = "fetching"
    ASSEMBLING = "assembling"
    ENCODING = "encoding"
    DONE = "done"


@dataclass(frozen=True)
class PlaylistJob:
    """
    One playlist accepted for processing.

    Attributes:
        identity: Absolute path of the playlist at discovery time. This is
                  the key used for single-flight admission.
        urls: Stream URLs in playlist order. Never empty.
        discovered_at: When the playlist was read.
        output_base: Output file name without extension.
    """
    identity: Path
    urls: tuple[str, ...]
    discovered_at: datetime
    output_base: str

    @property
    def name(self) -> str:
        return self.identity.name


@dataclass(frozen=True)
class AudioFormat:
    """
    PCM format of a decoded stream.

    Attributes:
        sample_rate: Frames per second (e.g. 44100).
        bits_per_sample: 8, 16, 24 or 32.
        channels: Channel count (1 = mono, 2 = stereo).
    """
    sample_rate: int
    bits_per_sample: int
    channels: int

    @property
    def sample_width(self) -> int:
        """Bytes per sample."""
        return self.bits_per_sample // 8

    def __str__(self) -> str:
        return f"{self.sample_rate} Hz, {self.bits_per_sample}-bit, {self.channels} ch"


@dataclass
class FetchResult:
    """
    Outcome of fetching one URL.

    Attributes:
        url: The URL that was fetched.
        path: Temporary file holding the payload. Only set when outcome is OK.
        size: Bytes written to path.
        outcome: OK, ERROR or CANCELLED.
        error: FetchError on ERROR, CancellationError on CANCELLED.
    """
    url: str
    path: Path | None = None
    size: int = 0
    outcome: FetchOutcome = FetchOutcome.OK
    error: FlacCaptureError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is FetchOutcome.OK


@dataclass(frozen=True)
class AssembledAudio:
    """
    The single WAV produced for a job.

    Attributes:
        path: Location of the WAV file.
        audio_format: Canonical format of the file.
        source_count: Number of fetched streams that went into it.
        copied: True when a single WAV input was adopted byte-for-byte.
        frames: Total frames written (None when the input was adopted).
    """
    path: Path
    audio_format: AudioFormat
    source_count: int
    copied: bool = False
    frames: int | None = None


@dataclass
class JobResult:
    """
    Terminal outcome of one orchestrator run.

    A job succeeds when it produced an AssembledAudio. Encoding problems are
    recorded in encode_error and never turn a success into a failure.

    Attributes:
        job: The playlist job that was run.
        stage: Last stage reached (DONE once finished).
        fetch_results: One FetchResult per attempted URL, in order.
        assembled: The WAV, if one was produced.
        encoded: The FLAC, if encoding ran and succeeded.
        encode_error: EncodingUnavailable/EncodingFailed/CancellationError
                      raised during encoding.
        failure_reason: Why the job failed, if it did.
        cancelled: True when a stop request interrupted the run.
    """
    job: PlaylistJob
    stage: CaptureStage = CaptureStage.IDLE
    fetch_results: list[FetchResult] = field(default_factory=list)
    assembled: AssembledAudio | None = None
    encoded: EncodedAudio | None = None
    encode_error: EncodingError | FlacCaptureError | None = None
    failure_reason: str | None = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.assembled is not None

    @property
    def successful_fetches(self) -> list[FetchResult]:
        return [result for result in self.fetch_results if result.ok]

    @property
    def final_path(self) -> Path | None:
        """The file an operator should look at: the FLAC if any, else the WAV."""
        if self.encoded is not None:
            return self.encoded.path
        if self.assembled is not None:
            return self.assembled.path
        return None
