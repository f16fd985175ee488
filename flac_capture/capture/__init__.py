"""
Capture pipeline for flac-capture.

This package turns a playlist of stream URLs into one WAV file:
    - playlist: Parse playlist files into PlaylistJob objects
    - fetcher: Download each stream into a temporary file
    - assembler: Combine fetched streams into a single WAV
    - orchestrator: Run fetch, assembly and encoding for one job

Usage:
    from flac_capture.capture import CaptureOrchestrator, load_job

    job = load_job(Path("show.m3u"), prefix="capture_")
    result = await CaptureOrchestrator(config).run(job)
"""

from flac_capture.capture.assembler import AudioAssembler
from flac_capture.capture.fetcher import StreamFetcher
from flac_capture.capture.models import (
    AssembledAudio,
    AudioFormat,
    CaptureStage,
    EncodedAudio,
    FetchOutcome,
    FetchResult,
    JobResult,
    PlaylistJob,
)
from flac_capture.capture.orchestrator import CaptureOrchestrator
from flac_capture.capture.playlist import load_job, parse_playlist, read_playlist

__all__ = [
    "AudioAssembler",
    "StreamFetcher",
    "CaptureOrchestrator",
    "AssembledAudio",
    "AudioFormat",
    "CaptureStage",
    "EncodedAudio",
    "FetchOutcome",
    "FetchResult",
    "JobResult",
    "PlaylistJob",
    "load_job",
    "parse_playlist",
    "read_playlist",
]
