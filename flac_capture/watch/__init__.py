"""
Input directory supervision for flac-capture.

    - registry: Thread-safe job lifecycle tracking with atomic admission
    - service: Filesystem notifications, periodic rescans and dispatch

Usage:
    from flac_capture.watch import WatchService

    stop = asyncio.Event()
    stats = await WatchService(config).run(stop)
"""

from flac_capture.watch.registry import Admission, JobRegistry, JobState
from flac_capture.watch.service import PlaylistEventHandler, WatchService, WatchStats

__all__ = [
    "Admission",
    "JobRegistry",
    "JobState",
    "PlaylistEventHandler",
    "WatchService",
    "WatchStats",
]
