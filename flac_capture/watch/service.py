"""
Watch service.

Monitors the input directory and runs every new playlist through the
capture pipeline exactly once.

Discovery:
    Two sources feed the same queue:
        - watchdog filesystem events (created, modified, moved-in), delivered
          on the observer thread and handed to the event loop with
          call_soon_threadsafe()
        - a full directory scan at startup and every scan_interval_seconds,
          which also catches anything the notifications missed
    Only regular files directly inside the input directory whose name
    matches one of the configured patterns are considered.

Processing:
    A single dispatcher task takes candidates from the queue and calls
    process_candidate(), which:
        1. asks the JobRegistry for admission (atomic single-flight check)
        2. waits settle_seconds so a file still being written is complete
        3. reads the playlist (unreadable or empty -> failed)
        4. runs the CaptureOrchestrator
        5. marks the identity terminal and moves the file to processed/ or
           failed/ (a failed move is logged, the identity stays terminal)

Shutdown:
    Setting the stop event ends the scan loop, stops the observer and sets
    the shared cancel event so the in-flight job stops fetching.
"""

import asyncio
import contextlib
import fnmatch
import os
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer

from flac_capture.capture.orchestrator import CaptureOrchestrator
from flac_capture.capture.playlist import load_job
from flac_capture.core.config import Config
from flac_capture.core.exceptions import PlaylistError, RelocationError
from flac_capture.core.file_manager import FileManager, relocate_playlist
from flac_capture.core.logger import BANNER, get_logger, log_banner
from flac_capture.watch.registry import TERMINAL_STATES, Admission, JobRegistry, JobState

logger = get_logger(__name__)


# Time allowed for the in-flight job to wind down after a stop request
SHUTDOWN_TIMEOUT = 60.0


@dataclass
class WatchStats:
    """
    Counters for one watch session.

    Attributes:
        processed: Playlists that produced audio.
        failed: Playlists that produced nothing.
        relocation_errors: Playlists that could not be moved afterwards.
    """
    processed: int = 0
    failed: int = 0
    relocation_errors: int = 0

    @property
    def total(self) -> int:
        return self.processed + self.failed


class PlaylistEventHandler(PatternMatchingEventHandler):
    """Forwards watchdog events for playlist files to WatchService.submit()."""

    def __init__(self, service: "WatchService", patterns: tuple[str, ...]) -> None:
        super().__init__(patterns=list(patterns), ignore_directories=True, case_sensitive=False)
        self._service = service

    def on_created(self, event: FileSystemEvent) -> None:
        self._service.submit(Path(os.fsdecode(event.src_path)))

    def on_modified(self, event: FileSystemEvent) -> None:
        self._service.submit(Path(os.fsdecode(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        self._service.submit(Path(os.fsdecode(event.dest_path)))


class WatchService:
    """
    Supervisor that turns arriving playlist files into capture jobs.

    Attributes:
        config: Application configuration.
        registry: Lifecycle state of every identity seen.
        orchestrator: Runs one job.
        stats: Session counters.
    """

    def __init__(
        self,
        config: Config,
        orchestrator: CaptureOrchestrator | None = None,
        registry: JobRegistry | None = None,
        use_notifications: bool = True
    ) -> None:
        self.config = config
        self.input_dir = config.watch.input_directory
        self.file_manager = FileManager(self.input_dir, config.output.directory)
        self.registry = registry or JobRegistry()
        self.orchestrator = orchestrator or CaptureOrchestrator(config, file_manager=self.file_manager)
        self.use_notifications = use_notifications
        self.stats = WatchStats()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._queued: set[Path] = set()
        self._cancel_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def matches_pattern(self, name: str) -> bool:
        lowered = name.lower()
        return any(fnmatch.fnmatch(lowered, pattern.lower()) for pattern in self.config.watch.patterns)

    def submit(self, path: Path) -> None:
        """
        Offer a path for processing. Safe to call from any thread.

        Calls made while the service is not running are ignored.
        """
        loop = self._loop
        if loop is None:
            return
        loop.call_soon_threadsafe(self._enqueue, path)

    def _enqueue(self, path: Path) -> None:
        if self._queue is None:
            return

        identity = path.resolve()
        if identity in self._queued:
            return
        if not self.matches_pattern(identity.name):
            return
        if not self.file_manager.is_playlist_candidate(identity):
            return
        state = self.registry.state_of(identity)
        if state in TERMINAL_STATES or state is JobState.PROCESSING:
            return

        if self.registry.discover(identity):
            logger.info(f"New playlist detected: {identity.name}")

        self._queued.add(identity)
        self._queue.put_nowait(identity)

    def scan_once(self) -> None:
        """
        Queue every matching playlist currently in the input directory.

        Raises:
            OSError: If the directory cannot be listed.
        """
        for entry in sorted(self.input_dir.iterdir()):
            if entry.is_file() and self.matches_pattern(entry.name):
                self._enqueue(entry)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_candidate(self, path: Path) -> bool | None:
        """
        Admit and process one playlist.

        Args:
            path: Playlist file.

        Returns:
            True if the job succeeded, False if it failed, None if the
            playlist was not processed (not admitted, or vanished).
        """
        identity = path.resolve()

        admission = self.registry.try_admit(identity)
        if admission is not Admission.ADMITTED:
            logger.debug(f"Skipping {identity.name}: {admission.value}")
            return None

        try:
            await asyncio.sleep(self.config.watch.settle_seconds)

            if not identity.is_file():
                logger.warning(f"Playlist disappeared before processing: {identity.name}")
                self.registry.release(identity)
                return None

            logger.info(f"Processing playlist: {identity.name}")
            succeeded = await self._run_job(identity)
        except asyncio.CancelledError:
            self.registry.release(identity)
            raise

        if succeeded is None:
            logger.warning(f"{identity.name} was interrupted and stays in place for the next run")
            self.registry.release(identity)
            return None

        self._finish(identity, succeeded)
        return succeeded

    async def _run_job(self, identity: Path) -> bool | None:
        """Run the pipeline; None means a stop request interrupted it before any output."""
        try:
            job = load_job(identity, prefix=self.config.output.filename_prefix)
        except PlaylistError as e:
            logger.error(f"{e.message}")
            return False

        try:
            result = await self.orchestrator.run(job, self._cancel_event)
        except Exception:
            logger.exception(f"Unexpected error while processing {identity.name}")
            return False

        if result.cancelled and not result.succeeded:
            return None
        return result.succeeded

    def _finish(self, identity: Path, succeeded: bool) -> None:
        self.registry.complete(identity, succeeded)
        if succeeded:
            self.stats.processed += 1
        else:
            self.stats.failed += 1

        try:
            relocate_playlist(identity, self.input_dir, succeeded)
        except RelocationError as e:
            self.stats.relocation_errors += 1
            logger.warning(f"{e.message}")
            logger.warning(f"{identity.name} stays in the input directory and will not be retried this session")

    async def _dispatch(self) -> None:
        while True:
            identity = await self._queue.get()
            if identity is None or self._cancel_event.is_set():
                return
            self._queued.discard(identity)
            await self.process_candidate(identity)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _start_observer(self) -> Observer | None:
        if not self.use_notifications:
            return None

        try:
            observer = Observer()
            observer.schedule(
                PlaylistEventHandler(self, self.config.watch.patterns),
                str(self.input_dir),
                recursive=False,
            )
            observer.start()
        except (OSError, RuntimeError) as e:
            logger.error(f"Filesystem notifications unavailable ({e}); relying on periodic scans")
            return None

        logger.info("Filesystem notifications enabled")
        return observer

    async def run(self, stop_event: asyncio.Event) -> WatchStats:
        """
        Watch the input directory until stop_event is set.

        Returns:
            Session statistics.
        """
        watch = self.config.watch
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._cancel_event.clear()

        log_banner(logger, "WATCH SERVICE")
        logger.info(f"Input directory:   {self.input_dir}")
        logger.info(f"Output directory:  {self.config.output.directory}")
        logger.info(f"Patterns:          {', '.join(watch.patterns)}")
        logger.info(f"Rescan interval:   {watch.scan_interval_seconds:g}s")
        logger.info(f"Monitor volume:    {self.config.capture.monitor_volume:.0%}")
        logger.info(f"FLAC conversion:   {'on' if self.config.encoding.auto_convert else 'off'}")
        logger.info(BANNER)

        observer = self._start_observer()
        dispatcher = asyncio.create_task(self._dispatch())

        try:
            while not stop_event.is_set():
                try:
                    self.scan_once()
                except OSError as e:
                    logger.error(f"Cannot scan {self.input_dir}: {e}")

                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=watch.scan_interval_seconds)
        finally:
            await self._shutdown(observer, dispatcher)

        return self.stats

    async def _shutdown(self, observer: Observer | None, dispatcher: asyncio.Task) -> None:
        logger.info("Stopping watch service...")
        self._loop = None
        self._cancel_event.set()

        if observer is not None:
            observer.stop()
            await asyncio.to_thread(observer.join, 5.0)

        self._queue.put_nowait(None)
        try:
            await asyncio.wait_for(dispatcher, timeout=SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.registry.processing_count()} in-flight job(s) did not stop in time and were abandoned"
            )

        states = self.registry.counts()
        log_banner(logger, "SESSION STATISTICS")
        logger.info(f"Processed:         {self.stats.processed}")
        logger.info(f"Failed:            {self.stats.failed}")
        if states[JobState.DISCOVERED]:
            logger.info(f"Not started:       {states[JobState.DISCOVERED]}")
        if self.stats.relocation_errors:
            logger.warning(f"Not relocated:     {self.stats.relocation_errors}")
        logger.info(BANNER)
