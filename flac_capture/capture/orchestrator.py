"""
Capture orchestrator.

Runs one PlaylistJob through the pipeline:

    IDLE ─► FETCHING ─► ASSEMBLING ─► ENCODING ─► DONE
                            │              ▲
                            │              └── only when auto_convert is on
                            └── no stream fetched / AssemblyError ─► DONE (failed)

Rules:
    - URLs are fetched one at a time, in playlist order.
    - A fetch error skips that URL; a cancellation stops the remaining URLs.
    - Assembly runs on whatever was fetched, even after a cancellation.
    - A job succeeds when a WAV was assembled. Encoding problems are logged
      and recorded on the JobResult but never fail the job.
"""

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Callable

from flac_capture.capture.assembler import AudioAssembler
from flac_capture.capture.fetcher import StreamFetcher
from flac_capture.capture.models import CaptureStage, FetchOutcome, JobResult, PlaylistJob
from flac_capture.core.config import Config
from flac_capture.core.exceptions import AssemblyError, CancellationError, EncodingError
from flac_capture.core.file_manager import FileManager, remove_quietly
from flac_capture.core.logger import BANNER, get_logger, log_banner
from flac_capture.encode.flac import LosslessEncoder

logger = get_logger(__name__)


FetcherFactory = Callable[[PlaylistJob], StreamFetcher]


class CaptureOrchestrator:
    """
    Drives fetch, assembly and encoding for one playlist at a time.

    Collaborators are injectable so tests can replace any stage.

    Attributes:
        config: Application configuration.
        file_manager: Resolves output paths.
    """

    def __init__(
        self,
        config: Config,
        fetcher_factory: FetcherFactory | None = None,
        assembler: AudioAssembler | None = None,
        encoder: LosslessEncoder | None = None,
        file_manager: FileManager | None = None
    ) -> None:
        self.config = config
        self.file_manager = file_manager or FileManager(
            config.watch.input_directory, config.output.directory
        )
        self._fetcher_factory = fetcher_factory or self._default_fetcher
        self._assembler = assembler or AudioAssembler()
        self._encoder = encoder or LosslessEncoder(flac_executable=config.encoding.flac_executable)

    def _default_fetcher(self, job: PlaylistJob) -> StreamFetcher:
        return StreamFetcher(
            timeout_seconds=self.config.capture.fetch_timeout_seconds,
            temp_dir=self.config.capture.temp_directory,
            playlist_name=job.name,
        )

    async def run(self, job: PlaylistJob, cancel_event: asyncio.Event | None = None) -> JobResult:
        """
        Process one job to completion.

        Args:
            job: The playlist to capture.
            cancel_event: Stop request shared with the caller.

        Returns:
            JobResult in stage DONE. Check result.succeeded.
        """
        output_base = self.file_manager.unique_output_base(job.output_base)
        if output_base != job.output_base:
            logger.info(f"Output name {job.output_base} is taken, using {output_base}")
            job = replace(job, output_base=output_base)

        result = JobResult(job=job)

        log_banner(logger, f"CAPTURE: {job.name} ({len(job.urls)} stream(s))")

        try:
            await self._fetch_all(job, result, cancel_event)

            wav_path = self.file_manager.wav_path(job.output_base)
            if not await self._assemble(result, wav_path):
                return result

            if not self.config.encoding.auto_convert:
                logger.info(f"Output: {wav_path} (FLAC conversion disabled)")
                return result

            if result.cancelled:
                logger.warning(f"Capture was cancelled, keeping uncompressed output: {wav_path}")
                return result

            await self._encode(result, cancel_event)
            return result
        finally:
            # Temporary files of a run never outlive it
            for fetch in result.fetch_results:
                remove_quietly(fetch.path)
            result.stage = CaptureStage.DONE
            self._log_summary(result)

    async def _fetch_all(
        self,
        job: PlaylistJob,
        result: JobResult,
        cancel_event: asyncio.Event | None
    ) -> None:
        result.stage = CaptureStage.FETCHING

        async with self._fetcher_factory(job) as fetcher:
            for index, url in enumerate(job.urls, start=1):
                logger.info(f"[{index}/{len(job.urls)}] {url}")
                fetch = await fetcher.fetch(url, cancel_event)
                result.fetch_results.append(fetch)

                if fetch.outcome is FetchOutcome.CANCELLED:
                    result.cancelled = True
                    skipped = len(job.urls) - index
                    logger.warning(f"Cancelled, {skipped} remaining stream(s) skipped")
                    break

        ok = len(result.successful_fetches)
        logger.info(f"Fetched {ok}/{len(job.urls)} stream(s)")

    async def _assemble(self, result: JobResult, wav_path: Path) -> bool:
        result.stage = CaptureStage.ASSEMBLING

        if not result.successful_fetches:
            result.failure_reason = "no stream could be fetched"
            logger.error(f"No audio captured for {result.job.name}")
            return False

        logger.info(f"Combining {len(result.successful_fetches)} stream(s) into {wav_path.name}...")
        try:
            result.assembled = await asyncio.to_thread(
                self._assembler.assemble, list(result.fetch_results), wav_path
            )
        except AssemblyError as e:
            result.failure_reason = e.message
            logger.error(f"Assembly failed for {result.job.name}: {e.message}")
            return False

        return True

    async def _encode(self, result: JobResult, cancel_event: asyncio.Event | None) -> None:
        result.stage = CaptureStage.ENCODING
        wav_path = result.assembled.path
        encoding = self.config.encoding

        try:
            result.encoded = await self._encoder.encode(
                wav_path,
                self.file_manager.flac_path(result.job.output_base),
                encoding.quality,
                delete_source=encoding.delete_uncompressed,
                cancel_event=cancel_event,
            )
        except CancellationError as e:
            result.cancelled = True
            result.encode_error = e
            logger.warning(f"Encoding cancelled, uncompressed output kept: {wav_path}")
        except EncodingError as e:
            result.encode_error = e
            logger.error(f"FLAC conversion failed: {e.message}")
            logger.error(f"Uncompressed output kept: {wav_path}")

    def _log_summary(self, result: JobResult) -> None:
        log_banner(logger, f"RESULT: {result.job.name}")
        errors = sum(1 for f in result.fetch_results if f.outcome is FetchOutcome.ERROR)
        logger.info(f"Streams:           {len(result.job.urls)}")
        logger.info(f"Fetched:           {len(result.successful_fetches)}")
        logger.info(f"Failed:            {errors}")
        if result.succeeded:
            logger.info(f"Output:            {result.final_path}")
        else:
            logger.error(f"Status:            FAILED ({result.failure_reason})")
        if result.cancelled:
            logger.warning("Status:            CANCELLED")
        logger.info(BANNER)
