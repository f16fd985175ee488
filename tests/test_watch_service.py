"""Test the watch service with a fake orchestrator"""

import asyncio

import pytest

from flac_capture.capture.models import AssembledAudio, AudioFormat, JobResult
from flac_capture.core.file_manager import FAILED_DIRNAME, PROCESSED_DIRNAME
from flac_capture.watch.registry import Admission, JobState
from flac_capture.watch.service import WatchService


class FakeOrchestrator:
    """Succeeds for playlists whose first URL ends in .wav; records every job."""

    def __init__(self, delay=0.0, cancelled=False):
        self.delay = delay
        self.cancelled = cancelled
        self.jobs = []
        self.active = 0
        self.max_active = 0

    async def run(self, job, cancel_event=None):
        self.jobs.append(job)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

        result = JobResult(job=job, cancelled=self.cancelled)
        if job.urls[0].endswith(".wav") and not self.cancelled:
            result.assembled = AssembledAudio(
                path=job.identity.with_suffix(".wav"),
                audio_format=AudioFormat(44100, 16, 2),
                source_count=len(job.urls),
            )
        return result


def write_playlist(directory, name, *urls):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("".join(f"{url}\n" for url in urls), encoding="utf-8")
    return path


@pytest.fixture
def input_dir(temp_dir):
    return temp_dir / "input"


class TestProcessCandidate:
    """Test WatchService.process_candidate()"""

    @pytest.mark.asyncio
    async def test_success_is_moved_to_processed(self, make_config, input_dir):
        orchestrator = FakeOrchestrator()
        service = WatchService(make_config(), orchestrator=orchestrator, use_notifications=False)
        playlist = write_playlist(input_dir, "show.m3u", "http://radio.example/a.wav")

        assert await service.process_candidate(playlist) is True

        assert not playlist.exists()
        assert (input_dir / PROCESSED_DIRNAME / "show.m3u").exists()
        assert service.stats.processed == 1
        assert len(orchestrator.jobs) == 1
        assert orchestrator.jobs[0].output_base.startswith("capture_show_")

    @pytest.mark.asyncio
    async def test_failure_is_moved_to_failed(self, make_config, input_dir):
        service = WatchService(make_config(), orchestrator=FakeOrchestrator(), use_notifications=False)
        playlist = write_playlist(input_dir, "broken.m3u", "http://radio.example/missing")

        assert await service.process_candidate(playlist) is False

        assert (input_dir / FAILED_DIRNAME / "broken.m3u").exists()
        assert service.stats.failed == 1

    @pytest.mark.asyncio
    async def test_empty_playlist_fails_without_running(self, make_config, input_dir):
        orchestrator = FakeOrchestrator()
        service = WatchService(make_config(), orchestrator=orchestrator, use_notifications=False)
        playlist = write_playlist(input_dir, "empty.m3u")

        assert await service.process_candidate(playlist) is False

        assert orchestrator.jobs == []
        assert (input_dir / FAILED_DIRNAME / "empty.m3u").exists()

    @pytest.mark.asyncio
    async def test_concurrent_submissions_run_once(self, make_config, input_dir):
        """The same playlist offered twice at once is processed once"""
        orchestrator = FakeOrchestrator(delay=0.1)
        service = WatchService(make_config(), orchestrator=orchestrator, use_notifications=False)
        playlist = write_playlist(input_dir, "show.m3u", "http://radio.example/a.wav")

        results = await asyncio.gather(
            service.process_candidate(playlist),
            service.process_candidate(playlist),
        )

        assert sorted(results, key=str) == [None, True]
        assert len(orchestrator.jobs) == 1

    @pytest.mark.asyncio
    async def test_one_job_at_a_time(self, make_config, input_dir):
        """A second playlist is turned away while another one runs"""
        orchestrator = FakeOrchestrator(delay=0.1)
        service = WatchService(make_config(), orchestrator=orchestrator, use_notifications=False)
        first = write_playlist(input_dir, "a.m3u", "http://radio.example/a.wav")
        second = write_playlist(input_dir, "b.m3u", "http://radio.example/b.wav")

        results = await asyncio.gather(
            service.process_candidate(first),
            service.process_candidate(second),
        )

        assert results == [True, None]
        assert orchestrator.max_active == 1
        assert second.exists()
        assert service.registry.state_of(second.resolve()) is JobState.DISCOVERED

    @pytest.mark.asyncio
    async def test_relocation_error_stays_terminal(self, make_config, input_dir):
        """A playlist that cannot be moved is not processed again"""
        orchestrator = FakeOrchestrator()
        service = WatchService(make_config(), orchestrator=orchestrator, use_notifications=False)
        playlist = write_playlist(input_dir, "show.m3u", "http://radio.example/a.wav")
        (input_dir / PROCESSED_DIRNAME).write_text("not a directory")

        assert await service.process_candidate(playlist) is True
        assert playlist.exists()
        assert service.stats.relocation_errors == 1
        assert service.registry.state_of(playlist.resolve()) is JobState.PROCESSED

        assert await service.process_candidate(playlist) is None
        assert len(orchestrator.jobs) == 1

    @pytest.mark.asyncio
    async def test_cancelled_job_stays_in_place(self, make_config, input_dir):
        """A stop request before any output leaves the playlist for the next run"""
        service = WatchService(
            make_config(), orchestrator=FakeOrchestrator(cancelled=True), use_notifications=False
        )
        playlist = write_playlist(input_dir, "show.m3u", "http://radio.example/a.wav")

        assert await service.process_candidate(playlist) is None

        assert playlist.exists()
        assert service.registry.state_of(playlist.resolve()) is JobState.DISCOVERED

    @pytest.mark.asyncio
    async def test_vanished_playlist(self, make_config, input_dir):
        orchestrator = FakeOrchestrator()
        service = WatchService(make_config(), orchestrator=orchestrator, use_notifications=False)
        input_dir.mkdir(parents=True, exist_ok=True)

        assert await service.process_candidate(input_dir / "gone.m3u") is None
        assert orchestrator.jobs == []

    @pytest.mark.asyncio
    async def test_same_name_dropped_again_is_not_reprocessed(self, make_config, input_dir):
        """A path that was already processed stays done for the whole session"""
        orchestrator = FakeOrchestrator()
        service = WatchService(make_config(), orchestrator=orchestrator, use_notifications=False)

        playlist = write_playlist(input_dir, "show.m3u", "http://radio.example/a.wav")
        assert await service.process_candidate(playlist) is True

        playlist = write_playlist(input_dir, "show.m3u", "http://radio.example/b.wav")
        assert await service.process_candidate(playlist) is None

        assert len(orchestrator.jobs) == 1
        assert playlist.exists()
        assert service.registry.try_admit(playlist.resolve()) is Admission.ALREADY_DONE
        assert len(list((input_dir / PROCESSED_DIRNAME).iterdir())) == 1


class TestDiscovery:
    """Test pattern matching and scanning"""

    def test_matches_pattern(self, make_config):
        service = WatchService(make_config(), orchestrator=FakeOrchestrator(), use_notifications=False)
        assert service.matches_pattern("show.m3u")
        assert service.matches_pattern("SHOW.M3U8")
        assert not service.matches_pattern("show.txt")
        assert not service.matches_pattern("show.m3u.part")

    def test_submit_ignored_when_not_running(self, make_config, input_dir):
        service = WatchService(make_config(), orchestrator=FakeOrchestrator(), use_notifications=False)
        playlist = write_playlist(input_dir, "show.m3u", "http://radio.example/a.wav")
        service.submit(playlist)
        assert service.registry.state_of(playlist.resolve()) is None

    @pytest.mark.asyncio
    async def test_run_processes_existing_and_new_files(self, make_config, input_dir):
        """The periodic scan picks up files present at start and added later"""
        orchestrator = FakeOrchestrator()
        service = WatchService(make_config(), orchestrator=orchestrator, use_notifications=False)
        write_playlist(input_dir, "first.m3u", "http://radio.example/a.wav")
        write_playlist(input_dir, "notes.txt", "http://radio.example/ignored.wav")
        (input_dir / "folder.m3u").mkdir()

        stop = asyncio.Event()
        task = asyncio.create_task(service.run(stop))

        processed = input_dir / PROCESSED_DIRNAME
        await _wait_for(lambda: (processed / "first.m3u").exists())

        write_playlist(input_dir, "second.m3u8", "http://radio.example/b.wav")
        await _wait_for(lambda: (processed / "second.m3u8").exists())

        stop.set()
        stats = await asyncio.wait_for(task, timeout=5)

        assert stats.processed == 2
        assert stats.failed == 0
        assert [job.name for job in orchestrator.jobs] == ["first.m3u", "second.m3u8"]
        assert (input_dir / "notes.txt").exists()

    @pytest.mark.asyncio
    async def test_run_with_notifications(self, make_config, input_dir):
        """Filesystem events feed the same queue as the scan"""
        orchestrator = FakeOrchestrator()
        config = make_config(**{"watch.scan_interval_seconds": 1})
        input_dir.mkdir(parents=True, exist_ok=True)
        service = WatchService(config, orchestrator=orchestrator)

        stop = asyncio.Event()
        task = asyncio.create_task(service.run(stop))
        await asyncio.sleep(0.3)

        write_playlist(input_dir, "live.m3u", "http://radio.example/a.wav")
        await _wait_for(lambda: (input_dir / PROCESSED_DIRNAME / "live.m3u").exists())

        stop.set()
        stats = await asyncio.wait_for(task, timeout=10)
        assert stats.processed == 1


async def _wait_for(condition, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)
