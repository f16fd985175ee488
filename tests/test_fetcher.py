"""Test the stream fetcher against a local HTTP server"""

import asyncio

import pytest

from flac_capture.capture.fetcher import StreamFetcher, temp_suffix_for
from flac_capture.capture.models import FetchOutcome
from flac_capture.core.exceptions import CancellationError, FetchError


class TestTempSuffix:
    """Test temporary file naming"""

    def test_known_audio_suffix(self):
        assert temp_suffix_for("https://radio.example/show/part1.WAV?token=x") == ".wav"
        assert temp_suffix_for("http://radio.example/a.mp3") == ".mp3"

    def test_unknown_suffix(self):
        assert temp_suffix_for("https://radio.example/live") == ".tmp"
        assert temp_suffix_for("https://radio.example/index.html") == ".tmp"


class TestStreamFetcher:
    """Test fetch outcomes"""

    @pytest.mark.asyncio
    async def test_fetch_ok(self, stream_server, temp_dir):
        """The payload lands in a temporary file owned by the caller"""
        spool = temp_dir / "spool"
        spool.mkdir()

        async with StreamFetcher(timeout_seconds=10, temp_dir=spool) as fetcher:
            result = await fetcher.fetch(str(stream_server.make_url("/tone.wav")))

        assert result.outcome is FetchOutcome.OK
        assert result.ok
        assert result.error is None
        assert result.path.parent == spool
        assert result.path.suffix == ".wav"
        assert result.path.read_bytes() == stream_server.tone_body
        assert result.size == len(stream_server.tone_body)

    @pytest.mark.asyncio
    async def test_http_error(self, stream_server, temp_dir):
        """Non-2xx responses are errors and leave no file behind"""
        spool = temp_dir / "spool"
        spool.mkdir()
        url = str(stream_server.make_url("/missing"))

        async with StreamFetcher(timeout_seconds=10, temp_dir=spool) as fetcher:
            result = await fetcher.fetch(url)

        assert result.outcome is FetchOutcome.ERROR
        assert result.path is None
        assert isinstance(result.error, FetchError)
        assert result.error.status == 404
        assert result.error.url == url
        assert list(spool.iterdir()) == []

    @pytest.mark.asyncio
    async def test_connection_refused(self, temp_dir):
        spool = temp_dir / "spool"
        spool.mkdir()

        async with StreamFetcher(timeout_seconds=5, temp_dir=spool) as fetcher:
            result = await fetcher.fetch("http://127.0.0.1:9/never.wav")

        assert result.outcome is FetchOutcome.ERROR
        assert isinstance(result.error, FetchError)
        assert list(spool.iterdir()) == []

    @pytest.mark.asyncio
    async def test_timeout(self, stream_server, temp_dir):
        """A stream that outlives the timeout is an error"""
        spool = temp_dir / "spool"
        spool.mkdir()

        async with StreamFetcher(timeout_seconds=1, temp_dir=spool) as fetcher:
            result = await fetcher.fetch(str(stream_server.make_url("/trickle")))

        assert result.outcome is FetchOutcome.ERROR
        assert list(spool.iterdir()) == []

    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self, stream_server, temp_dir):
        """Setting the cancel event stops the download promptly"""
        spool = temp_dir / "spool"
        spool.mkdir()
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.3, cancel.set)

        async with StreamFetcher(timeout_seconds=30, temp_dir=spool) as fetcher:
            result = await asyncio.wait_for(
                fetcher.fetch(str(stream_server.make_url("/trickle")), cancel),
                timeout=5,
            )

        assert result.outcome is FetchOutcome.CANCELLED
        assert isinstance(result.error, CancellationError)
        assert not isinstance(result.error, FetchError)
        assert result.path is None
        assert list(spool.iterdir()) == []

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, stream_server, temp_dir):
        """An already-set event means no request is made"""
        cancel = asyncio.Event()
        cancel.set()

        async with StreamFetcher(timeout_seconds=10, temp_dir=temp_dir) as fetcher:
            result = await fetcher.fetch(str(stream_server.make_url("/tone.wav")), cancel)

        assert result.outcome is FetchOutcome.CANCELLED
        assert not any(p.name.startswith("stream_") for p in temp_dir.iterdir())

    @pytest.mark.asyncio
    async def test_fetch_requires_open(self):
        fetcher = StreamFetcher()
        with pytest.raises(RuntimeError):
            await fetcher.fetch("http://radio.example/a.wav")
