"""Test playlist parsing and job creation"""

from datetime import datetime

import pytest

from flac_capture.capture.playlist import load_job, parse_playlist, read_playlist
from flac_capture.core.exceptions import EmptyPlaylistError, PlaylistError


class TestParsePlaylist:
    """Test playlist text parsing"""

    def test_comments_and_blank_lines_are_skipped(self):
        text = (
            "#EXTM3U\n"
            "\n"
            "#EXTINF:123,First\n"
            "  https://radio.example/one.wav  \n"
            "   \n"
            "https://radio.example/two.mp3\r\n"
        )
        assert parse_playlist(text) == [
            "https://radio.example/one.wav",
            "https://radio.example/two.mp3",
        ]

    def test_order_and_duplicates_are_kept(self):
        """Duplicate URLs are fetched again"""
        text = "http://a/1\nhttp://a/2\nhttp://a/1\n"
        assert parse_playlist(text) == ["http://a/1", "http://a/2", "http://a/1"]

    def test_only_comments(self):
        assert parse_playlist("# nothing\n#EXTM3U\n\n") == []


class TestReadPlaylist:
    """Test reading playlist files"""

    def test_byte_order_mark(self, temp_dir):
        path = temp_dir / "bom.m3u"
        path.write_bytes(b"\xef\xbb\xbfhttp://radio.example/a.wav\n")
        assert read_playlist(path) == ["http://radio.example/a.wav"]

    def test_missing_file(self, temp_dir):
        with pytest.raises(PlaylistError):
            read_playlist(temp_dir / "gone.m3u")

    def test_invalid_utf8(self, temp_dir):
        path = temp_dir / "latin1.m3u"
        path.write_bytes(b"http://radio.example/\xe9t\xe9.wav\n")
        with pytest.raises(PlaylistError):
            read_playlist(path)


class TestLoadJob:
    """Test PlaylistJob creation"""

    def test_job_fields(self, temp_dir):
        path = temp_dir / "Morning Show.m3u"
        path.write_text("http://radio.example/a.wav\nhttp://radio.example/b.wav\n", encoding="utf-8")
        now = datetime(2024, 5, 6, 7, 8, 9)

        job = load_job(path, prefix="capture_", now=now)

        assert job.identity == path.resolve()
        assert job.urls == ("http://radio.example/a.wav", "http://radio.example/b.wav")
        assert job.discovered_at == now
        assert job.output_base == "capture_Morning Show_20240506_070809"
        assert job.name == "Morning Show.m3u"

    def test_empty_playlist(self, temp_dir):
        """A playlist without URLs is rejected"""
        path = temp_dir / "empty.m3u"
        path.write_text("#EXTM3U\n\n", encoding="utf-8")

        with pytest.raises(EmptyPlaylistError):
            load_job(path)

    def test_empty_playlist_is_a_playlist_error(self, temp_dir):
        path = temp_dir / "empty.m3u"
        path.write_text("", encoding="utf-8")

        with pytest.raises(PlaylistError):
            load_job(path)
