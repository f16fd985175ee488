"""Test configuration and fixtures"""

import asyncio
import os
import tempfile
from pathlib import Path

import numpy as np
import pytest
import pytest_asyncio
import soundfile as sf
from aiohttp import web
from aiohttp.test_utils import TestServer

from flac_capture.core.config import ENV_PREFIX, load_config


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture(autouse=True)
def clean_environment(temp_dir, monkeypatch):
    """Isolate tests from FLAC_CAPTURE_* variables and any config.yaml in the cwd"""
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key)
    monkeypatch.chdir(temp_dir)


def make_tone(frames, sample_rate=44100, channels=2, frequency=440.0):
    """Sine tone as int16 frames, shape (frames, channels)"""
    t = np.arange(frames) / sample_rate
    wave = (np.sin(2 * np.pi * frequency * t) * 12000).astype(np.int16)
    return np.repeat(wave[:, None], channels, axis=1)


def write_wav(path, frames=44100, sample_rate=44100, channels=2, subtype="PCM_16", frequency=440.0):
    """Write a tone WAV file and return its path"""
    data = make_tone(frames, sample_rate, channels, frequency)
    sf.write(str(path), data, sample_rate, subtype=subtype, format="WAV")
    return path


@pytest.fixture
def wav_factory(temp_dir):
    """Build WAV files inside the temp directory"""
    def factory(name="tone.wav", **kwargs):
        return write_wav(temp_dir / name, **kwargs)
    return factory


@pytest.fixture
def make_config(temp_dir):
    """Build a Config rooted in the temp directory, with instant settling"""
    def factory(**overrides):
        values = {
            "watch.input_directory": temp_dir / "input",
            "watch.settle_seconds": 0,
            "watch.scan_interval_seconds": 0.05,
            "output.directory": temp_dir / "output",
            "capture.fetch_timeout_seconds": 10,
        }
        values.update(overrides)
        return load_config(overrides=values)
    return factory


@pytest_asyncio.fixture
async def stream_server(temp_dir):
    """
    Local HTTP server serving test streams.

    Routes:
        /tone.wav    a short WAV file
        /missing     404
        /trickle     endless slow stream (ends when the client goes away)
    """
    payload = (temp_dir / "served.wav")
    write_wav(payload, frames=4410)
    body = payload.read_bytes()

    async def tone(request):
        return web.Response(body=body, content_type="audio/wav")

    async def missing(request):
        return web.Response(status=404, text="not here")

    async def trickle(request):
        response = web.StreamResponse()
        response.content_type = "audio/wav"
        await response.prepare(request)
        for _ in range(400):
            await response.write(b"\x00" * 1024)
            await asyncio.sleep(0.025)
        return response

    app = web.Application()
    app.router.add_get("/tone.wav", tone)
    app.router.add_get("/missing", missing)
    app.router.add_get("/trickle", trickle)

    server = TestServer(app)
    await server.start_server()
    server.tone_body = body
    try:
        yield server
    finally:
        await server.close()
