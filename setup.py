#!/usr/bin/env python3
"""
Setup configuration for flac-capture
Capture playlists of audio streams into lossless WAV/FLAC recordings
"""

from setuptools import setup, find_packages

from flac_capture import __version__

# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Core requirements (always installed)
core_requirements = [
    "aiohttp>=3.9.1",
    "click>=8.1.7",
    "rich-click>=1.7.0",
    "pyyaml>=6.0.1",
    "python-dotenv>=1.0.0",
    "tqdm>=4.66.1",
    "colorama>=0.4.6",
    "pydub>=0.25.1",
    "audioop-lts>=0.2.1; python_version>='3.13'",  # pydub needs audioop, removed in 3.13
    "soundfile>=0.13.0",
    "numpy>=1.24.0",
    "mutagen>=1.47.0",
    "watchdog>=4.0.0",
]

setup(
    name="flac-capture",
    version=__version__,
    author="flac-capture Team",
    description="Watch a directory for stream playlists and capture them into lossless audio files",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Multimedia :: Sound/Audio :: Capture/Recording",
        "Topic :: Multimedia :: Sound/Audio :: Conversion",
    ],
    python_requires=">=3.10",
    install_requires=core_requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.3",
            "pytest-asyncio>=0.21.1",
        ],
    },
    entry_points={
        "console_scripts": [
            "flac-capture=flac_capture.cli:main",
        ],
    },
    include_package_data=True,
    keywords="audio capture stream playlist m3u wav flac lossless watch",
)
