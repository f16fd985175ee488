"""
flac-capture: Capture playlists of audio streams into lossless files.

A watched input directory receives playlist files (one stream URL per line).
Each playlist is fetched, assembled into a single WAV file and optionally
compressed to FLAC. Finished playlists are moved to processed/ or failed/.

Usage:
    flac-capture watch --input ./input --output ./output
    flac-capture capture my_mix.m3u
    flac-capture convert recording.wav
"""

__version__ = "1.0.0"
