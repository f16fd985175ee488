"""
Command-line interface for flac-capture.

This module implements the CLI using Click; rich-click is used for the
help formatting and colors.

Commands:
    flac-capture watch                      Watch the input directory (service mode)
    flac-capture capture <playlist>         Capture one playlist and exit
    flac-capture convert <wav> [<flac>]     Encode an existing WAV to FLAC

Usage:
    # Service mode with defaults from config.yaml / environment
    flac-capture watch

    # Override directories and quality
    flac-capture watch --input ~/drop --output ~/recordings --quality 80

    # One-shot capture, keep the WAV
    flac-capture capture show.m3u --keep-wav

    # Standalone conversion
    flac-capture convert show.wav --delete-wav

Configuration:
    Settings are read from config.yaml in the current directory (or --config),
    then FLAC_CAPTURE_* environment variables (.env supported), then the
    command-line options below.

Exit codes:
    0    success
    1    configuration error, failed capture/conversion, or unexpected error
    130  interrupted by user
"""

import asyncio
import contextlib
import signal
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import rich_click as click

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.MAX_WIDTH = 100
click.rich_click.OPTION_GROUPS = {
    "flac-capture watch": [
        {
            "name": "Directories",
            "options": ["--input", "--output", "--prefix"],
        },
        {
            "name": "Watching",
            "options": ["--scan-interval", "--settle"],
        },
        {
            "name": "Capture & Encoding",
            "options": ["--timeout", "--volume", "--convert", "--delete-wav", "--quality", "--flac-path"],
        },
        {
            "name": "General",
            "options": ["--config", "--log-level", "--help"],
        },
    ],
}

from flac_capture import __version__
from flac_capture.capture import CaptureOrchestrator, load_job
from flac_capture.core import (
    Config,
    ConfigurationError,
    FlacCaptureError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from flac_capture.core.file_manager import FileManager
from flac_capture.encode import LosslessEncoder
from flac_capture.watch import WatchService

logger = get_logger(__name__)


def _common_options(func: Callable) -> Callable:
    """Options shared by every command that loads the configuration."""
    options = [
        click.option(
            "--config", "config_path",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            default=None,
            metavar="<config.yaml>",
            help="Configuration file (default: ./config.yaml if present)"
        ),
        click.option(
            "--output",
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            metavar="<dir>",
            help="Directory for WAV/FLAC output and logs"
        ),
        click.option(
            "--quality",
            type=click.IntRange(0, 100),
            default=None,
            help="FLAC compression quality, 0-100"
        ),
        click.option(
            "--flac-path",
            type=click.Path(dir_okay=False, path_type=Path),
            default=None,
            metavar="<flac>",
            help="External flac executable used as fallback encoder"
        ),
        click.option(
            "--log-level",
            type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
            default=None,
            help="Console log level"
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _capture_options(func: Callable) -> Callable:
    """Options of the commands that run the capture pipeline."""
    options = [
        click.option(
            "--prefix",
            type=str,
            default=None,
            help="Prefix for output file names"
        ),
        click.option(
            "--timeout",
            type=click.FloatRange(1, 86400),
            default=None,
            help="Fetch timeout per stream, in seconds"
        ),
        click.option(
            "--volume",
            type=float,
            default=None,
            help="Monitoring volume 0.0-1.0 (clamped)"
        ),
        click.option(
            "--convert/--no-convert",
            default=None,
            help="Encode the assembled WAV to FLAC"
        ),
        click.option(
            "--delete-wav/--keep-wav",
            default=None,
            help="Delete the WAV after a successful FLAC encode"
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group(invoke_without_command=True)
@click.option(
    "--version",
    is_flag=True,
    help="Show version and exit."
)
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """
    flac-capture: Capture playlists of audio streams into lossless files.

    Drop a playlist (one stream URL per line) into the input directory; the
    streams are downloaded, joined into a single WAV and compressed to FLAC.

    \b
    BASIC USAGE:
        flac-capture watch                    # Watch ./input, write to ./output
        flac-capture capture show.m3u         # Capture one playlist now
        flac-capture convert show.wav         # Compress an existing WAV
    """
    if version:
        click.echo(f"flac-capture {__version__}")
        ctx.exit(0)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


@cli.command()
@_common_options
@_capture_options
@click.option(
    "--input", "input_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    metavar="<dir>",
    help="Directory watched for playlist files"
)
@click.option(
    "--scan-interval",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds between full directory scans"
)
@click.option(
    "--settle",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to wait before reading a new playlist"
)
def watch(
    config_path: Optional[Path],
    output: Optional[Path],
    quality: Optional[int],
    flac_path: Optional[Path],
    log_level: Optional[str],
    prefix: Optional[str],
    timeout: Optional[float],
    volume: Optional[float],
    convert: Optional[bool],
    delete_wav: Optional[bool],
    input_dir: Optional[Path],
    scan_interval: Optional[float],
    settle: Optional[float]
) -> None:
    """Watch the input directory and capture every playlist dropped into it."""
    overrides = _overrides(
        output=output, quality=quality, flac_path=flac_path, log_level=log_level,
        prefix=prefix, timeout=timeout, volume=volume, convert=convert, delete_wav=delete_wav,
    )
    overrides["watch.input_directory"] = input_dir
    overrides["watch.scan_interval_seconds"] = scan_interval
    overrides["watch.settle_seconds"] = settle

    _execute(config_path, overrides, _run_watch)


@cli.command()
@click.argument("playlist", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_common_options
@_capture_options
def capture(
    playlist: Path,
    config_path: Optional[Path],
    output: Optional[Path],
    quality: Optional[int],
    flac_path: Optional[Path],
    log_level: Optional[str],
    prefix: Optional[str],
    timeout: Optional[float],
    volume: Optional[float],
    convert: Optional[bool],
    delete_wav: Optional[bool]
) -> None:
    """Capture a single PLAYLIST file and exit. The playlist is not moved."""
    overrides = _overrides(
        output=output, quality=quality, flac_path=flac_path, log_level=log_level,
        prefix=prefix, timeout=timeout, volume=volume, convert=convert, delete_wav=delete_wav,
    )

    async def action(config: Config) -> int:
        return await _run_capture(config, playlist)

    _execute(config_path, overrides, action)


@cli.command()
@click.argument("wav", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("flac", type=click.Path(dir_okay=False, path_type=Path), required=False)
@_common_options
@click.option(
    "--delete-wav",
    is_flag=True,
    help="Delete the WAV after a successful encode"
)
def convert(
    wav: Path,
    flac: Optional[Path],
    config_path: Optional[Path],
    output: Optional[Path],
    quality: Optional[int],
    flac_path: Optional[Path],
    log_level: Optional[str],
    delete_wav: bool
) -> None:
    """Encode WAV to FLAC (default: same name with .flac)."""
    overrides = _overrides(output=output, quality=quality, flac_path=flac_path, log_level=log_level)

    async def action(config: Config) -> int:
        encoder = LosslessEncoder(flac_executable=config.encoding.flac_executable)
        await encoder.encode(wav, flac, config.encoding.quality, delete_source=delete_wav)
        return 0

    _execute(config_path, overrides, action)


def _overrides(
    output: Optional[Path] = None,
    quality: Optional[int] = None,
    flac_path: Optional[Path] = None,
    log_level: Optional[str] = None,
    prefix: Optional[str] = None,
    timeout: Optional[float] = None,
    volume: Optional[float] = None,
    convert: Optional[bool] = None,
    delete_wav: Optional[bool] = None
) -> dict[str, Any]:
    """Map CLI options onto dotted configuration keys (None = not given)."""
    return {
        "output.directory": output,
        "output.filename_prefix": prefix,
        "capture.fetch_timeout_seconds": timeout,
        "capture.monitor_volume": volume,
        "encoding.auto_convert": convert,
        "encoding.delete_uncompressed": delete_wav,
        "encoding.quality": quality,
        "encoding.flac_executable": flac_path,
        "logging.level": log_level,
    }


def _execute(
    config_path: Optional[Path],
    overrides: dict[str, Any],
    action: Callable[[Config], Awaitable[int]]
) -> None:
    """
    Load configuration, set up logging and run an async action.

    Raises:
        SystemExit: With the action's exit code, or on fatal errors.
    """
    exit_code = 0

    try:
        config = load_config(config_path, overrides)

        setup_logging(config.output.directory, config.logging.level)
        logger.info(f"flac-capture {__version__} starting")

        exit_code = asyncio.run(action(config))

    except ConfigurationError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except FlacCaptureError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(1)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)

    finally:
        shutdown_logging()

    if exit_code:
        sys.exit(exit_code)


def _install_stop_handlers(stop: asyncio.Event) -> None:
    """Set stop on SIGINT/SIGTERM where the event loop supports signal handlers."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Windows event loops do not support add_signal_handler
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)


async def _run_watch(config: Config) -> int:
    stop = asyncio.Event()
    _install_stop_handlers(stop)

    await WatchService(config).run(stop)
    logger.info("flac-capture stopped")
    return 0


async def _run_capture(config: Config, playlist: Path) -> int:
    stop = asyncio.Event()
    _install_stop_handlers(stop)

    file_manager = FileManager(playlist.resolve().parent, config.output.directory)
    job = load_job(playlist, prefix=config.output.filename_prefix)

    result = await CaptureOrchestrator(config, file_manager=file_manager).run(job, stop)
    return 0 if result.succeeded else 1


def main() -> None:
    """Entry point for the `flac-capture` console script."""
    cli()


if __name__ == "__main__":
    main()
