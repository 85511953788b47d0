"""
Command-line interface for playlist-archiver.

This module implements the CLI using Click, with rich-click for the
help output colors.

Commands:
    plarchive                          Run one reconciliation pass
    plarchive --watch                  Run a pass every sync.interval_minutes
    plarchive --source <url>           Only reconcile the given source(s)
    plarchive --status                 Show archive statistics and exit

Options:
    --config <path>                    Use another config file
    --concurrency <n>                  Override sync.concurrency
    --verbose                          Show DEBUG messages on the console

Usage:
    # One pass over every configured source
    plarchive

    # Daemon mode
    plarchive --watch

    # Only two sources, one at a time
    plarchive --source "https://soundcloud.com/someone/sets/a" \\
              --source "https://soundcloud.com/someone/sets/b" --concurrency 1

Signals:
    The first SIGINT/SIGTERM asks the running pass to stop: sources that are
    being reconciled finish and commit, the others are cancelled. A second
    SIGINT interrupts immediately.

Exit Codes:
    0    pass completed (or --watch stopped gracefully)
    1    configuration error
    2    persistence error
    3    pass completed but some sources failed
    4    other archiver error (missing ffmpeg, unsupported platform)
    130  interrupted
"""

import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import rich_click as click
from dotenv import load_dotenv

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.OPTION_GROUPS = {
    "cli": [
        {
            "name": "Run Mode",
            "options": ["--watch", "--source", "--status"],
        },
        {
            "name": "Settings",
            "options": ["--config", "--concurrency", "--verbose"],
        },
        {
            "name": "Info",
            "options": ["--version", "--help"],
        },
    ],
}

from playlist_archiver import __version__
from playlist_archiver.archive.index import ArchiveIndex
from playlist_archiver.archive.models import SourceDescriptor
from playlist_archiver.core import (
    ArchiverError,
    Config,
    ConfigError,
    PersistenceError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from playlist_archiver.core.persistence import PersistenceLayer
from playlist_archiver.platforms import build_platforms
from playlist_archiver.sync import PassReport, ReconciliationEngine, SourceOutcome

logger = get_logger(__name__)


EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_PERSISTENCE = 2
EXIT_SOURCE_FAILURES = 3
EXIT_ARCHIVER = 4
EXIT_INTERRUPTED = 130


@click.group(invoke_without_command=True)
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option(
    "--watch",
    is_flag=True,
    help="Keep running: one pass every sync.interval_minutes"
)
@click.option(
    "--source", "source_filters",
    multiple=True,
    metavar="<url>",
    help="Only reconcile this configured source (URL or source id, repeatable)"
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    metavar="<n>",
    help="Number of sources reconciled in parallel"
)
@click.option(
    "--status",
    is_flag=True,
    help="Show archive statistics and exit"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Show debug messages on the console"
)
@click.option(
    "--version",
    is_flag=True,
    help="Show version and exit."
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[Path],
    watch: bool,
    source_filters: tuple[str, ...],
    concurrency: Optional[int],
    status: bool,
    verbose: bool,
    version: bool
) -> None:
    """
    playlist-archiver: keep a local, append-only archive of remote playlists.

    Every pass lists each configured playlist, downloads tracks that aren't
    archived yet, records tracks deleted or restricted upstream, and
    regenerates one .m3u file per playlist. Audio files are never deleted.

    \b
    USAGE:
        plarchive                              # One pass over all sources
        plarchive --watch                      # Keep syncing
        plarchive --source "https://..."       # Only this source
        plarchive --status                     # Archive statistics
    """
    if version:
        click.echo(f"playlist-archiver {__version__}")
        ctx.exit(0)

    if status and watch:
        raise click.UsageError("Cannot use both --status and --watch")

    load_dotenv()

    exit_code = _run(
        config_path=config_path,
        watch=watch,
        source_filters=source_filters,
        concurrency=concurrency,
        status=status,
        verbose=verbose,
    )
    sys.exit(exit_code)


def _run(
    config_path: Optional[Path],
    watch: bool,
    source_filters: tuple[str, ...],
    concurrency: Optional[int],
    status: bool,
    verbose: bool
) -> int:
    """
    Execute the CLI workflow and map errors to exit codes.

    Returns:
        Process exit code.
    """
    stop_event = threading.Event()
    previous_handlers: dict[int, Any] = {}

    try:
        config = _load_configuration(config_path, concurrency)

        setup_logging(config.paths.data_root, verbose=verbose)
        logger.info(f"playlist-archiver {__version__} starting")

        persistence = PersistenceLayer(config.paths.data_root)
        persistence.prepare()
        index = persistence.load_index()

        if status:
            _print_status(persistence, index, config)
            return EXIT_OK

        previous_handlers = _install_signal_handlers(stop_event)

        if not watch:
            report = _run_pass(config, persistence, index, source_filters, stop_event)
            _print_pass_report(report)
            if stop_event.is_set():
                logger.info("Pass stopped on request")
                return EXIT_INTERRUPTED
            return EXIT_SOURCE_FAILURES if report.has_failures else EXIT_OK

        _watch(config, config_path, concurrency, persistence, index, source_filters, stop_event)
        logger.info("playlist-archiver stopped")
        return EXIT_OK

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        return EXIT_CONFIG

    except PersistenceError as e:
        click.echo(f"Persistence error: {e.message}", err=True)
        logger.error(f"Persistence error: {e.message}", exc_info=True)
        return EXIT_PERSISTENCE

    except ArchiverError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        return EXIT_ARCHIVER

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        return EXIT_ARCHIVER

    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)
        shutdown_logging()


def _load_configuration(config_path: Optional[Path], concurrency: Optional[int]) -> Config:
    """
    Load config.yaml and apply command-line overrides.

    Raises:
        ConfigError: If configuration is invalid or missing.
    """
    config = load_config(config_path)
    if concurrency is not None:
        config = config.with_concurrency(concurrency)
    return config


def _select_sources(config: Config, source_filters: tuple[str, ...]) -> tuple[SourceDescriptor, ...]:
    """
    Resolve --source values against the configured sources.

    Raises:
        ConfigError: If a value matches no configured source.
    """
    if not source_filters:
        return config.sources

    selected: list[SourceDescriptor] = []
    for value in source_filters:
        match = next(
            (s for s in config.sources if value in (s.url, s.source_id)),
            None
        )
        if match is None:
            raise ConfigError(
                f"Source not found in configuration: {value}",
                details={"source": value}
            )
        if match not in selected:
            selected.append(match)
    return tuple(selected)


def _run_pass(
    config: Config,
    persistence: PersistenceLayer,
    index: ArchiveIndex,
    source_filters: tuple[str, ...],
    stop_event: threading.Event
) -> PassReport:
    sources = _select_sources(config, source_filters)

    platforms = build_platforms(config)
    for platform in platforms.values():
        platform.check_requirements()

    engine = ReconciliationEngine(
        config,
        persistence,
        index,
        platforms,
        stop_event=stop_event,
        show_progress=sys.stdout.isatty(),
    )
    return engine.run_pass(sources)


def _watch(
    config: Config,
    config_path: Optional[Path],
    concurrency: Optional[int],
    persistence: PersistenceLayer,
    index: ArchiveIndex,
    source_filters: tuple[str, ...],
    stop_event: threading.Event
) -> None:
    """
    Run passes until a stop is requested.

    The configuration is re-read before every pass after the first one.
    An invalid file is reported and the previous configuration is kept.
    The archive location can't change while running.
    """
    first_pass = True
    while not stop_event.is_set():
        if not first_pass:
            try:
                reloaded = _load_configuration(config_path, concurrency)
            except ConfigError as e:
                logger.error(f"Keeping previous configuration: {e.message}")
            else:
                if reloaded.paths != config.paths:
                    logger.warning("Path changes take effect after a restart")
                    reloaded = replace(reloaded, paths=config.paths)
                config = reloaded
        first_pass = False

        report = _run_pass(config, persistence, index, source_filters, stop_event)
        _print_pass_report(report)

        wait_seconds = config.sync.interval_minutes * 60
        logger.info(f"Next pass in {config.sync.interval_minutes} minutes")
        if stop_event.wait(wait_seconds):
            break


def _install_signal_handlers(stop_event: threading.Event) -> dict[int, Any]:
    """
    First SIGINT/SIGTERM requests a graceful stop, a second SIGINT
    raises KeyboardInterrupt.

    Returns:
        The handlers that were installed before, keyed by signal number.
    """

    def _request_stop(signum, frame) -> None:
        if stop_event.is_set():
            raise KeyboardInterrupt
        logger.warning("Stop requested, finishing sources in progress (Ctrl+C again to abort)")
        stop_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, _request_stop)
    return previous


def _print_pass_report(report: PassReport) -> None:
    """Print one line per source plus failure details."""
    logger.info("=" * 60)
    logger.info("PASS SUMMARY")
    logger.info("=" * 60)
    for source_report in report.sources:
        if source_report.outcome == SourceOutcome.FAILED:
            logger.error(source_report.summary())
        else:
            logger.info(source_report.summary())
    logger.info(f"Downloaded:        {report.downloaded}")
    logger.info(f"Track errors:      {len(report.errors)}")
    logger.info(f"Failed sources:    {len(report.failed)}")
    logger.info("=" * 60)


def _print_status(persistence: PersistenceLayer, index: ArchiveIndex, config: Config) -> None:
    """
    Print index statistics and one line per configured source.

    Args:
        persistence: Used to read the persisted source states.
        index: Loaded ArchiveIndex.
        config: Configuration (the sources to report on).
    """
    stats = index.stats()
    states = {state.source_id: state for state in persistence.load_source_states()}

    logger.info("=" * 60)
    logger.info("ARCHIVE STATUS")
    logger.info("=" * 60)
    logger.info(f"Archived tracks:   {stats['total']}")
    logger.info(f"Active:            {stats['active']}")
    logger.info(f"Deleted upstream:  {stats['deleted']}")
    logger.info(f"Restricted:        {stats['restricted']}")
    logger.info(f"Audio directory:   {config.paths.audio_dir}")
    logger.info("-" * 60)

    for source in config.sources:
        state = states.get(source.source_id)
        if state is None or state.last_synced is None:
            logger.info(f"{source.source_id}: never synced")
            continue
        flag = " (inactive)" if source.inactive else ""
        logger.info(
            f"{source.source_id}{flag}: {len(state.present())} present, "
            f"{len(state.removed())} removed, last synced {state.last_synced.isoformat()}"
        )
    logger.info("=" * 60)


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `plarchive` from the command line.
    It invokes the Click CLI group.
    """
    cli()


if __name__ == "__main__":
    main()
