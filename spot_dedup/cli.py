"""
Command-line interface for spot-dedup.

This module implements the CLI using Click, with rich-click for colored
help output.

Commands:
    spot-dedup                          Scan every owned playlist (default)
    spot-dedup --scan                   Same as above
    spot-dedup --playlist <url>         Scan a single owned playlist
    spot-dedup --remove                 Scan, then remove duplicates
    spot-dedup --playlist <url> --remove
    spot-dedup --list                   Show stored results (no network)
    spot-dedup --logout                 Forget the Spotify login and stored data

Options:
    --config <path>                     Use another config.yaml
    --verbose                           Show debug messages on the console

Configuration:
    The CLI requires a config.yaml file in the current directory (or the
    one given with --config) with the Spotify API credentials. See
    spot_dedup.core.config for every option.

Exit Codes:
    0    success
    1    configuration error
    2    database error
    3    Spotify error
    4    any other spot-dedup error
    130  interrupted
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

import rich_click as click

click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.OPTION_GROUPS = {
    "spot-dedup": [
        {
            "name": "Actions",
            "options": ["--scan", "--remove", "--list", "--logout"],
        },
        {
            "name": "Selection",
            "options": ["--playlist"],
        },
        {
            "name": "Settings",
            "options": ["--config", "--verbose"],
        },
        {
            "name": "Info",
            "options": ["--version", "--help"],
        },
    ],
}

from spot_dedup import __version__
from spot_dedup.core import (
    Config,
    ConfigError,
    Database,
    DatabaseError,
    SpotDedupError,
    SpotifyError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from spot_dedup.core.logger import format_duplicates_message
from spot_dedup.core.progress import BaseProgressBar, RemovalProgressBar, ScanProgressBar
from spot_dedup.dedup import (
    EventKind,
    PlaylistSyncOrchestrator,
    RemovalSummary,
    SyncEvent,
    SyncSummary,
)
from spot_dedup.spotify import AsyncSpotifyAPI, SpotifyClient
from spot_dedup.utils import ensure_directory, to_playlist_uri

logger = get_logger(__name__)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--scan",
    is_flag=True,
    help="Scan owned playlists for duplicates (default action)"
)
@click.option(
    "--remove",
    is_flag=True,
    help="Remove the duplicates found by the scan from Spotify"
)
@click.option(
    "--list", "list_only",
    is_flag=True,
    help="Show stored playlists and duplicates without contacting Spotify"
)
@click.option(
    "--logout",
    is_flag=True,
    help="Delete the cached Spotify token and all stored data"
)
@click.option(
    "--playlist",
    type=str,
    default=None,
    metavar="<spotify-url>",
    help="Only work on this playlist (URL, URI or ID)"
)
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Path to config.yaml (default: ./config.yaml)"
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
    scan: bool,
    remove: bool,
    list_only: bool,
    logout: bool,
    playlist: Optional[str],
    config_path: Optional[Path],
    verbose: bool,
    version: bool
) -> None:
    """
    spot-dedup: Find and remove duplicate songs in your Spotify playlists.

    Scans every playlist you own and flags each track or episode that
    repeats an earlier one: same Spotify link, or same title and same
    primary artist (or show). Playlists you only follow are ignored.

    \b
    BASIC USAGE:
        spot-dedup                                   # Scan all owned playlists
        spot-dedup --remove                          # Scan, then remove duplicates
        spot-dedup --playlist "https://..." --remove # One playlist only

    \b
    OFFLINE:
        spot-dedup --list                            # Show last results
        spot-dedup --logout                          # Forget login and data
    """
    if version:
        click.echo(f"spot-dedup {__version__}")
        ctx.exit(0)

    if list_only and (scan or remove):
        raise click.UsageError("--list cannot be combined with --scan or --remove")
    if logout and (scan or remove or list_only or playlist):
        raise click.UsageError("--logout cannot be combined with other actions")

    playlist_uri = None
    if playlist:
        try:
            playlist_uri = to_playlist_uri(playlist)
        except ValueError as e:
            raise click.UsageError(str(e)) from e

    ctx.ensure_object(dict)
    ctx.obj["remove"] = remove
    ctx.obj["list_only"] = list_only
    ctx.obj["logout"] = logout
    ctx.obj["playlist_uri"] = playlist_uri
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    _run(ctx.obj)


def _run(options: dict) -> None:
    """
    Execute the requested action.

    1. Load configuration
    2. Set up logging in the storage directory
    3. Open the database
    4. Run --logout, --list, or the scan (and removal) workflow

    Raises:
        SystemExit: On fatal errors (with appropriate exit code).
    """
    database: Database | None = None

    try:
        config = load_config(options["config_path"])

        ensure_directory(config.storage.directory)
        setup_logging(config.storage.directory, verbose=options["verbose"])
        logger.debug(f"spot-dedup {__version__} starting")

        database = Database(config.storage.database_path)

        if options["logout"]:
            _logout(config, database)
        elif options["list_only"]:
            _print_stored_playlists(database, options["playlist_uri"])
        else:
            _initialize_spotify(config)
            api = AsyncSpotifyAPI(SpotifyClient(), config.sync.requests_per_second)
            orchestrator = PlaylistSyncOrchestrator(
                api,
                database,
                max_concurrent=config.sync.max_concurrent_playlists,
                indexed_scan=config.sync.indexed_scan,
            )
            asyncio.run(_run_sync(orchestrator, options["playlist_uri"], options["remove"]))

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except DatabaseError as e:
        click.echo(f"Database error: {e.message}", err=True)
        logger.error(f"Database error: {e.message}", exc_info=True)
        sys.exit(2)

    except SpotifyError as e:
        click.echo(f"Spotify error: {e.message}", err=True)
        if e.is_auth_error:
            click.echo("Check your client_id, client_secret and redirect_uri in config.yaml", err=True)
        if e.is_rate_limit:
            click.echo("Spotify is rate limiting requests, lower sync.requests_per_second", err=True)
        logger.error(f"Spotify error: {e.message}", exc_info=True)
        sys.exit(3)

    except SpotDedupError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(4)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)

    finally:
        if database is not None:
            database.close()
        shutdown_logging()


def _initialize_spotify(config: Config) -> None:
    """
    Initialize the Spotify client singleton.

    Opens the browser for authorization on first use; afterwards the
    cached token in the storage directory is reused.

    Raises:
        SpotifyError: If authentication fails.
    """
    SpotifyClient.init(
        client_id=config.spotify.client_id,
        client_secret=config.spotify.client_secret,
        redirect_uri=config.spotify.redirect_uri,
        cache_path=config.storage.token_cache_path,
    )


def _logout(config: Config, database: Database) -> None:
    """Delete the cached token and every stored playlist."""
    token_cache = config.storage.token_cache_path
    if token_cache.exists():
        token_cache.unlink()
        logger.debug(f"Deleted token cache {token_cache}")

    database.clear()
    click.echo("Logged out. Stored playlists and duplicates were deleted.")


# =============================================================================
# Scan / remove workflow
# =============================================================================


async def _drive_progress(
    queue: asyncio.Queue,
    make_bar: Callable[[int], BaseProgressBar],
    update: Callable[[BaseProgressBar, SyncEvent], None]
) -> None:
    """
    Feed PROGRESS events into a progress bar until a None sentinel arrives.

    The bar is created on the first PROGRESS event, when the total is known.
    """
    bar: BaseProgressBar | None = None
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            if event.kind is not EventKind.PROGRESS:
                continue
            if bar is None:
                bar = make_bar(event.changes["total"])
                bar.start()
            update(bar, event)
    finally:
        if bar is not None:
            bar.stop()


async def _with_progress(orchestrator: PlaylistSyncOrchestrator, coro, make_bar, update):
    queue = orchestrator.events.subscribe()
    consumer = asyncio.create_task(_drive_progress(queue, make_bar, update))
    try:
        return await coro
    finally:
        queue.put_nowait(None)
        await consumer
        orchestrator.events.unsubscribe(queue)


async def _run_sync(
    orchestrator: PlaylistSyncOrchestrator,
    playlist_uri: str | None,
    remove: bool
) -> None:
    """
    Reload and scan the owned playlists, then optionally remove duplicates.

    Raises:
        SpotDedupError: If --playlist names a playlist the user does not own.
    """
    only = {playlist_uri} if playlist_uri else None

    summary = await _with_progress(
        orchestrator,
        orchestrator.reload(only=only),
        lambda total: ScanProgressBar(total=total),
        lambda bar, event: bar.update(
            duplicates=event.changes.get("duplicate_count", 0),
            failed=event.changes.get("failed", False),
        ),
    )

    targets = orchestrator.playlists
    if playlist_uri:
        selected = orchestrator.get_playlist(playlist_uri)
        if selected is None:
            raise SpotDedupError(
                "Playlist not found among the playlists you own",
                details={"playlist_uri": playlist_uri}
            )
        targets = [selected]

    _print_sync_summary(summary, targets)

    if not remove:
        return

    removal = await _with_progress(
        orchestrator,
        orchestrator.remove_all_duplicates(targets),
        lambda total: RemovalProgressBar(total=total),
        lambda bar, event: bar.update(
            success=not event.changes.get("failed", False),
            removed=event.changes.get("removed", 0),
        ),
    )
    _print_removal_summary(removal)


def _print_sync_summary(summary: SyncSummary, playlists: list) -> None:
    """Print duplicates per playlist and the totals of the run."""
    with_duplicates = [p for p in playlists if p.duplicate_count]

    logger.info("=" * 60)
    for playlist in sorted(with_duplicates, key=lambda p: -p.duplicate_count):
        logger.info(format_duplicates_message(playlist.name, playlist.duplicate_count))
    logger.info(f"Playlists checked:        {summary.playlists_checked}")
    logger.info(f"Playlists rescanned:      {summary.playlists_scanned}")
    logger.info(f"Playlists w/ duplicates:  {summary.playlists_with_duplicates}")
    logger.info(f"Total duplicates:         {summary.total_duplicates}")
    if summary.failures:
        logger.warning(f"Failed playlists:         {len(summary.failures)}")
    logger.info("=" * 60)


def _print_removal_summary(summary: RemovalSummary) -> None:
    if summary.first_failure is not None:
        logger.error(summary.describe())
        logger.info("Run spot-dedup again to rescan the affected playlist")
    else:
        logger.info(summary.describe())


# =============================================================================
# --list
# =============================================================================


def _print_stored_playlists(database: Database, playlist_uri: str | None) -> None:
    """
    Print stored playlists and their duplicates, in listing order.

    No network access: this shows the result of the last scan.
    """
    playlists = database.get_all_playlists()
    if playlist_uri:
        playlists = [p for p in playlists if p.uri == playlist_uri]

    if not playlists:
        click.echo("No playlists stored. Run spot-dedup to scan your playlists.")
        return

    for playlist in playlists:
        noun = "duplicate" if playlist.duplicate_count == 1 else "duplicates"
        click.echo(f"{playlist.name}  ({playlist.item_count} items, {playlist.duplicate_count} {noun})")
        for entry in playlist.duplicate_items:
            album = f"  [{entry.item.album_name}]" if entry.item.album_name else ""
            click.echo(f"    #{entry.position:<5} {entry.item.display_name}{album}")

    stats = database.get_stats()
    click.echo("")
    click.echo(f"Playlists:               {stats['playlists']}")
    click.echo(f"Playlists w/ duplicates: {stats['playlists_with_duplicates']}")
    click.echo(f"Duplicate items:         {stats['duplicate_items']}")


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `spot-dedup` from the command line.
    """
    cli()


if __name__ == "__main__":
    main()
