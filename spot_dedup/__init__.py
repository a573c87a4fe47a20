"""
spot-dedup: Find and remove duplicate songs in your Spotify playlists.

For every playlist you own, spot-dedup fetches the items, flags each
track or episode that repeats an earlier one (same Spotify URI, or same
title and primary artist/show), and can remove the repeats from Spotify.

Architecture:
    core/       - Configuration, SQLite store, logging, progress bars, exceptions
    spotify/    - spotipy client and the async, throttled API facade
    dedup/      - Matcher, scanner, snapshot gatekeeper, batch remover, orchestrator
    utils/      - URI helpers and chunking
    cli.py      - Command-line interface

Usage:
    Command Line:
        spot-dedup                      # scan every owned playlist
        spot-dedup --remove             # scan, then remove duplicates
        spot-dedup --playlist <url>     # only one playlist
        spot-dedup --list               # show stored results (offline)

    Python API:
        from spot_dedup.core import load_config, Database
        from spot_dedup.spotify import SpotifyClient, AsyncSpotifyAPI
        from spot_dedup.dedup import PlaylistSyncOrchestrator

        config = load_config()
        SpotifyClient.init(
            config.spotify.client_id,
            config.spotify.client_secret,
            cache_path=config.storage.token_cache_path,
        )
        api = AsyncSpotifyAPI(SpotifyClient(), config.sync.requests_per_second)
        orchestrator = PlaylistSyncOrchestrator(api, Database(config.storage.database_path))

        summary = await orchestrator.reload()

Dependencies:
    - spotipy: Spotify API client
    - asyncio-throttle: Request rate limiting
    - click / rich-click: CLI framework and colors
    - rich: Progress bars
    - tqdm: Log output that does not break progress bars
    - pyyaml: Configuration file parsing
"""

__version__ = "0.1.0"
__author__ = "spot-dedup"
__license__ = "MIT"

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
)
from spot_dedup.dedup import PlaylistSyncOrchestrator, find_duplicates, is_probably_same
from spot_dedup.spotify import AsyncSpotifyAPI, Playlist, PlaylistItem, SpotifyClient

__all__ = [
    "__version__",
    # Core
    "Config",
    "load_config",
    "Database",
    "setup_logging",
    "get_logger",
    # Exceptions
    "SpotDedupError",
    "ConfigError",
    "DatabaseError",
    "SpotifyError",
    # Spotify
    "SpotifyClient",
    "AsyncSpotifyAPI",
    "Playlist",
    "PlaylistItem",
    # Engine
    "PlaylistSyncOrchestrator",
    "find_duplicates",
    "is_probably_same",
]
