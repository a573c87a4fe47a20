"""
Configuration management for spot-dedup.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml.

The configuration file contains:
    - Spotify API credentials (client_id, client_secret, redirect_uri)
    - Storage directory for the database, token cache and logs
    - Sync tuning (concurrent playlists, request rate, scan strategy)

Configuration File Location:
    The config.yaml file is looked up in the current working directory
    unless an explicit path is given (--config).

Example config.yaml:
    spotify:
      client_id: "your_client_id_here"
      client_secret: "your_client_secret_here"
      redirect_uri: "http://127.0.0.1:8888/callback"

    storage:
      directory: "~/.spot-dedup"

    sync:
      max_concurrent_playlists: 4
      requests_per_second: 10
      indexed_scan: false
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from spot_dedup.core.exceptions import ConfigError


# Default configuration file name (in current working directory)
CONFIG_FILENAME = "config.yaml"

DEFAULT_REDIRECT_URI = "http://127.0.0.1:8888/callback"
DEFAULT_STORAGE_DIRECTORY = "~/.spot-dedup"
DEFAULT_MAX_CONCURRENT_PLAYLISTS = 4
DEFAULT_REQUESTS_PER_SECOND = 10.0


@dataclass(frozen=True)
class SpotifyConfig:
    """
    Spotify API credentials configuration.

    These credentials are obtained from the Spotify Developer Dashboard:
    https://developer.spotify.com/dashboard

    Attributes:
        client_id: The Spotify application client ID.
        client_secret: The Spotify application client secret.
        redirect_uri: OAuth redirect URI registered for the application.
                      Must match the dashboard entry exactly.
    """
    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI


@dataclass(frozen=True)
class StorageConfig:
    """
    Local storage configuration.

    Attributes:
        directory: Absolute path holding database.db, the OAuth token
                   cache and the logs/ subdirectory. ~ is expanded.
                   Created on first run if missing.
    """
    directory: Path

    @property
    def database_path(self) -> Path:
        return self.directory / "database.db"

    @property
    def token_cache_path(self) -> Path:
        return self.directory / ".spotify_token_cache"


@dataclass(frozen=True)
class SyncConfig:
    """
    Sync behavior configuration.

    Attributes:
        max_concurrent_playlists: How many playlists are scanned or
                 de-duplicated at the same time. Removal batches within
                 one playlist are always sequential. Default: 4.
        requests_per_second: Ceiling on Web API requests across all
                 playlists. Default: 10.
        indexed_scan: Use the hashed uri/name index instead of comparing
                 every item against every distinct item seen so far.
                 Produces the same duplicates. Default: False.
    """
    max_concurrent_playlists: int = DEFAULT_MAX_CONCURRENT_PLAYLISTS
    requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND
    indexed_scan: bool = False


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    This is the main configuration object that aggregates all configuration
    sections. It is created by load_config() and is immutable.

    Attributes:
        spotify: Spotify API credentials.
        storage: Local storage settings.
        sync: Scan and removal tuning.

    Example:
        config = load_config()
        print(f"Database: {config.storage.database_path}")
        print(f"Scanning {config.sync.max_concurrent_playlists} playlists at once")
    """
    spotify: SpotifyConfig
    storage: StorageConfig
    sync: SyncConfig


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the config file is not found, has invalid YAML syntax,
                     is missing required fields, or contains invalid values.

    Behavior:
        1. Locate config file (explicit path or CWD/config.yaml)
        2. Read and parse YAML content
        3. Validate structure (spotify section exists)
        4. Validate and extract spotify credentials
        5. Expand the storage directory path
        6. Validate sync settings with defaults
        7. Create and return frozen Config object
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    _validate_config(raw_config)

    return Config(
        spotify=_parse_spotify_config(raw_config["spotify"]),
        storage=_parse_storage_config(raw_config.get("storage")),
        sync=_parse_sync_config(raw_config.get("sync")),
    )


def _validate_config(raw_config: dict[str, Any]) -> None:
    """
    Validate the raw configuration dictionary structure.

    Raises:
        ConfigError: If the spotify section is missing, or if any present
                     section is not a dictionary.
    """
    if "spotify" not in raw_config:
        raise ConfigError(
            "Missing required section: 'spotify'",
            details={"missing_section": "spotify"}
        )

    for section in ("spotify", "storage", "sync"):
        value = raw_config.get(section)
        if section in raw_config and value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )

    if not isinstance(raw_config["spotify"], dict):
        raise ConfigError(
            "Section 'spotify' must be a dictionary",
            details={"section": "spotify"}
        )


def _parse_spotify_config(spotify_section: dict[str, Any]) -> SpotifyConfig:
    """
    Parse and validate the Spotify configuration section.

    Raises:
        ConfigError: If client_id or client_secret is missing or empty,
                     or redirect_uri is present but not a string.
    """
    client_id = spotify_section.get("client_id", "")
    client_secret = spotify_section.get("client_secret", "")
    redirect_uri = spotify_section.get("redirect_uri", DEFAULT_REDIRECT_URI)

    if not isinstance(client_id, str) or not client_id.strip():
        raise ConfigError(
            "'spotify.client_id' must be a non-empty string",
            details={"field": "spotify.client_id"}
        )

    if not isinstance(client_secret, str) or not client_secret.strip():
        raise ConfigError(
            "'spotify.client_secret' must be a non-empty string",
            details={"field": "spotify.client_secret"}
        )

    if not isinstance(redirect_uri, str) or not redirect_uri.strip():
        raise ConfigError(
            "'spotify.redirect_uri' must be a non-empty string",
            details={"field": "spotify.redirect_uri"}
        )

    return SpotifyConfig(
        client_id=client_id.strip(),
        client_secret=client_secret.strip(),
        redirect_uri=redirect_uri.strip()
    )


def _parse_storage_config(storage_section: dict[str, Any] | None) -> StorageConfig:
    """
    Parse the storage section, applying the default directory.

    Expands ~ to home directory and converts to absolute Path.
    Does NOT create the directory (the CLI does that at startup).
    """
    directory = DEFAULT_STORAGE_DIRECTORY

    if storage_section is not None:
        raw_directory = storage_section.get("directory")
        if raw_directory is not None:
            if not isinstance(raw_directory, str) or not raw_directory.strip():
                raise ConfigError(
                    "'storage.directory' must be a non-empty string",
                    details={"field": "storage.directory"}
                )
            directory = raw_directory

    return StorageConfig(directory=Path(directory.strip()).expanduser().resolve())


def _parse_sync_config(sync_section: dict[str, Any] | None) -> SyncConfig:
    """
    Parse and validate the sync configuration section.

    Applies defaults if section is missing or fields are not specified.

    Raises:
        ConfigError: If max_concurrent_playlists is not a positive integer,
                     requests_per_second is not a positive number, or
                     indexed_scan is not a boolean.
    """
    max_concurrent = DEFAULT_MAX_CONCURRENT_PLAYLISTS
    requests_per_second = DEFAULT_REQUESTS_PER_SECOND
    indexed_scan = False

    if sync_section is not None:
        raw_concurrent = sync_section.get("max_concurrent_playlists")
        if raw_concurrent is not None:
            if isinstance(raw_concurrent, bool) or not isinstance(raw_concurrent, int) or raw_concurrent < 1:
                raise ConfigError(
                    "'sync.max_concurrent_playlists' must be a positive integer",
                    details={"field": "sync.max_concurrent_playlists", "value": raw_concurrent}
                )
            max_concurrent = raw_concurrent

        raw_rate = sync_section.get("requests_per_second")
        if raw_rate is not None:
            if isinstance(raw_rate, bool) or not isinstance(raw_rate, (int, float)) or raw_rate <= 0:
                raise ConfigError(
                    "'sync.requests_per_second' must be a positive number",
                    details={"field": "sync.requests_per_second", "value": raw_rate}
                )
            requests_per_second = float(raw_rate)

        raw_indexed = sync_section.get("indexed_scan")
        if raw_indexed is not None:
            if not isinstance(raw_indexed, bool):
                raise ConfigError(
                    "'sync.indexed_scan' must be true or false",
                    details={"field": "sync.indexed_scan", "value": raw_indexed}
                )
            indexed_scan = raw_indexed

    return SyncConfig(
        max_concurrent_playlists=max_concurrent,
        requests_per_second=requests_per_second,
        indexed_scan=indexed_scan
    )
