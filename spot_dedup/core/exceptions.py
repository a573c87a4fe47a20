"""
Exception classes for spot-dedup.

This module defines all custom exceptions used throughout the application.
Each exception is designed to provide clear, actionable error messages
and to distinguish between different failure modes.

Exception Hierarchy:
    SpotDedupError (base)
        ConfigError - Configuration file issues
        DatabaseError - SQLite store issues
        SpotifyError - Spotify API issues (network, decoding, rate limits)
            AuthorizationMissingError - No usable access token
            SnapshotConflictError - Playlist changed under a removal batch
"""


class SpotDedupError(Exception):
    """
    Base exception for all spot-dedup errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch all spot-dedup errors with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., playlist uri).

    Example:
        try:
            # some operation
        except SpotDedupError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'playlist_uri': Spotify playlist URI involved in the error
                     - 'http_status': HTTP status returned by the Web API
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(SpotDedupError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml not found
        - config.yaml has invalid YAML syntax
        - Required fields missing (client_id, client_secret)
        - Invalid field values (e.g., zero concurrent playlists)

    Example:
        raise ConfigError(
            "Missing required field 'client_id' in config.yaml",
            details={'file_path': '/path/to/config.yaml', 'missing_field': 'client_id'}
        )
    """
    pass


class DatabaseError(SpotDedupError):
    """
    Raised when there's an issue with the SQLite store.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - database.db is corrupted or from a newer schema version
        - Permission denied when reading/writing
        - Disk full

    Example:
        raise DatabaseError(
            "Database version mismatch: expected 1, got 3",
            details={'expected': 1, 'actual': 3}
        )
    """
    pass


class SpotifyError(SpotDedupError):
    """
    Raised when there's an issue with the Spotify API.

    Covers network failures and undecodable responses. Can be CRITICAL
    (auth failure) or NON-CRITICAL (one playlist could not be read or
    modified; sibling playlists carry on).

    Common causes:
        - Invalid or expired credentials (CRITICAL)
        - Rate limiting (may be recoverable with retry)
        - Playlist not found or no longer accessible
        - Network connectivity issues
        - API response parsing failure

    Attributes:
        is_auth_error: True if this is an authentication error (CRITICAL).
        is_rate_limit: True if this is a rate limit error (may retry).

    Example:
        raise SpotifyError(
            "Failed to fetch playlist items: read timed out",
            details={'playlist_uri': uri, 'offset': 200}
        )
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        is_auth_error: bool = False,
        is_rate_limit: bool = False
    ) -> None:
        """
        Initialize Spotify error with additional flags.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional context.
            is_auth_error: Set to True if this is an authentication failure.
            is_rate_limit: Set to True if this is a rate limit error.
        """
        super().__init__(message, details)
        self.is_auth_error = is_auth_error
        self.is_rate_limit = is_rate_limit


class AuthorizationMissingError(SpotifyError):
    """
    Raised when an operation needs an access token and none is available.

    The orchestrator treats this as a no-op with a warning, never as a
    fatal error: the user simply has to log in first.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, details, is_auth_error=True)


class SnapshotConflictError(SpotifyError):
    """
    Raised when a removal batch no longer matches the remote playlist.

    The positions sent with a removal request refer to the snapshot they
    were captured under. If the playlist was modified elsewhere in the
    meantime, Spotify rejects the request. The playlist must be rescanned
    before another removal run.

    Example:
        raise SnapshotConflictError(
            "Playlist changed while removing duplicates",
            details={'playlist_uri': uri, 'expected_snapshot_id': snapshot_id}
        )
    """
    pass
