"""
Spotify Web API access for spot-dedup.

This module provides two layers:

    SpotifyClient: a singleton wrapper around spotipy. Synchronous, returns
        raw Web API dictionaries and translates spotipy/requests failures
        into SpotifyError.

    AsyncSpotifyAPI: the asynchronous API the de-duplication engine talks
        to. Runs SpotifyClient calls in worker threads behind a request
        throttler and converts the responses into models.

Singleton Pattern:
    SpotifyClient must be initialized once with init(); subsequent calls to
    SpotifyClient() return the same instance. Calling init() twice raises.

Authentication:
    spotipy's SpotifyOAuth (authorization code flow) with the playlist read
    and modify scopes. The token is cached in the storage directory so the
    browser flow only runs on first use or after logout.

Usage:
    from spot_dedup.spotify.client import SpotifyClient, AsyncSpotifyAPI

    SpotifyClient.init(
        client_id="your_client_id",
        client_secret="your_client_secret",
        cache_path=config.storage.token_cache_path,
    )

    api = AsyncSpotifyAPI(SpotifyClient(), requests_per_second=10)
    page = await api.playlist_items_page("spotify:playlist:...", offset=0)
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, Protocol, TypeVar

import requests
import spotipy
from asyncio_throttle import Throttler
from spotipy.cache_handler import CacheFileHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from spot_dedup.core.config import DEFAULT_REDIRECT_URI
from spot_dedup.core.exceptions import (
    AuthorizationMissingError,
    SnapshotConflictError,
    SpotifyError,
)
from spot_dedup.core.logger import get_logger
from spot_dedup.spotify.models import ItemsPage, Playlist, PlaylistItem


logger = get_logger(__name__)

T = TypeVar("T")

# Scopes needed to list the user's playlists (including private and
# collaborative ones) and to remove items from them.
SPOTIFY_SCOPES = (
    "playlist-read-private "
    "playlist-read-collaborative "
    "playlist-modify-public "
    "playlist-modify-private"
)

# Web API page size ceilings
PLAYLISTS_PAGE_LIMIT = 50
ITEMS_PAGE_LIMIT = 100


def _translate_spotify_exception(
    e: spotipy.SpotifyException,
    action: str,
    details: dict[str, Any]
) -> SpotifyError:
    """
    Convert a spotipy exception into a SpotifyError with the right flags.

    Args:
        e: The exception raised by spotipy.
        action: Short description used in the message ("fetch playlist").
        details: Context merged into the error details.
    """
    details = {**details, "http_status": e.http_status, "original_error": str(e)}

    if e.http_status == 429:
        return SpotifyError(
            f"Rate limited while trying to {action}",
            details=details,
            is_rate_limit=True
        )
    if e.http_status == 401:
        return SpotifyError(
            f"Spotify rejected the access token while trying to {action}",
            details=details,
            is_auth_error=True
        )
    if e.http_status == 404:
        return SpotifyError(f"Not found while trying to {action}", details=details)
    return SpotifyError(f"Failed to {action}: {e.msg}", details=details)


class SpotifyClientMeta(type):
    """
    Metaclass implementing the singleton pattern for SpotifyClient.

    This metaclass ensures:
    1. SpotifyClient cannot be instantiated before init() is called
    2. init() can only be called once
    3. After init(), SpotifyClient() always returns the same instance
    """

    _instance: "SpotifyClient | None" = None
    _initialized: bool = False

    def __call__(cls) -> "SpotifyClient":
        """
        Get the SpotifyClient singleton instance.

        Raises:
            SpotifyError: If init() has not been called yet.
        """
        if cls._instance is None:
            raise SpotifyError(
                "SpotifyClient not initialized. Call SpotifyClient.init("
                "client_id, client_secret, ...) first.",
                is_auth_error=True
            )
        return cls._instance

    def init(
        cls,
        client_id: str,
        client_secret: str,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        cache_path: Path | None = None,
        authenticate: bool = True
    ) -> "SpotifyClient":
        """
        Initialize the SpotifyClient singleton.

        Args:
            client_id: Spotify application client ID from Developer Dashboard.
            client_secret: Spotify application client secret.
            redirect_uri: OAuth redirect URI registered for the application.
            cache_path: File where spotipy caches the OAuth token.
                        None keeps spotipy's default (.cache in CWD).
            authenticate: If True, make one call (current user profile) so
                          the browser authorization runs now rather than in
                          the middle of a sync, and bad credentials fail fast.

        Returns:
            The initialized SpotifyClient singleton instance.

        Raises:
            SpotifyError: If init() has already been called.
            SpotifyError: If authentication fails (invalid credentials,
                          network error, authorization refused).
        """
        if cls._initialized:
            raise SpotifyError(
                "SpotifyClient.init() has already been called. "
                "Use SpotifyClient() to get the existing instance.",
                is_auth_error=True
            )

        try:
            cache_handler = CacheFileHandler(
                cache_path=str(cache_path) if cache_path is not None else None
            )
            auth_manager = SpotifyOAuth(
                client_id=client_id,
                client_secret=client_secret,
                redirect_uri=redirect_uri,
                scope=SPOTIFY_SCOPES,
                cache_handler=cache_handler,
                open_browser=True
            )
            spotify_instance = spotipy.Spotify(auth_manager=auth_manager)

            instance = super().__call__(spotify_instance, auth_manager)

            if authenticate:
                instance.current_user_id()

            cls._instance = instance
            cls._initialized = True

            return instance

        except SpotifyError as e:
            raise SpotifyError(
                f"Spotify authentication failed: {e}",
                details=e.details,
                is_auth_error=True
            ) from e
        except SpotifyOauthError as e:
            raise SpotifyError(
                f"Spotify authorization failed: {e}",
                details={"original_error": str(e)},
                is_auth_error=True
            ) from e

    def is_initialized(cls) -> bool:
        """Check if the SpotifyClient has been initialized."""
        return cls._initialized

    def reset(cls) -> None:
        """
        Reset the singleton state (for testing only).

        Warning:
            Do not use this in production code. It exists only to
            enable proper test isolation.
        """
        cls._instance = None
        cls._initialized = False


class SpotifyClient(metaclass=SpotifyClientMeta):
    """
    Singleton Spotify API client.

    Wraps spotipy.Spotify. Every method is blocking and returns the raw
    Web API dictionary; model conversion happens in AsyncSpotifyAPI.

    Attributes:
        _spotify: The underlying spotipy.Spotify instance.
        _auth_manager: The SpotifyOAuth manager (token cache access).

    Thread Safety:
        Methods are called from worker threads by AsyncSpotifyAPI. spotipy
        keeps one requests session; concurrent calls are serialized per
        connection by urllib3's pool.
    """

    def __init__(self, spotify_instance: spotipy.Spotify, auth_manager: SpotifyOAuth) -> None:
        """
        Note:
            This constructor is called by the metaclass init() method.
            Do not call directly, use SpotifyClient.init() instead.
        """
        self._spotify = spotify_instance
        self._auth_manager = auth_manager

    @property
    def has_token(self) -> bool:
        """True if a cached access token (or refresh token) is available."""
        token_info = self._auth_manager.cache_handler.get_cached_token()
        return bool(token_info)

    # =========================================================================
    # User Operations
    # =========================================================================

    def current_user_id(self) -> str:
        """
        Get the Spotify user id of the authenticated user.

        Raises:
            SpotifyError: On network failure, rejected token, or a profile
                          without an id.
        """
        try:
            result = self._spotify.current_user()
        except spotipy.SpotifyException as e:
            raise _translate_spotify_exception(e, "fetch current user", {}) from e
        except requests.exceptions.RequestException as e:
            raise SpotifyError(
                f"Network error while fetching current user: {e}",
                details={"original_error": str(e)}
            ) from e

        if not result or not result.get("id"):
            raise SpotifyError("Spotify returned a user profile without an id")
        return result["id"]

    def current_user_playlists(self, limit: int = PLAYLISTS_PAGE_LIMIT, offset: int = 0) -> dict[str, Any]:
        """
        Get one page of the playlists the current user owns or follows.

        Args:
            limit: Page size (max 50).
            offset: Index of the first playlist to return.

        Returns:
            Paging object: 'items' (simplified playlist objects), 'total',
            'next' (URL or None).
        """
        try:
            result = self._spotify.current_user_playlists(
                limit=min(limit, PLAYLISTS_PAGE_LIMIT),
                offset=offset
            )
        except spotipy.SpotifyException as e:
            raise _translate_spotify_exception(
                e, "list playlists", {"offset": offset}
            ) from e
        except requests.exceptions.RequestException as e:
            raise SpotifyError(
                f"Network error while listing playlists: {e}",
                details={"offset": offset, "original_error": str(e)}
            ) from e

        if result is None:
            raise SpotifyError("Empty response while listing playlists", details={"offset": offset})
        return result

    # =========================================================================
    # Playlist Operations
    # =========================================================================

    def playlist(self, playlist_uri: str) -> dict[str, Any]:
        """
        Get playlist metadata (no items).

        Returns:
            Dictionary with uri, name, snapshot_id, owner and tracks.total.

        Raises:
            SpotifyError: If playlist not found, inaccessible, or network error.
        """
        try:
            result = self._spotify.playlist(
                playlist_uri,
                fields="uri,name,snapshot_id,owner.id,tracks.total"
            )
        except spotipy.SpotifyException as e:
            raise _translate_spotify_exception(
                e, "fetch playlist", {"playlist_uri": playlist_uri}
            ) from e
        except requests.exceptions.RequestException as e:
            raise SpotifyError(
                f"Network error while fetching playlist: {e}",
                details={"playlist_uri": playlist_uri, "original_error": str(e)}
            ) from e

        if result is None:
            raise SpotifyError(
                f"Playlist not found: {playlist_uri}",
                details={"playlist_uri": playlist_uri}
            )
        return result

    def playlist_items(
        self,
        playlist_uri: str,
        limit: int = ITEMS_PAGE_LIMIT,
        offset: int = 0
    ) -> dict[str, Any]:
        """
        Get one page of a playlist's items (tracks and episodes).

        Args:
            playlist_uri: Spotify playlist URI, URL or ID.
            limit: Page size (max 100).
            offset: Index of the first item to return.

        Returns:
            Paging object: 'items' (playlist track objects, each with an
            'is_local' flag and a 'track' object or null), 'total', 'next'.
        """
        try:
            result = self._spotify.playlist_items(
                playlist_uri,
                limit=min(limit, ITEMS_PAGE_LIMIT),
                offset=offset,
                additional_types=["track", "episode"]
            )
        except spotipy.SpotifyException as e:
            raise _translate_spotify_exception(
                e, "fetch playlist items", {"playlist_uri": playlist_uri, "offset": offset}
            ) from e
        except requests.exceptions.RequestException as e:
            raise SpotifyError(
                f"Network error while fetching playlist items: {e}",
                details={"playlist_uri": playlist_uri, "offset": offset, "original_error": str(e)}
            ) from e

        if result is None:
            raise SpotifyError(
                f"Failed to fetch playlist items: {playlist_uri}",
                details={"playlist_uri": playlist_uri, "offset": offset}
            )
        return result

    def remove_item_occurrences(
        self,
        playlist_uri: str,
        uris_with_positions: list[dict[str, Any]],
        snapshot_id: str | None = None
    ) -> dict[str, Any]:
        """
        Remove specific occurrences (by position) of items from a playlist.

        Args:
            playlist_uri: Spotify playlist URI.
            uris_with_positions: [{"uri": ..., "positions": [..]}, ...],
                                 at most 100 positions in total.
            snapshot_id: Snapshot the positions were captured under. Spotify
                         rejects the request if the positions no longer
                         match that version of the playlist.

        Returns:
            Response dictionary containing the new 'snapshot_id'.

        Raises:
            SnapshotConflictError: If Spotify rejects the positions (400/409).
            SpotifyError: For any other failure.
        """
        details = {
            "playlist_uri": playlist_uri,
            "expected_snapshot_id": snapshot_id,
            "item_count": sum(len(entry["positions"]) for entry in uris_with_positions),
        }
        try:
            result = self._spotify.playlist_remove_specific_occurrences_of_items(
                playlist_uri,
                uris_with_positions,
                snapshot_id=snapshot_id
            )
        except spotipy.SpotifyException as e:
            if e.http_status in (400, 409):
                raise SnapshotConflictError(
                    f"Playlist changed while removing duplicates: {e.msg}",
                    details={**details, "http_status": e.http_status}
                ) from e
            raise _translate_spotify_exception(e, "remove playlist items", details) from e
        except requests.exceptions.RequestException as e:
            raise SpotifyError(
                f"Network error while removing playlist items: {e}",
                details={**details, "original_error": str(e)}
            ) from e

        if result is None:
            raise SpotifyError("Empty response while removing playlist items", details=details)
        return result


# =============================================================================
# Async API
# =============================================================================


class RemoteAPI(Protocol):
    """
    The remote operations the de-duplication engine depends on.

    Implemented by AsyncSpotifyAPI and by fakes in the test suite.
    """

    @property
    def is_authorized(self) -> bool: ...

    async def current_user_id(self) -> str: ...

    async def owned_playlists(self, user_id: str) -> list[Playlist]: ...

    async def playlist(self, playlist_uri: str) -> Playlist: ...

    async def playlist_items_page(
        self, playlist_uri: str, offset: int = 0, limit: int = ITEMS_PAGE_LIMIT
    ) -> ItemsPage: ...

    async def remove_item_occurrences(
        self,
        playlist_uri: str,
        uris_with_positions: list[dict[str, Any]],
        expected_snapshot_id: str | None
    ) -> str: ...


def _make_throttler(requests_per_second: float) -> Throttler:
    """Build a throttler allowing requests_per_second (fractions allowed)."""
    if requests_per_second >= 1:
        return Throttler(rate_limit=int(requests_per_second), period=1.0)
    return Throttler(rate_limit=1, period=1.0 / requests_per_second)


class AsyncSpotifyAPI:
    """
    Asynchronous, throttled, model-returning facade over SpotifyClient.

    Each call runs the blocking spotipy request in a worker thread via
    asyncio.to_thread, after acquiring a slot from an asyncio_throttle
    Throttler shared by every playlist task.

    Cancellation:
        Cancelling the awaiting task abandons the result, but a request that
        already left the machine still completes on Spotify's side.

    Attributes:
        _client: The SpotifyClient singleton (or any object with the same
                 methods).
        _throttler: Shared request rate limiter.
        _user_id: Cached id of the current user, fetched on first use.
    """

    def __init__(self, client: SpotifyClient, requests_per_second: float = 10.0) -> None:
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self._client = client
        self._throttler = _make_throttler(requests_per_second)
        self._user_id: str | None = None

    @property
    def is_authorized(self) -> bool:
        return self._client.has_token

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if not self.is_authorized:
            raise AuthorizationMissingError("Not logged in to Spotify")
        async with self._throttler:
            return await asyncio.to_thread(func, *args, **kwargs)

    async def current_user_id(self) -> str:
        """Id of the current user. Fetched once, then served from memory."""
        if self._user_id is None:
            self._user_id = await self._call(self._client.current_user_id)
        return self._user_id

    async def owned_playlists(self, user_id: str) -> list[Playlist]:
        """
        List every playlist owned by user_id, in listing order.

        Pages through the current user's playlists until exhausted. Playlists
        the user merely follows are dropped, but their listing position still
        counts toward the index of the playlists that are kept.

        Raises:
            SpotifyError: If any page fails or a playlist object is malformed.
        """
        owned: list[Playlist] = []
        offset = 0

        while True:
            response = await self._call(
                self._client.current_user_playlists,
                limit=PLAYLISTS_PAGE_LIMIT,
                offset=offset
            )
            items = response.get("items") or []

            for i, data in enumerate(items):
                if not data:
                    continue
                try:
                    playlist = Playlist.from_spotify_api(data, index=offset + i)
                except (KeyError, TypeError, ValueError) as e:
                    raise SpotifyError(
                        f"Malformed playlist object in listing: {e}",
                        details={"offset": offset + i, "original_error": str(e)}
                    ) from e
                if playlist.owner_id == user_id:
                    owned.append(playlist)

            if response.get("next") is None or not items:
                break
            offset += len(items)

        logger.debug(f"Found {len(owned)} playlists owned by {user_id}")
        return owned

    async def playlist(self, playlist_uri: str) -> Playlist:
        """Fetch fresh metadata (name, snapshot, item count) for one playlist."""
        data = await self._call(self._client.playlist, playlist_uri)
        try:
            return Playlist.from_spotify_api(data)
        except (KeyError, TypeError, ValueError) as e:
            raise SpotifyError(
                f"Malformed playlist object: {e}",
                details={"playlist_uri": playlist_uri, "original_error": str(e)}
            ) from e

    async def playlist_items_page(
        self,
        playlist_uri: str,
        offset: int = 0,
        limit: int = ITEMS_PAGE_LIMIT
    ) -> ItemsPage:
        """
        Fetch and parse one page of a playlist's items.

        Returns:
            ItemsPage whose items keep server order. Unavailable entries are
            None so positions stay aligned with the remote playlist.
        """
        response = await self._call(
            self._client.playlist_items,
            playlist_uri,
            limit=limit,
            offset=offset
        )
        raw_items = response.get("items") or []

        try:
            items = tuple(
                PlaylistItem.from_spotify_api(entry) if entry else None
                for entry in raw_items
            )
            total = int(response.get("total") or 0)
        except (KeyError, TypeError, ValueError) as e:
            raise SpotifyError(
                f"Malformed playlist items response: {e}",
                details={"playlist_uri": playlist_uri, "offset": offset, "original_error": str(e)}
            ) from e

        next_offset = offset + len(items) if response.get("next") and items else None
        return ItemsPage(items=items, offset=offset, total=total, next_offset=next_offset)

    async def remove_item_occurrences(
        self,
        playlist_uri: str,
        uris_with_positions: list[dict[str, Any]],
        expected_snapshot_id: str | None
    ) -> str:
        """
        Remove the given occurrences and return the playlist's new snapshot id.

        Raises:
            SnapshotConflictError: If the positions no longer match.
            SpotifyError: For other failures, or a response without a snapshot.
        """
        response = await self._call(
            self._client.remove_item_occurrences,
            playlist_uri,
            uris_with_positions,
            snapshot_id=expected_snapshot_id
        )
        snapshot_id = response.get("snapshot_id")
        if not snapshot_id:
            raise SpotifyError(
                "Removal response did not contain a snapshot id",
                details={"playlist_uri": playlist_uri}
            )
        return snapshot_id
