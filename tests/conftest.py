"""Test configuration and fixtures"""

import asyncio
import tempfile
from pathlib import Path
from typing import Any

import pytest

from spot_dedup.core.database import Database
from spot_dedup.core.exceptions import AuthorizationMissingError, SnapshotConflictError, SpotifyError
from spot_dedup.spotify.models import ItemKind, ItemsPage, Playlist, PlaylistItem


def make_track(name: str, uri: str | None = None, artist: str | None = "Artist",
               album_uri: str | None = None, is_local: bool = False) -> PlaylistItem:
    """Build a track item; album name/artwork derive from album_uri."""
    return PlaylistItem(
        kind=ItemKind.TRACK,
        name=name,
        uri=uri,
        artist_or_show_name=artist,
        is_local=is_local,
        album_uri=album_uri,
        album_name=f"Album {album_uri}" if album_uri else None,
        album_image_url=f"https://i.scdn.co/image/{album_uri}" if album_uri else None,
    )


def make_episode(name: str, uri: str | None = None, show: str | None = "Show") -> PlaylistItem:
    return PlaylistItem(kind=ItemKind.EPISODE, name=name, uri=uri, artist_or_show_name=show)


class FakeSpotifyAPI:
    """
    In-memory stand-in for AsyncSpotifyAPI.

    Keeps remote playlists as item lists and really removes items by
    position, issuing a new snapshot id for every change.
    """

    def __init__(self, user_id: str = "me") -> None:
        self.user_id = user_id
        self.authorized = True
        self.remote: dict[str, dict[str, Any]] = {}
        self.listing: list[str] = []
        self.items_calls: list[tuple[str, int]] = []
        self.removal_calls: list[tuple[str, list[dict[str, Any]], str | None]] = []
        self.playlist_errors: dict[str, Exception] = {}
        self.items_errors: dict[str, Exception] = {}
        self.removal_errors: dict[int, Exception] = {}
        self.removal_gate: asyncio.Event | None = None
        self.in_flight_removals = 0
        self.max_in_flight_removals = 0
        self._snapshot_counter = 0

    def add_playlist(self, uri: str, name: str, items: list[PlaylistItem | None],
                     owner: str | None = None, snapshot_id: str | None = None) -> None:
        self.remote[uri] = {
            "name": name,
            "owner": owner or self.user_id,
            "items": list(items),
            "snapshot_id": snapshot_id or self._next_snapshot(),
        }
        self.listing.append(uri)

    def unfollow(self, uri: str) -> None:
        self.listing.remove(uri)
        del self.remote[uri]

    def _next_snapshot(self) -> str:
        self._snapshot_counter += 1
        return f"snap{self._snapshot_counter}"

    def _metadata(self, uri: str, index: int = 0) -> Playlist:
        data = self.remote[uri]
        return Playlist(
            uri=uri,
            name=data["name"],
            snapshot_id=data["snapshot_id"],
            item_count=len(data["items"]),
            owner_id=data["owner"],
            index=index,
        )

    @property
    def is_authorized(self) -> bool:
        return self.authorized

    def _check_auth(self) -> None:
        if not self.authorized:
            raise AuthorizationMissingError("Not logged in to Spotify")

    async def current_user_id(self) -> str:
        self._check_auth()
        return self.user_id

    async def owned_playlists(self, user_id: str) -> list[Playlist]:
        self._check_auth()
        return [
            self._metadata(uri, index)
            for index, uri in enumerate(self.listing)
            if self.remote[uri]["owner"] == user_id
        ]

    async def playlist(self, playlist_uri: str) -> Playlist:
        self._check_auth()
        if playlist_uri not in self.remote:
            raise SpotifyError(f"Not found: {playlist_uri}", details={"http_status": 404})
        if playlist_uri in self.playlist_errors:
            raise self.playlist_errors[playlist_uri]
        return self._metadata(playlist_uri)

    async def playlist_items_page(self, playlist_uri: str, offset: int = 0, limit: int = 100) -> ItemsPage:
        self._check_auth()
        self.items_calls.append((playlist_uri, offset))
        if playlist_uri in self.items_errors:
            raise self.items_errors[playlist_uri]
        items = self.remote[playlist_uri]["items"]
        page = items[offset:offset + limit]
        next_offset = offset + limit if offset + limit < len(items) else None
        return ItemsPage(items=tuple(page), offset=offset, total=len(items), next_offset=next_offset)

    async def remove_item_occurrences(self, playlist_uri: str, uris_with_positions: list[dict[str, Any]],
                                      expected_snapshot_id: str | None) -> str:
        self._check_auth()
        self.removal_calls.append((playlist_uri, uris_with_positions, expected_snapshot_id))
        call_number = len(self.removal_calls)

        self.in_flight_removals += 1
        self.max_in_flight_removals = max(self.max_in_flight_removals, self.in_flight_removals)
        try:
            if self.removal_gate is not None:
                await self.removal_gate.wait()
            else:
                await asyncio.sleep(0)

            if call_number in self.removal_errors:
                raise self.removal_errors[call_number]

            data = self.remote[playlist_uri]
            if expected_snapshot_id is not None and expected_snapshot_id != data["snapshot_id"]:
                raise SnapshotConflictError("Snapshot mismatch", details={"http_status": 400})

            positions = []
            for entry in uris_with_positions:
                for position in entry["positions"]:
                    item = data["items"][position]
                    if item is None or item.uri != entry["uri"]:
                        raise SnapshotConflictError("Position mismatch", details={"http_status": 400})
                    positions.append(position)

            for position in sorted(positions, reverse=True):
                del data["items"][position]
            data["snapshot_id"] = self._next_snapshot()
            return data["snapshot_id"]
        finally:
            self.in_flight_removals -= 1


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def database(temp_dir):
    """Fresh SQLite database in a temporary directory"""
    db = Database(temp_dir / "database.db")
    yield db
    db.close()


@pytest.fixture
def fake_api():
    """In-memory remote API with no playlists"""
    return FakeSpotifyAPI()


@pytest.fixture
def sample_track_data():
    """One entry of a playlist items response (track)"""
    return {
        "added_at": "2024-01-01T00:00:00Z",
        "is_local": False,
        "track": {
            "type": "track",
            "id": "4cOdK2wGLETKBW3PvgPWqT",
            "uri": "spotify:track:4cOdK2wGLETKBW3PvgPWqT",
            "name": "Test Song",
            "is_local": False,
            "artists": [
                {"id": "artist_123", "name": "Test Artist"},
                {"id": "artist_456", "name": "Featured Artist"},
            ],
            "album": {
                "uri": "spotify:album:album_123",
                "name": "Test Album",
                "images": [
                    {"url": "https://i.scdn.co/image/small", "width": 64, "height": 64},
                    {"url": "https://i.scdn.co/image/large", "width": 640, "height": 640},
                ],
            },
        },
    }


@pytest.fixture
def sample_episode_data():
    """One entry of a playlist items response (episode)"""
    return {
        "is_local": False,
        "track": {
            "type": "episode",
            "uri": "spotify:episode:ep_1",
            "name": "Episode One",
            "show": {
                "uri": "spotify:show:show_1",
                "name": "Test Podcast",
                "images": [{"url": "https://i.scdn.co/image/show", "width": 300, "height": 300}],
            },
        },
    }


@pytest.fixture
def sample_playlist_data():
    """A simplified playlist object as returned by the playlists listing"""
    return {
        "uri": "spotify:playlist:37i9dQZF1DXcBWIGoYBM5M",
        "name": "Road Trip",
        "snapshot_id": "MTY4NzQ2",
        "owner": {"id": "me", "display_name": "Me"},
        "tracks": {"total": 42},
    }
