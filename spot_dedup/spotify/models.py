"""
Data models for Spotify entities.

This module defines the dataclasses passed between the Spotify API layer,
the de-duplication engine and the SQLite store.

Design Decisions:
    - Playlist entries (PlaylistItem, PositionedItem) are frozen so they
      can live in sets and be shared between tasks safely
    - PlaylistItem equality only looks at kind, uri, name and artist/show;
      album display fields never affect duplicate detection
    - Playlist is mutable: it carries per-sync bookkeeping (snapshot tokens,
      current duplicate list) that the owning task updates in place
    - Models are independent of database storage format

Usage:
    from spot_dedup.spotify.models import PlaylistItem, ItemKind

    item = PlaylistItem(
        kind=ItemKind.TRACK,
        name="Song Title",
        uri="spotify:track:abc123",
        artist_or_show_name="Artist Name",
    )
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ItemKind(str, Enum):
    """The two kinds of object a playlist can contain."""
    TRACK = "track"
    EPISODE = "episode"


@dataclass(frozen=True)
class AlbumReference:
    """
    Album (for tracks) or show (for episodes) an item belongs to.

    Only used to show artwork and album names next to duplicate items.
    Rebuilt on every scan from the current duplicates.
    """
    uri: str
    name: str | None = None
    image_url: str | None = None


def _largest_image_url(images: list[dict[str, Any]] | None) -> str | None:
    """Return the URL of the largest image in a Spotify images array."""
    if not images:
        return None
    best = max(
        images,
        key=lambda img: (img.get("width") or 0) * (img.get("height") or 0)
    )
    return best.get("url")


@dataclass(frozen=True)
class PlaylistItem:
    """
    A track or an episode inside a playlist.

    Attributes:
        kind: ItemKind.TRACK or ItemKind.EPISODE.

        name: Track or episode title as it appears on Spotify.
              Example: "Bohemian Rhapsody"

        uri: Spotify URI, if the item has one. Local files have a
             spotify:local:... URI that the Web API cannot act on.
             Example: "spotify:track:4cOdK2wGLETKBW3PvgPWqT"

        artist_or_show_name: Primary artist (first in the list) for tracks,
             show name for episodes.
             Example: "Queen"

        is_local: True for local files added from the desktop client.
             These are never compared and never removed. Always False
             for episodes.

        album_uri, album_name, album_image_url: Album (tracks) or show
             (episodes) details used for display only.

    Equality:
        Two items are equal when kind, uri, name and artist_or_show_name
        are equal. The is_local flag and album fields are ignored.
    """

    kind: ItemKind
    name: str
    uri: str | None = None
    artist_or_show_name: str | None = None
    is_local: bool = field(default=False, compare=False)
    album_uri: str | None = field(default=None, compare=False)
    album_name: str | None = field(default=None, compare=False)
    album_image_url: str | None = field(default=None, compare=False)

    @classmethod
    def from_spotify_api(cls, item_data: dict[str, Any]) -> "PlaylistItem | None":
        """
        Create a PlaylistItem from one entry of a playlist items response.

        Args:
            item_data: An element of the 'items' array returned by the
                       playlist items endpoint. The playable object sits
                       under the 'track' key for both tracks and episodes;
                       its 'type' field tells them apart.

        Returns:
            The parsed item, or None when the entry has no playable object
            (content removed from Spotify or unavailable). A None entry
            still occupies a position in the playlist.

        Raises:
            KeyError, TypeError: If the object is malformed. The API layer
                       converts these into SpotifyError.
        """
        obj = item_data.get("track")
        if not obj:
            return None

        item_type = obj.get("type", "track")

        if item_type == "episode":
            show = obj.get("show") or {}
            return cls(
                kind=ItemKind.EPISODE,
                name=obj["name"],
                uri=obj.get("uri") or None,
                artist_or_show_name=show.get("name"),
                is_local=False,
                album_uri=show.get("uri"),
                album_name=show.get("name"),
                album_image_url=_largest_image_url(show.get("images")),
            )

        artists = obj.get("artists") or []
        album = obj.get("album") or {}
        return cls(
            kind=ItemKind.TRACK,
            name=obj["name"],
            uri=obj.get("uri") or None,
            artist_or_show_name=artists[0].get("name") if artists else None,
            is_local=bool(obj.get("is_local", item_data.get("is_local", False))),
            album_uri=album.get("uri"),
            album_name=album.get("name"),
            album_image_url=_largest_image_url(album.get("images")),
        )

    @property
    def display_name(self) -> str:
        """"Name - Artist" (or just the name), "Unknown" if nameless."""
        if not self.name:
            return "Unknown"
        if self.artist_or_show_name:
            return f"{self.name} - {self.artist_or_show_name}"
        return self.name

    @property
    def album_reference(self) -> AlbumReference | None:
        if not self.album_uri:
            return None
        return AlbumReference(
            uri=self.album_uri,
            name=self.album_name,
            image_url=self.album_image_url,
        )


@dataclass(frozen=True)
class PositionedItem:
    """
    A playlist entry together with the index it occupied at scan time.

    Positions are only valid for the snapshot they were captured under:
    removing any item before them shifts them.
    """
    item: PlaylistItem
    position: int


@dataclass(frozen=True)
class ItemsPage:
    """
    One page of a playlist's items.

    Attributes:
        items: Parsed entries in server order; None for unavailable entries.
        offset: Index of the first entry of this page in the playlist.
        total: Total number of entries in the playlist.
        next_offset: Offset of the next page, or None when this is the last.
    """
    items: tuple["PlaylistItem | None", ...]
    offset: int
    total: int
    next_offset: int | None = None


@dataclass
class Playlist:
    """
    A playlist owned by the current user, as mirrored locally.

    Attributes:
        uri: Spotify URI. Example: "spotify:playlist:37i9dQZF1DXcBWIGoYBM5M"
        name: Playlist name.
        snapshot_id: Version token; changes on every content or order change.
        item_count: Number of entries (tracks + episodes + local files).
        owner_id: Spotify user id of the owner.
        index: Position of the playlist in the user's playlist listing.
               Matches the order of the desktop client's sidebar.
        duplicate_items: Output of the most recent completed scan, in
               ascending position order. Cleared when a scan starts.
        last_scanned_snapshot_id: Snapshot of the last completed scan.
        last_deduplicated_snapshot_id: Snapshot known to contain no duplicates.
    """

    uri: str
    name: str
    snapshot_id: str | None = None
    item_count: int = 0
    owner_id: str | None = None
    index: int = 0
    duplicate_items: list[PositionedItem] = field(default_factory=list)
    last_scanned_snapshot_id: str | None = None
    last_deduplicated_snapshot_id: str | None = None

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicate_items)

    @classmethod
    def from_spotify_api(cls, data: dict[str, Any], index: int = 0) -> "Playlist":
        """
        Create a Playlist from a (simplified) playlist object.

        Args:
            data: Playlist object from the current user's playlists
                  listing or from the single playlist endpoint.
            index: Position of the playlist in the listing.

        Raises:
            KeyError, TypeError: If 'uri' is missing or the object is malformed.
        """
        tracks = data.get("tracks") or {}
        owner = data.get("owner") or {}
        return cls(
            uri=data["uri"],
            name=data.get("name") or "",
            snapshot_id=data.get("snapshot_id"),
            item_count=int(tracks.get("total") or 0),
            owner_id=owner.get("id"),
            index=index,
        )

    def update_from(self, remote: "Playlist") -> None:
        """
        Copy the metadata of a freshly fetched playlist onto this one.

        Scan bookkeeping (duplicates and last scanned/deduplicated
        snapshots) is kept, so the gatekeeper can compare the new
        snapshot against it.
        """
        self.name = remote.name
        self.snapshot_id = remote.snapshot_id
        self.item_count = remote.item_count
        if remote.owner_id is not None:
            self.owner_id = remote.owner_id
        self.index = remote.index
