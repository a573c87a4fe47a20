"""
Spotify module for spot-dedup.

Components:
    - SpotifyClient: spotipy singleton (blocking, raw dictionaries)
    - AsyncSpotifyAPI: throttled async facade returning models
    - RemoteAPI: the protocol the de-duplication engine depends on
    - models: PlaylistItem, PositionedItem, Playlist, AlbumReference, ItemsPage
"""

from spot_dedup.spotify.client import AsyncSpotifyAPI, RemoteAPI, SpotifyClient
from spot_dedup.spotify.models import (
    AlbumReference,
    ItemKind,
    ItemsPage,
    Playlist,
    PlaylistItem,
    PositionedItem,
)

__all__ = [
    "SpotifyClient",
    "AsyncSpotifyAPI",
    "RemoteAPI",
    "AlbumReference",
    "ItemKind",
    "ItemsPage",
    "Playlist",
    "PlaylistItem",
    "PositionedItem",
]
