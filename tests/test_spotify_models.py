"""
Tests for Spotify data models
"""

import pytest

from spot_dedup.spotify.models import AlbumReference, ItemKind, Playlist, PlaylistItem


class TestPlaylistItem:
    """Test PlaylistItem model"""

    def test_from_spotify_api_track(self, sample_track_data):
        """Test creating a track item from API data"""
        item = PlaylistItem.from_spotify_api(sample_track_data)

        assert item.kind == ItemKind.TRACK
        assert item.name == "Test Song"
        assert item.uri == "spotify:track:4cOdK2wGLETKBW3PvgPWqT"
        assert item.artist_or_show_name == "Test Artist"
        assert not item.is_local
        assert item.album_uri == "spotify:album:album_123"
        assert item.album_name == "Test Album"
        assert item.album_image_url == "https://i.scdn.co/image/large"

    def test_from_spotify_api_episode(self, sample_episode_data):
        """Test creating an episode item from API data"""
        item = PlaylistItem.from_spotify_api(sample_episode_data)

        assert item.kind == ItemKind.EPISODE
        assert item.name == "Episode One"
        assert item.artist_or_show_name == "Test Podcast"
        assert item.album_reference == AlbumReference(
            "spotify:show:show_1", "Test Podcast", "https://i.scdn.co/image/show"
        )

    def test_unavailable_entry(self):
        """Entries without a playable object parse to None"""
        assert PlaylistItem.from_spotify_api({"track": None}) is None
        assert PlaylistItem.from_spotify_api({}) is None

    def test_local_file(self, sample_track_data):
        """The is_local flag is read from the entry"""
        data = {**sample_track_data, "is_local": True}
        data["track"] = {**sample_track_data["track"], "is_local": True, "uri": "spotify:local:a:b:c:1"}

        assert PlaylistItem.from_spotify_api(data).is_local

    def test_no_artists(self, sample_track_data):
        """A track without artists has no artist name"""
        data = {"track": {**sample_track_data["track"], "artists": []}}
        assert PlaylistItem.from_spotify_api(data).artist_or_show_name is None

    def test_malformed_track(self):
        """A track object without a name raises KeyError"""
        with pytest.raises(KeyError):
            PlaylistItem.from_spotify_api({"track": {"type": "track", "uri": "spotify:track:1"}})

    def test_equality_ignores_album_fields(self):
        """Album display data does not affect equality"""
        a = PlaylistItem(ItemKind.TRACK, "Song", "spotify:track:1", "Band", album_uri="spotify:album:1")
        b = PlaylistItem(ItemKind.TRACK, "Song", "spotify:track:1", "Band", album_uri="spotify:album:2")
        assert a == b
        assert hash(a) == hash(b)

    def test_display_name(self):
        """Display name joins title and artist"""
        assert PlaylistItem(ItemKind.TRACK, "Song", artist_or_show_name="Band").display_name == "Song - Band"
        assert PlaylistItem(ItemKind.TRACK, "Song").display_name == "Song"
        assert PlaylistItem(ItemKind.TRACK, "").display_name == "Unknown"

    def test_album_reference_missing(self):
        """Items without an album have no reference"""
        assert PlaylistItem(ItemKind.TRACK, "Song").album_reference is None


class TestPlaylist:
    """Test Playlist model"""

    def test_from_spotify_api(self, sample_playlist_data):
        """Test creating a playlist from API data"""
        playlist = Playlist.from_spotify_api(sample_playlist_data, index=3)

        assert playlist.uri == "spotify:playlist:37i9dQZF1DXcBWIGoYBM5M"
        assert playlist.name == "Road Trip"
        assert playlist.snapshot_id == "MTY4NzQ2"
        assert playlist.item_count == 42
        assert playlist.owner_id == "me"
        assert playlist.index == 3
        assert playlist.duplicate_count == 0

    def test_missing_uri(self):
        """A playlist object without a uri raises KeyError"""
        with pytest.raises(KeyError):
            Playlist.from_spotify_api({"name": "No uri"})

    def test_update_from_keeps_bookkeeping(self, sample_playlist_data):
        """Fresh metadata does not touch scan results"""
        playlist = Playlist(
            uri="spotify:playlist:37i9dQZF1DXcBWIGoYBM5M",
            name="Old",
            snapshot_id="old",
            last_scanned_snapshot_id="old",
            last_deduplicated_snapshot_id="older",
        )
        remote = Playlist.from_spotify_api(sample_playlist_data, index=5)

        playlist.update_from(remote)

        assert playlist.name == "Road Trip"
        assert playlist.snapshot_id == "MTY4NzQ2"
        assert playlist.item_count == 42
        assert playlist.index == 5
        assert playlist.last_scanned_snapshot_id == "old"
        assert playlist.last_deduplicated_snapshot_id == "older"
