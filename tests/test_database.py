"""
Tests for the SQLite store
"""

import sqlite3

import pytest

from spot_dedup.core.database import Database
from spot_dedup.core.exceptions import DatabaseError
from spot_dedup.spotify.models import AlbumReference, ItemKind, Playlist, PositionedItem

from tests.conftest import make_episode, make_track


def _playlist(uri: str = "spotify:playlist:p", index: int = 0, **kwargs) -> Playlist:
    return Playlist(uri=uri, name=f"Name of {uri}", index=index, **kwargs)


class TestDatabaseInit:
    """Test database creation"""

    def test_missing_parent_directory(self, temp_dir):
        """A database cannot be created in a missing directory"""
        with pytest.raises(DatabaseError):
            Database(temp_dir / "missing" / "database.db")

    def test_reopen_keeps_data(self, temp_dir):
        """Data survives closing and reopening"""
        db = Database(temp_dir / "database.db")
        db.save_playlist(_playlist())
        db.close()

        reopened = Database(temp_dir / "database.db")
        assert reopened.get_playlist("spotify:playlist:p") is not None
        reopened.close()

    def test_version_mismatch(self, temp_dir):
        """A database from another schema version is refused"""
        path = temp_dir / "database.db"
        Database(path).close()
        conn = sqlite3.connect(path)
        conn.execute("UPDATE schema_version SET version = 99")
        conn.commit()
        conn.close()

        with pytest.raises(DatabaseError):
            Database(path)


class TestPlaylists:
    """Test playlist persistence"""

    def test_round_trip(self, database):
        """Every field and duplicate survives a save"""
        song = make_track("Song", uri="spotify:track:1", artist="Band", album_uri="spotify:album:1")
        episode = make_episode("Ep", uri="spotify:episode:1", show="Pod")
        playlist = _playlist(
            snapshot_id="s2",
            item_count=12,
            owner_id="me",
            duplicate_items=[PositionedItem(song, 3), PositionedItem(episode, 7)],
            last_scanned_snapshot_id="s2",
            last_deduplicated_snapshot_id="s1",
        )

        database.save_playlist(playlist)
        stored = database.get_playlist(playlist.uri)

        assert stored == playlist
        assert stored.duplicate_items[0].item.album_name == "Album spotify:album:1"
        assert stored.duplicate_items[1].item.kind == ItemKind.EPISODE

    def test_save_replaces_duplicates(self, database):
        """Saving again mirrors the new duplicate list"""
        song = make_track("Song", uri="spotify:track:1")
        playlist = _playlist(duplicate_items=[PositionedItem(song, 1), PositionedItem(song, 2)])
        database.save_playlist(playlist)

        playlist.duplicate_items = [PositionedItem(song, 2)]
        playlist.name = "Renamed"
        database.save_playlist(playlist)

        stored = database.get_playlist(playlist.uri)
        assert stored.name == "Renamed"
        assert [d.position for d in stored.duplicate_items] == [2]

    def test_unknown_playlist(self, database):
        """Unknown uris return None"""
        assert database.get_playlist("spotify:playlist:nope") is None

    def test_listing_order(self, database):
        """Playlists come back ordered by listing index"""
        database.save_playlist(_playlist("spotify:playlist:c", index=2))
        database.save_playlist(_playlist("spotify:playlist:a", index=0))
        database.save_playlist(_playlist("spotify:playlist:b", index=1))

        uris = [p.uri for p in database.get_all_playlists()]
        assert uris == ["spotify:playlist:a", "spotify:playlist:b", "spotify:playlist:c"]

    def test_delete_playlist(self, database):
        """Deleting removes the playlist and its duplicates"""
        song = make_track("Song", uri="spotify:track:1")
        database.save_playlist(_playlist(duplicate_items=[PositionedItem(song, 1)]))

        assert database.delete_playlist("spotify:playlist:p")
        assert not database.delete_playlist("spotify:playlist:p")
        assert database.get_stats()["duplicate_items"] == 0

    def test_delete_playlists_not_in(self, database):
        """Only listed playlists are kept"""
        for uri in ("spotify:playlist:a", "spotify:playlist:b", "spotify:playlist:c"):
            database.save_playlist(_playlist(uri))

        deleted = database.delete_playlists_not_in({"spotify:playlist:b"})

        assert sorted(deleted) == ["spotify:playlist:a", "spotify:playlist:c"]
        assert [p.uri for p in database.get_all_playlists()] == ["spotify:playlist:b"]


class TestAlbumReferences:
    """Test album reference storage"""

    def test_replace_links(self, database):
        """Replacing links drops references nobody uses"""
        database.save_playlist(_playlist())
        first = AlbumReference("spotify:album:1", "One", "https://img/1")
        second = AlbumReference("spotify:album:2", "Two", None)

        database.replace_album_references("spotify:playlist:p", [second, first, first])
        assert database.get_album_references("spotify:playlist:p") == [first, second]

        database.replace_album_references("spotify:playlist:p", [second])
        assert database.get_album_references("spotify:playlist:p") == [second]
        assert database.get_album_reference("spotify:album:1") is None

    def test_shared_reference(self, database):
        """A reference used by two playlists survives one of them"""
        database.save_playlist(_playlist("spotify:playlist:a"))
        database.save_playlist(_playlist("spotify:playlist:b"))
        ref = AlbumReference("spotify:album:1", "One", "https://img/1")
        database.replace_album_references("spotify:playlist:a", [ref])
        database.replace_album_references("spotify:playlist:b", [ref])

        database.delete_playlist("spotify:playlist:a")
        assert database.get_album_reference("spotify:album:1") == ref

        database.delete_playlist("spotify:playlist:b")
        assert database.get_album_reference("spotify:album:1") is None

    def test_missing_fields_keep_stored_values(self, database):
        """A reference without artwork does not erase the stored artwork"""
        database.save_playlist(_playlist())
        database.replace_album_references(
            "spotify:playlist:p", [AlbumReference("spotify:album:1", "One", "https://img/1")]
        )
        database.replace_album_references(
            "spotify:playlist:p", [AlbumReference("spotify:album:1", None, None)]
        )

        stored = database.get_album_reference("spotify:album:1")
        assert stored.name == "One"
        assert stored.image_url == "https://img/1"

    def test_unknown_playlist(self, database):
        """Linking to a playlist that is not stored fails"""
        with pytest.raises(DatabaseError):
            database.replace_album_references("spotify:playlist:nope", [])


class TestMaintenance:
    """Test stats and clear"""

    def test_stats_and_clear(self, database):
        """Stats count stored rows; clear empties everything"""
        song = make_track("Song", uri="spotify:track:1")
        database.save_playlist(_playlist("spotify:playlist:a", duplicate_items=[PositionedItem(song, 1)]))
        database.save_playlist(_playlist("spotify:playlist:b"))
        database.replace_album_references("spotify:playlist:a", [AlbumReference("spotify:album:1")])

        assert database.get_stats() == {
            "playlists": 2,
            "playlists_with_duplicates": 1,
            "duplicate_items": 1,
            "album_references": 1,
        }

        database.clear()
        assert database.get_stats() == {
            "playlists": 0,
            "playlists_with_duplicates": 0,
            "duplicate_items": 0,
            "album_references": 0,
        }
