"""
Thread-safe SQLite database for spot-dedup.

Stores the user's owned playlists together with the outcome of their most
recent scan, so that unchanged playlists are not fetched again on the next
run and duplicates can be listed without network access.

Schema:
    playlists:          One row per owned playlist (uri, name, snapshot
                        bookkeeping, listing index)
    duplicate_items:    Current duplicates of each playlist with their
                        positions at scan time
    album_references:   One row per unique album/show referenced by a
                        current duplicate (name, artwork URL)
    playlist_albums:    Junction table (playlist_id, album_id)

Album references are shared between playlists. They are rebuilt from a
playlist's duplicates after every scan; references no playlist links to
anymore are pruned.

Usage:
    db = Database(storage_dir / "database.db")

    db.save_playlist(playlist)
    for playlist in db.get_all_playlists():
        print(playlist.name, playlist.duplicate_count)
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Iterable

from spot_dedup.core.exceptions import DatabaseError
from spot_dedup.spotify.models import (
    AlbumReference,
    ItemKind,
    Playlist,
    PlaylistItem,
    PositionedItem,
)


DATABASE_VERSION = 1


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS playlists (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uri TEXT UNIQUE NOT NULL,
    name TEXT,
    snapshot_id TEXT,
    item_count INTEGER DEFAULT 0,
    owner_id TEXT,
    list_index INTEGER DEFAULT 0,
    last_scanned_snapshot_id TEXT,
    last_deduplicated_snapshot_id TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS duplicate_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    playlist_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    kind TEXT NOT NULL,
    name TEXT,
    uri TEXT,
    artist_or_show_name TEXT,
    album_uri TEXT,
    album_name TEXT,
    album_image_url TEXT,
    FOREIGN KEY (playlist_id) REFERENCES playlists(id) ON DELETE CASCADE,
    UNIQUE(playlist_id, position)
);

CREATE TABLE IF NOT EXISTS album_references (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uri TEXT UNIQUE NOT NULL,
    name TEXT,
    image_url TEXT
);

CREATE TABLE IF NOT EXISTS playlist_albums (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    playlist_id INTEGER NOT NULL,
    album_id INTEGER NOT NULL,
    FOREIGN KEY (playlist_id) REFERENCES playlists(id) ON DELETE CASCADE,
    FOREIGN KEY (album_id) REFERENCES album_references(id) ON DELETE CASCADE,
    UNIQUE(playlist_id, album_id)
);

CREATE INDEX IF NOT EXISTS idx_playlists_uri ON playlists(uri);
CREATE INDEX IF NOT EXISTS idx_duplicate_items_playlist ON duplicate_items(playlist_id);
CREATE INDEX IF NOT EXISTS idx_playlist_albums_playlist ON playlist_albums(playlist_id);
CREATE INDEX IF NOT EXISTS idx_playlist_albums_album ON playlist_albums(album_id);
"""


class Database:
    """
    Thread-safe SQLite store for playlists and their duplicates.

    Uses a single persistent connection with thread locking for safety.
    All public methods acquire self._lock before executing.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        if not db_path.parent.exists():
            raise DatabaseError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to initialize database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the persistent database connection as a context manager.

        The connection is created once and reused for all operations.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # We handle thread safety with _lock
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        yield self._conn

    @contextmanager
    def _transaction(self, action: str) -> Generator[sqlite3.Connection, None, None]:
        """
        Run a write under the lock, committing on success.

        Rolls back and raises DatabaseError if SQLite fails.
        """
        with self._lock:
            with self._get_connection() as conn:
                try:
                    yield conn
                    conn.commit()
                except sqlite3.Error as e:
                    conn.rollback()
                    raise DatabaseError(
                        f"Failed to {action}: {e}",
                        details={"path": str(self.db_path), "original_error": str(e)}
                    ) from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __del__(self) -> None:
        """Ensure connection is closed on garbage collection."""
        if hasattr(self, '_conn') and self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise DatabaseError(
                    f"Database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _get_playlist_db_id(self, conn: sqlite3.Connection, uri: str) -> int | None:
        cursor = conn.execute("SELECT id FROM playlists WHERE uri = ?", (uri,))
        row = cursor.fetchone()
        return row[0] if row else None

    def _prune_orphan_albums(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute("""
            DELETE FROM album_references
            WHERE id NOT IN (SELECT DISTINCT album_id FROM playlist_albums)
        """)
        return cursor.rowcount

    def _row_to_playlist(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Playlist:
        cursor = conn.execute("""
            SELECT position, kind, name, uri, artist_or_show_name,
                   album_uri, album_name, album_image_url
            FROM duplicate_items
            WHERE playlist_id = ?
            ORDER BY position
        """, (row["id"],))

        duplicates = [
            PositionedItem(
                item=PlaylistItem(
                    kind=ItemKind(dup["kind"]),
                    name=dup["name"] or "",
                    uri=dup["uri"],
                    artist_or_show_name=dup["artist_or_show_name"],
                    album_uri=dup["album_uri"],
                    album_name=dup["album_name"],
                    album_image_url=dup["album_image_url"],
                ),
                position=dup["position"],
            )
            for dup in cursor.fetchall()
        ]

        return Playlist(
            uri=row["uri"],
            name=row["name"] or "",
            snapshot_id=row["snapshot_id"],
            item_count=row["item_count"] or 0,
            owner_id=row["owner_id"],
            index=row["list_index"] or 0,
            duplicate_items=duplicates,
            last_scanned_snapshot_id=row["last_scanned_snapshot_id"],
            last_deduplicated_snapshot_id=row["last_deduplicated_snapshot_id"],
        )

    # =========================================================================
    # Playlist Operations
    # =========================================================================

    def save_playlist(self, playlist: Playlist) -> None:
        """
        Create or update a playlist together with its current duplicates.

        The duplicate rows are replaced wholesale in the same transaction,
        so the stored list always mirrors playlist.duplicate_items.

        Raises:
            DatabaseError: If the write fails. Nothing is committed.
        """
        with self._transaction("save playlist") as conn:
            conn.execute("""
                INSERT INTO playlists (
                    uri, name, snapshot_id, item_count, owner_id, list_index,
                    last_scanned_snapshot_id, last_deduplicated_snapshot_id, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(uri) DO UPDATE SET
                    name = excluded.name,
                    snapshot_id = excluded.snapshot_id,
                    item_count = excluded.item_count,
                    owner_id = excluded.owner_id,
                    list_index = excluded.list_index,
                    last_scanned_snapshot_id = excluded.last_scanned_snapshot_id,
                    last_deduplicated_snapshot_id = excluded.last_deduplicated_snapshot_id,
                    updated_at = excluded.updated_at
            """, (
                playlist.uri,
                playlist.name,
                playlist.snapshot_id,
                playlist.item_count,
                playlist.owner_id,
                playlist.index,
                playlist.last_scanned_snapshot_id,
                playlist.last_deduplicated_snapshot_id,
                self._now_iso(),
            ))

            db_id = self._get_playlist_db_id(conn, playlist.uri)
            conn.execute("DELETE FROM duplicate_items WHERE playlist_id = ?", (db_id,))
            conn.executemany("""
                INSERT INTO duplicate_items (
                    playlist_id, position, kind, name, uri, artist_or_show_name,
                    album_uri, album_name, album_image_url
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                (
                    db_id,
                    dup.position,
                    dup.item.kind.value,
                    dup.item.name,
                    dup.item.uri,
                    dup.item.artist_or_show_name,
                    dup.item.album_uri,
                    dup.item.album_name,
                    dup.item.album_image_url,
                )
                for dup in playlist.duplicate_items
            ])

    def get_playlist(self, uri: str) -> Playlist | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT * FROM playlists WHERE uri = ?", (uri,))
                row = cursor.fetchone()
                return self._row_to_playlist(conn, row) if row else None

    def get_all_playlists(self) -> list[Playlist]:
        """Get every stored playlist in listing order."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT * FROM playlists ORDER BY list_index, id")
                return [self._row_to_playlist(conn, row) for row in cursor.fetchall()]

    def delete_playlist(self, uri: str) -> bool:
        """
        Delete a playlist, its duplicates and its album links.

        Album references left without any playlist are pruned.

        Returns:
            True if playlist existed and was deleted, False otherwise.
        """
        with self._transaction("delete playlist") as conn:
            cursor = conn.execute("DELETE FROM playlists WHERE uri = ?", (uri,))
            deleted = cursor.rowcount > 0
            if deleted:
                self._prune_orphan_albums(conn)
            return deleted

    def delete_playlists_not_in(self, uris: Iterable[str]) -> list[str]:
        """
        Delete every stored playlist whose uri is not in uris.

        Used after listing the user's playlists to drop the ones that were
        unfollowed or deleted on Spotify.

        Returns:
            The uris that were deleted.
        """
        keep = set(uris)
        with self._transaction("delete stale playlists") as conn:
            cursor = conn.execute("SELECT uri FROM playlists")
            stale = [row[0] for row in cursor.fetchall() if row[0] not in keep]
            conn.executemany("DELETE FROM playlists WHERE uri = ?", [(uri,) for uri in stale])
            if stale:
                self._prune_orphan_albums(conn)
            return stale

    # =========================================================================
    # Album References
    # =========================================================================

    def replace_album_references(self, playlist_uri: str, references: Iterable[AlbumReference]) -> None:
        """
        Make the playlist link to exactly the given album references.

        New references are inserted (or refreshed), links that are no longer
        wanted are removed, and references nobody links to are pruned.

        Raises:
            DatabaseError: If the playlist is not stored or the write fails.
        """
        unique = {ref.uri: ref for ref in references}

        with self._transaction("replace album references") as conn:
            db_id = self._get_playlist_db_id(conn, playlist_uri)
            if db_id is None:
                raise DatabaseError(
                    f"Playlist not stored: {playlist_uri}",
                    details={"playlist_uri": playlist_uri}
                )

            conn.execute("DELETE FROM playlist_albums WHERE playlist_id = ?", (db_id,))

            for ref in unique.values():
                conn.execute("""
                    INSERT INTO album_references (uri, name, image_url)
                    VALUES (?, ?, ?)
                    ON CONFLICT(uri) DO UPDATE SET
                        name = COALESCE(excluded.name, album_references.name),
                        image_url = COALESCE(excluded.image_url, album_references.image_url)
                """, (ref.uri, ref.name, ref.image_url))
                conn.execute("""
                    INSERT OR IGNORE INTO playlist_albums (playlist_id, album_id)
                    SELECT ?, id FROM album_references WHERE uri = ?
                """, (db_id, ref.uri))

            self._prune_orphan_albums(conn)

    def get_album_reference(self, uri: str) -> AlbumReference | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT uri, name, image_url FROM album_references WHERE uri = ?", (uri,)
                )
                row = cursor.fetchone()
                return AlbumReference(row["uri"], row["name"], row["image_url"]) if row else None

    def get_album_references(self, playlist_uri: str) -> list[AlbumReference]:
        """Get the album references linked to a playlist, ordered by uri."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT a.uri, a.name, a.image_url
                    FROM album_references a
                    JOIN playlist_albums pa ON a.id = pa.album_id
                    JOIN playlists p ON p.id = pa.playlist_id
                    WHERE p.uri = ?
                    ORDER BY a.uri
                """, (playlist_uri,))
                return [
                    AlbumReference(row["uri"], row["name"], row["image_url"])
                    for row in cursor.fetchall()
                ]

    # =========================================================================
    # Maintenance
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Get overall database statistics."""
        with self._lock:
            with self._get_connection() as conn:
                stats: dict[str, Any] = {}

                cursor = conn.execute("SELECT COUNT(*) FROM playlists")
                stats["playlists"] = cursor.fetchone()[0]

                cursor = conn.execute(
                    "SELECT COUNT(DISTINCT playlist_id) FROM duplicate_items"
                )
                stats["playlists_with_duplicates"] = cursor.fetchone()[0]

                cursor = conn.execute("SELECT COUNT(*) FROM duplicate_items")
                stats["duplicate_items"] = cursor.fetchone()[0]

                cursor = conn.execute("SELECT COUNT(*) FROM album_references")
                stats["album_references"] = cursor.fetchone()[0]

                return stats

    def clear(self) -> None:
        """Delete every stored playlist and album reference (logout)."""
        with self._transaction("clear database") as conn:
            conn.execute("DELETE FROM playlists")
            conn.execute("DELETE FROM album_references")
