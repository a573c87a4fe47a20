"""
Snapshot bookkeeping that decides whether a playlist must be rescanned.

Spotify gives every version of a playlist an opaque snapshot id. A
playlist whose current snapshot was already scanned, or is known to
contain no duplicates, does not need to be fetched again.
"""

from spot_dedup.spotify.models import Playlist


def needs_scan(playlist: Playlist) -> bool:
    """
    Return False only when the current snapshot is already accounted for.

    A playlist without a snapshot id always needs a scan.
    """
    snapshot_id = playlist.snapshot_id
    if snapshot_id is None:
        return True
    return snapshot_id not in (
        playlist.last_deduplicated_snapshot_id,
        playlist.last_scanned_snapshot_id,
    )


def record_scan(playlist: Playlist, snapshot_id: str | None) -> None:
    """
    Remember that snapshot_id was scanned.

    When the scan found nothing, the snapshot is also known to be
    duplicate-free.
    """
    playlist.last_scanned_snapshot_id = snapshot_id
    if not playlist.duplicate_items:
        playlist.last_deduplicated_snapshot_id = snapshot_id


def record_deduplicated(playlist: Playlist, snapshot_id: str) -> None:
    """Store the snapshot produced by a removal run that cleared every duplicate."""
    playlist.snapshot_id = snapshot_id
    playlist.last_deduplicated_snapshot_id = snapshot_id


def invalidate(playlist: Playlist) -> None:
    """Forget the scanned and duplicate-free snapshots so the next sync rescans."""
    playlist.last_scanned_snapshot_id = None
    playlist.last_deduplicated_snapshot_id = None
