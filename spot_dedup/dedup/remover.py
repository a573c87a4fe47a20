"""
Removal of duplicate items from a playlist.

Spotify removes items by (uri, position) pairs, at most 100 per request,
and every request names the snapshot the positions were captured under.

Batches are planned from the highest position down. Removing a later item
never shifts an earlier one, so the positions of every batch that is still
pending stay valid after each request. Batches are sent strictly one after
another; each request carries the snapshot returned by the previous one.

If Spotify rejects a batch (the playlist changed elsewhere), the run stops.
Items already removed stay removed, the rest stay flagged, and the playlist
is marked for a rescan.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from spot_dedup.core.database import Database
from spot_dedup.core.exceptions import AuthorizationMissingError, SnapshotConflictError, SpotDedupError
from spot_dedup.core.logger import get_logger, log_removed_duplicates
from spot_dedup.dedup import gatekeeper
from spot_dedup.spotify.client import RemoteAPI
from spot_dedup.spotify.models import Playlist, PositionedItem
from spot_dedup.utils import chunked


logger = get_logger(__name__)

# Spotify accepts at most 100 items per removal request
MAX_BATCH_SIZE = 100


@dataclass(frozen=True)
class RemovalBatch:
    """
    Up to MAX_BATCH_SIZE duplicates removed in a single request.

    Attributes:
        items: Duplicates in descending position order.
    """
    items: tuple[PositionedItem, ...]

    def __len__(self) -> int:
        return len(self.items)

    def uris_with_positions(self) -> list[dict[str, Any]]:
        """
        Build the request body: one entry per uri with all its positions.

        Entries keep the order in which their uri first appears, and
        positions keep the batch's descending order. Items without a uri
        cannot be addressed and are left out.

        Example:
            [{"uri": "spotify:track:a", "positions": [41, 17]},
             {"uri": "spotify:track:b", "positions": [30]}]
        """
        grouped: dict[str, list[int]] = {}
        for entry in self.items:
            if not entry.item.uri:
                continue
            grouped.setdefault(entry.item.uri, []).append(entry.position)
        return [{"uri": uri, "positions": positions} for uri, positions in grouped.items()]

    def skipped_items(self) -> list[PositionedItem]:
        """Items that uris_with_positions() leaves out."""
        return [entry for entry in self.items if not entry.item.uri]

    @property
    def removable_items(self) -> list[PositionedItem]:
        return [entry for entry in self.items if entry.item.uri]


def plan_batches(
    duplicates: list[PositionedItem],
    batch_size: int = MAX_BATCH_SIZE
) -> list[RemovalBatch]:
    """
    Split duplicates into removal batches, highest positions first.

    Raises:
        ValueError: If batch_size is not between 1 and MAX_BATCH_SIZE.

    Example:
        150 duplicates -> [batch of 100 (positions 149..50), batch of 50]
    """
    if not 1 <= batch_size <= MAX_BATCH_SIZE:
        raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")

    ordered = sorted(duplicates, key=lambda entry: entry.position, reverse=True)
    return [RemovalBatch(items=tuple(chunk)) for chunk in chunked(ordered, batch_size)]


def _shifted(entry: PositionedItem, removed_positions: set[int]) -> PositionedItem:
    """Move entry down by the number of removed positions before it."""
    shift = sum(1 for position in removed_positions if position < entry.position)
    if not shift:
        return entry
    return PositionedItem(entry.item, entry.position - shift)


@dataclass
class RemovalResult:
    """
    Outcome of a removal run on one playlist.

    Attributes:
        playlist_uri: The playlist the run worked on.
        removed_count: Items removed on Spotify.
        batches_completed: Requests that succeeded.
        batches_total: Requests planned.
        snapshot_id: Latest snapshot returned by Spotify, or None if no
                     request succeeded.
        error: The failure that stopped the run, if any.
    """
    playlist_uri: str
    removed_count: int = 0
    batches_completed: int = 0
    batches_total: int = 0
    snapshot_id: str | None = None
    error: SpotDedupError | None = field(default=None, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.error is None


class BatchRemover:
    """
    Removes a playlist's flagged duplicates in sequential batches.

    The remover mutates the Playlist it is given: removed items leave
    playlist.duplicate_items, item_count goes down, and the snapshot
    bookkeeping is updated. If a Database is provided, the playlist is
    saved after the run (whether it succeeded or not).

    Example:
        remover = BatchRemover(api, database)
        result = await remover.remove_duplicates(playlist)
        if not result.succeeded:
            logger.error(f"Removal stopped: {result.error}")
    """

    def __init__(
        self,
        api: RemoteAPI,
        database: Database | None = None,
        batch_size: int = MAX_BATCH_SIZE
    ) -> None:
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        self._api = api
        self._database = database
        self._batch_size = batch_size

    async def remove_duplicates(self, playlist: Playlist) -> RemovalResult:
        """
        Remove every flagged duplicate of playlist from Spotify.

        Behavior:
            1. Nothing to do (no duplicates, no uri, not logged in):
               return a successful empty result.
            2. The duplicate list was not captured under the current
               snapshot: send nothing and report a SnapshotConflictError.
            3. Plan batches from the highest position down.
            4. Send batches one at a time. The first names the scanned
               snapshot, each later one the snapshot the previous returned.
            5. After each successful batch, drop its items from the
               duplicate list, shift the positions of the skipped items
               above them, and lower item_count.
            6. On failure, stop and forget the recorded snapshots so the
               next sync rescans. The stored snapshot id is left as it was.
            7. After the last batch, record the new snapshot as scanned
               (and duplicate-free if nothing is left), then persist.

        Returns:
            RemovalResult. Failures are reported in result.error, never raised.

        Raises:
            asyncio.CancelledError: If the task is cancelled. Items of the
                interrupted batch are kept and nothing is persisted.
        """
        result = RemovalResult(playlist_uri=playlist.uri)

        if not playlist.duplicate_items or not playlist.uri:
            return result

        if not self._api.is_authorized:
            logger.warning(f"Not logged in, skipping duplicate removal for {playlist.name}")
            return result

        scanned_snapshot = playlist.last_scanned_snapshot_id
        if scanned_snapshot is None or scanned_snapshot != playlist.snapshot_id:
            logger.warning(
                f"Duplicates of {playlist.name} are out of date, rescan before removing them"
            )
            result.error = SnapshotConflictError(
                "Duplicate list is out of date, rescan needed",
                details={
                    "playlist_uri": playlist.uri,
                    "snapshot_id": playlist.snapshot_id,
                    "scanned_snapshot_id": scanned_snapshot,
                }
            )
            return result

        batches = plan_batches(playlist.duplicate_items, self._batch_size)
        result.batches_total = len(batches)
        expected_snapshot = scanned_snapshot

        for number, batch in enumerate(batches, start=1):
            for entry in batch.skipped_items():
                logger.warning(
                    f"Cannot remove item at position {entry.position} of {playlist.name}: "
                    f"no Spotify URI ({entry.item.display_name})"
                )

            body = batch.uris_with_positions()
            removable = batch.removable_items
            if not body:
                continue

            try:
                new_snapshot = await self._api.remove_item_occurrences(
                    playlist.uri, body, expected_snapshot
                )
            except asyncio.CancelledError:
                logger.debug(f"Removal from {playlist.name} cancelled at batch {number}")
                raise
            except AuthorizationMissingError as e:
                logger.warning(f"Not logged in, stopping duplicate removal for {playlist.name}")
                result.error = e
                break
            except SpotDedupError as e:
                logger.error(
                    f"Failed to remove batch {number}/{len(batches)} from {playlist.name}: {e}"
                )
                result.error = e
                break

            removed_positions = {entry.position for entry in removable}
            playlist.duplicate_items = [
                _shifted(entry, removed_positions)
                for entry in playlist.duplicate_items
                if entry.position not in removed_positions
            ]
            playlist.item_count = max(0, playlist.item_count - len(removable))
            expected_snapshot = new_snapshot

            result.removed_count += len(removable)
            result.batches_completed += 1
            result.snapshot_id = new_snapshot

            log_removed_duplicates(
                logger,
                playlist_name=playlist.name,
                playlist_uri=playlist.uri,
                items=[(e.position, e.item.display_name, e.item.uri) for e in removable]
            )

        if result.error is not None:
            gatekeeper.invalidate(playlist)
        elif result.snapshot_id is not None:
            if playlist.duplicate_items:
                playlist.snapshot_id = result.snapshot_id
                gatekeeper.record_scan(playlist, result.snapshot_id)
            else:
                gatekeeper.record_deduplicated(playlist, result.snapshot_id)

        if self._database is not None:
            self._database.save_playlist(playlist)

        return result
