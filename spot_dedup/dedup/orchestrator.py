"""
Coordination of scans and removals across all of the user's playlists.

PlaylistSyncOrchestrator is the entry point of the de-duplication engine.
It keeps the local mirror of the user's owned playlists in sync with
Spotify, decides which playlists need a scan, runs scans and removals as
independent asyncio tasks, and publishes every state change on its
EventBus.

Concurrency Model:
    - Every scan or removal of a playlist runs as its own task, registered
      in a TaskRegistry. A new operation on a playlist cancels the one in
      flight for it.
    - At most max_concurrent playlists are processed at the same time.
    - Within a playlist, removal batches are sequential (see remover).
    - The Database is only touched from the event loop thread, and each
      Playlist object is only mutated by the task working on it.

Failure Isolation:
    A failure in one playlist is recorded in its state and in the returned
    outcome. It never aborts the other playlists.

Usage:
    orchestrator = PlaylistSyncOrchestrator(api, database, max_concurrent=4)
    events = orchestrator.events.subscribe()

    summary = await orchestrator.reload()
    removal = await orchestrator.remove_all_duplicates()
    print(removal.describe())
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from spot_dedup.core.database import Database
from spot_dedup.core.exceptions import AuthorizationMissingError, SpotDedupError
from spot_dedup.core.logger import format_duplicates_message, format_removed_message, get_logger
from spot_dedup.dedup import gatekeeper
from spot_dedup.dedup.remover import BatchRemover, RemovalResult
from spot_dedup.dedup.scanner import scan_playlist
from spot_dedup.dedup.state import (
    EventBus,
    EventKind,
    OperationKind,
    PlaylistState,
    SyncEvent,
    TaskRegistry,
)
from spot_dedup.spotify.client import RemoteAPI
from spot_dedup.spotify.models import AlbumReference, Playlist


logger = get_logger(__name__)


# =============================================================================
# Results
# =============================================================================


@dataclass
class SyncOutcome:
    """
    Result of syncing one playlist.

    Attributes:
        playlist_uri: The playlist.
        scanned: True if the items were fetched, False if the snapshot
                 was already accounted for (or the sync failed early).
        duplicate_count: Duplicates after the sync.
        error: The failure, if any.
        superseded: True if a newer operation on the same playlist
                    cancelled this one.
    """
    playlist_uri: str
    scanned: bool = False
    duplicate_count: int = 0
    error: SpotDedupError | None = None
    superseded: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.superseded


@dataclass
class SyncSummary:
    """Aggregate of one sync run over several playlists."""
    outcomes: list[SyncOutcome] = field(default_factory=list)

    @property
    def playlists_checked(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def playlists_scanned(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded and outcome.scanned)

    @property
    def playlists_with_duplicates(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded and outcome.duplicate_count)

    @property
    def total_duplicates(self) -> int:
        return sum(outcome.duplicate_count for outcome in self.outcomes if outcome.succeeded)

    @property
    def failures(self) -> list[SyncOutcome]:
        return [outcome for outcome in self.outcomes if outcome.error is not None]

    def as_dict(self) -> dict[str, Any]:
        return {
            "playlists_checked": self.playlists_checked,
            "playlists_scanned": self.playlists_scanned,
            "playlists_with_duplicates": self.playlists_with_duplicates,
            "total_duplicates": self.total_duplicates,
            "failures": len(self.failures),
        }


@dataclass
class RemovalSummary:
    """
    Aggregate of a remove-all run.

    Attributes:
        results: One RemovalResult per playlist that had duplicates.
        names: Playlist names by uri, for messages.
    """
    results: list[RemovalResult] = field(default_factory=list)
    names: dict[str, str] = field(default_factory=dict)

    @property
    def items_removed(self) -> int:
        return sum(result.removed_count for result in self.results)

    @property
    def playlists_affected(self) -> int:
        return sum(1 for result in self.results if result.removed_count > 0)

    @property
    def first_failure(self) -> RemovalResult | None:
        return next((result for result in self.results if result.error is not None), None)

    def describe(self) -> str:
        """
        User-facing message for the run.

        Examples:
            "Removed 3 duplicates from 2 playlists"
            "Removed 1 duplicate from Road Trip"
            "Failed to remove duplicates from Road Trip: Playlist changed ..."
        """
        failure = self.first_failure
        if failure is not None:
            name = self.names.get(failure.playlist_uri, failure.playlist_uri)
            return f"Failed to remove duplicates from {name}: {failure.error}"

        items = self.items_removed
        if items == 0:
            return "No duplicates to remove"

        noun = "duplicate" if items == 1 else "duplicates"
        affected = [result for result in self.results if result.removed_count > 0]
        if len(affected) == 1:
            name = self.names.get(affected[0].playlist_uri, affected[0].playlist_uri)
            return f"Removed {items} {noun} from {name}"
        return f"Removed {items} {noun} from {len(affected)} playlists"

    def as_dict(self) -> dict[str, Any]:
        return {
            "items_removed": self.items_removed,
            "playlists_affected": self.playlists_affected,
            "failed": self.first_failure is not None,
            "message": self.describe(),
        }


# =============================================================================
# Orchestrator
# =============================================================================


class PlaylistSyncOrchestrator:
    """
    Keeps the user's owned playlists scanned and de-duplicated.

    Attributes:
        events: EventBus publishing SyncEvents for every state change.
    """

    def __init__(
        self,
        api: RemoteAPI,
        database: Database,
        max_concurrent: int = 4,
        indexed_scan: bool = False
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._api = api
        self._database = database
        self._indexed_scan = indexed_scan
        self._limit = asyncio.Semaphore(max_concurrent)
        self._registry = TaskRegistry()
        self._remover = BatchRemover(api, database)
        self._processing_count = 0
        self._sync_failed: set[str] = set()
        self.events = EventBus()

        self._playlists: dict[str, Playlist] = {}
        self._states: dict[str, PlaylistState] = {}
        for playlist in database.get_all_playlists():
            self._track(playlist)

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def playlists(self) -> list[Playlist]:
        """Known playlists in listing order."""
        return sorted(self._playlists.values(), key=lambda p: p.index)

    @property
    def playlists_with_duplicates(self) -> list[Playlist]:
        """Playlists that currently have duplicates, most duplicates first."""
        with_duplicates = [p for p in self._playlists.values() if p.duplicate_count]
        return sorted(with_duplicates, key=lambda p: (-p.duplicate_count, p.index))

    @property
    def processing_count(self) -> int:
        """Number of playlists currently being synced or de-duplicated."""
        return self._processing_count

    def state(self, uri: str) -> PlaylistState:
        """
        Raises:
            KeyError: If the playlist is unknown.
        """
        return self._states[uri]

    def get_playlist(self, uri: str) -> Playlist | None:
        return self._playlists.get(uri)

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _track(self, playlist: Playlist) -> None:
        self._playlists[playlist.uri] = playlist
        self._states[playlist.uri] = PlaylistState(duplicate_count=playlist.duplicate_count)

    def _set_state(self, uri: str, **changes: Any) -> None:
        state = self._states.get(uri)
        if state is None:
            return
        changed = state.diff(**changes)
        if changed:
            self.events.emit(SyncEvent(EventKind.STATE_CHANGED, uri, changed))

    def _begin_processing(self) -> None:
        self._processing_count += 1

    def _end_processing(self) -> None:
        self._processing_count -= 1

    async def _run_registered(self, playlist: Playlist, kind: OperationKind, coro) -> tuple[bool, Any]:
        """
        Run coro as the registered operation for playlist.

        Returns:
            (superseded, result). superseded is True if the task was
            cancelled by a newer operation; result is None in that case.
        """
        task = self._registry.start(playlist.uri, kind, coro)
        await asyncio.wait({task})
        if task.cancelled():
            return True, None
        return False, task.result()

    # =========================================================================
    # Reload
    # =========================================================================

    async def reload(self, only: set[str] | None = None) -> SyncSummary:
        """
        Refresh the list of owned playlists from Spotify and sync them all.

        Args:
            only: If given, sync just the owned playlists with these uris.
              The whole listing is still refreshed.

        Behavior:
            1. Not logged in: log a warning and return an empty summary.
            2. Cancel every in-flight scan or removal.
            3. List the user's playlists and keep the ones they own.
            4. Store new playlists, update known ones (name, snapshot,
               listing index).
            5. Delete stored playlists that are no longer listed.
            6. Sync every owned playlist (or the ones in only).

        Raises:
            SpotifyError: If the playlist listing cannot be fetched.
            DatabaseError: If the store cannot be written.
        """
        if not self._api.is_authorized:
            logger.warning("Not logged in to Spotify, nothing to reload")
            return SyncSummary()

        cancelled = self._registry.cancel_all()
        if cancelled:
            await asyncio.wait(cancelled)

        try:
            user_id = await self._api.current_user_id()
            remote_playlists = await self._api.owned_playlists(user_id)
        except AuthorizationMissingError:
            logger.warning("Not logged in to Spotify, nothing to reload")
            return SyncSummary()

        for remote in remote_playlists:
            existing = self._playlists.get(remote.uri)
            if existing is None:
                self._track(remote)
                self._database.save_playlist(remote)
                self.events.emit(SyncEvent(EventKind.PLAYLIST_ADDED, remote.uri, {"name": remote.name}))
                logger.debug(f"New playlist: {remote.name}")
            else:
                existing.update_from(remote)
                self._database.save_playlist(existing)

        listed = {p.uri for p in remote_playlists}
        stale = set(self._database.delete_playlists_not_in(listed))
        stale.update(uri for uri in self._playlists if uri not in listed)
        for uri in stale:
            removed = self._playlists.pop(uri, None)
            self._states.pop(uri, None)
            self._sync_failed.discard(uri)
            if removed is not None:
                logger.info(f"Playlist no longer owned or followed, forgetting it: {removed.name}")
                self.events.emit(SyncEvent(EventKind.PLAYLIST_REMOVED, uri, {"name": removed.name}))

        logger.info(f"Found {len(remote_playlists)} owned playlists")
        targets = [p for p in self.playlists if only is None or p.uri in only]
        return await self.sync_all(targets)

    # =========================================================================
    # Sync / scan
    # =========================================================================

    async def sync_playlist(self, playlist: Playlist) -> SyncOutcome:
        """
        Bring one playlist's duplicate list up to date.

        Fetches fresh metadata, then either confirms the stored result
        (snapshot unchanged) or rescans. Errors are returned in the
        outcome, never raised.
        """
        try:
            remote = await self._api.playlist(playlist.uri)
        except AuthorizationMissingError as e:
            logger.warning(f"Not logged in, skipping {playlist.name}")
            self._sync_failed.add(playlist.uri)
            return SyncOutcome(playlist.uri, duplicate_count=playlist.duplicate_count, error=e)
        except SpotDedupError as e:
            logger.error(f"Failed to fetch {playlist.name}: {e}")
            self._sync_failed.add(playlist.uri)
            self._set_state(playlist.uri, has_checked_once=False, last_error=str(e))
            return SyncOutcome(playlist.uri, duplicate_count=playlist.duplicate_count, error=e)

        # The single playlist endpoint knows nothing about listing order
        remote.index = playlist.index
        playlist.update_from(remote)

        if not gatekeeper.needs_scan(playlist):
            logger.debug(f"{playlist.name} unchanged since last scan")
            self._sync_failed.discard(playlist.uri)
            self._database.save_playlist(playlist)
            self._set_state(
                playlist.uri,
                has_checked_once=True,
                duplicate_count=playlist.duplicate_count,
                last_error=None,
            )
            return SyncOutcome(playlist.uri, scanned=False, duplicate_count=playlist.duplicate_count)

        return await self.scan(playlist)

    async def scan(self, playlist: Playlist) -> SyncOutcome:
        """
        Fetch every item of playlist and recompute its duplicates.

        Cancels any scan or removal in flight for the same playlist.

        Returns:
            SyncOutcome. superseded=True if a newer operation cancelled
            this scan before it completed.
        """
        superseded, outcome = await self._run_registered(
            playlist, OperationKind.SCANNING, self._scan(playlist)
        )
        if superseded:
            return SyncOutcome(playlist.uri, duplicate_count=playlist.duplicate_count, superseded=True)
        return outcome

    async def _scan(self, playlist: Playlist) -> SyncOutcome:
        snapshot_id = playlist.snapshot_id
        playlist.duplicate_items = []
        self._set_state(playlist.uri, is_scanning=True, duplicate_count=0)

        try:
            result = await scan_playlist(
                self._api,
                playlist.uri,
                snapshot_id,
                indexed=self._indexed_scan,
            )
        except asyncio.CancelledError:
            self._set_state(playlist.uri, is_scanning=False)
            raise
        except SpotDedupError as e:
            logger.error(f"Failed to scan {playlist.name}: {e}")
            self._sync_failed.add(playlist.uri)
            self._set_state(
                playlist.uri,
                is_scanning=False,
                has_checked_once=False,
                last_error=str(e),
            )
            return SyncOutcome(playlist.uri, scanned=False, error=e)

        self._sync_failed.discard(playlist.uri)
        playlist.duplicate_items = result.duplicates
        playlist.item_count = result.items_count
        gatekeeper.record_scan(playlist, snapshot_id)

        references = {
            ref.uri: ref
            for ref in (entry.item.album_reference for entry in result.duplicates)
            if ref is not None
        }
        self._persist_scan(playlist, list(references.values()))

        logger.info(format_duplicates_message(playlist.name, result.duplicate_count))
        self._set_state(
            playlist.uri,
            is_scanning=False,
            has_checked_once=True,
            duplicate_count=result.duplicate_count,
            last_error=None,
        )
        return SyncOutcome(playlist.uri, scanned=True, duplicate_count=result.duplicate_count)

    def _persist_scan(self, playlist: Playlist, references: list[AlbumReference]) -> None:
        self._database.save_playlist(playlist)
        self._database.replace_album_references(playlist.uri, references)

    async def _sync_limited(self, playlist: Playlist) -> SyncOutcome:
        self._begin_processing()
        try:
            async with self._limit:
                return await self.sync_playlist(playlist)
        finally:
            self._end_processing()

    async def sync_all(self, playlists: list[Playlist] | None = None) -> SyncSummary:
        """
        Sync several playlists concurrently (all known ones by default).

        A PROGRESS event ({"completed", "total", "duplicate_count",
        "failed"}) is emitted as each playlist finishes, and a SUMMARY event
        once no playlist is being processed anymore.
        """
        targets = self.playlists if playlists is None else playlists
        total = len(targets)
        completed = 0

        async def run(playlist: Playlist) -> SyncOutcome:
            nonlocal completed
            outcome = await self._sync_limited(playlist)
            completed += 1
            self.events.emit(SyncEvent(EventKind.PROGRESS, playlist.uri, {
                "completed": completed,
                "total": total,
                "duplicate_count": outcome.duplicate_count,
                "failed": outcome.error is not None,
            }))
            return outcome

        outcomes = await asyncio.gather(*(run(p) for p in targets))
        summary = SyncSummary(outcomes=list(outcomes))

        if self._processing_count == 0:
            self.events.emit(SyncEvent(EventKind.SUMMARY, None, summary.as_dict()))
        return summary

    # =========================================================================
    # Removal
    # =========================================================================

    async def remove_duplicates(self, playlist: Playlist) -> RemovalResult:
        """
        Remove playlist's current duplicates from Spotify.

        Supersedes any scan or removal in flight for the same playlist.
        If this run is itself superseded, the returned result carries no
        error and reflects nothing removed by this call.
        """
        superseded, result = await self._run_registered(
            playlist, OperationKind.REMOVING, self._remove(playlist)
        )
        if superseded:
            return RemovalResult(playlist_uri=playlist.uri)
        return result

    async def _remove(self, playlist: Playlist) -> RemovalResult:
        self._set_state(playlist.uri, is_removing=True)
        try:
            result = await self._remover.remove_duplicates(playlist)
        finally:
            self._set_state(
                playlist.uri,
                is_removing=False,
                duplicate_count=playlist.duplicate_count,
            )

        if result.error is not None:
            self._set_state(playlist.uri, last_error=str(result.error))
        elif result.removed_count:
            self._set_state(playlist.uri, last_error=None)
            logger.info(format_removed_message(playlist.name, result.removed_count))
        return result

    async def _remove_limited(self, playlist: Playlist) -> RemovalResult:
        self._begin_processing()
        try:
            async with self._limit:
                return await self.remove_duplicates(playlist)
        finally:
            self._end_processing()

    async def remove_all_duplicates(self, playlists: list[Playlist] | None = None) -> RemovalSummary:
        """
        Remove duplicates from every playlist that has any, concurrently.

        Playlists whose latest sync failed are skipped: their duplicate
        list may belong to an older snapshot.

        A PROGRESS event ({"completed", "total", "removed", "failed"}) is
        emitted each time a playlist finishes, then a SUMMARY event with the
        aggregate.
        """
        candidates = self.playlists if playlists is None else playlists
        targets = []
        for playlist in candidates:
            if not playlist.duplicate_count:
                continue
            if playlist.uri in self._sync_failed:
                logger.warning(f"Skipping {playlist.name}: its last sync failed, rescan first")
                continue
            targets.append(playlist)
        total = len(targets)
        completed = 0

        async def run(playlist: Playlist) -> RemovalResult:
            nonlocal completed
            result = await self._remove_limited(playlist)
            completed += 1
            self.events.emit(SyncEvent(EventKind.PROGRESS, playlist.uri, {
                "completed": completed,
                "total": total,
                "removed": result.removed_count,
                "failed": result.error is not None,
            }))
            return result

        results = await asyncio.gather(*(run(p) for p in targets))
        summary = RemovalSummary(
            results=list(results),
            names={p.uri: p.name for p in targets},
        )

        self.events.emit(SyncEvent(EventKind.SUMMARY, None, summary.as_dict()))
        return summary
