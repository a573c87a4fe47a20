"""
Tests for the playlist sync orchestrator
"""

import asyncio

import pytest

from spot_dedup.core.exceptions import SnapshotConflictError, SpotifyError
from spot_dedup.dedup.orchestrator import PlaylistSyncOrchestrator, RemovalSummary, SyncOutcome, SyncSummary
from spot_dedup.dedup.remover import RemovalResult
from spot_dedup.dedup.state import EventKind
from spot_dedup.spotify.models import AlbumReference

from tests.conftest import make_track


MIXED = "spotify:playlist:mixed"
TRIPLE = "spotify:playlist:triple"
FOLLOWED = "spotify:playlist:followed"

A = make_track("Song A", uri="spotify:track:a", album_uri="spotify:album:a")
B = make_track("Song B", uri="spotify:track:b", album_uri="spotify:album:b")
C = make_track("Song C", uri="spotify:track:c", album_uri="spotify:album:c")


@pytest.fixture
def remote(fake_api):
    """Two owned playlists around a followed one"""
    fake_api.add_playlist(MIXED, "Mixed", [A, B, A], snapshot_id="m1")
    fake_api.add_playlist(FOLLOWED, "Followed", [A, A], owner="someone-else", snapshot_id="f1")
    fake_api.add_playlist(TRIPLE, "Triple", [C, C, C], snapshot_id="t1")
    return fake_api


@pytest.fixture
def orchestrator(remote, database):
    return PlaylistSyncOrchestrator(remote, database, max_concurrent=2)


def _drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class TestConstruction:
    """Test orchestrator setup"""

    def test_invalid_concurrency(self, fake_api, database):
        """At least one playlist must be processable"""
        with pytest.raises(ValueError):
            PlaylistSyncOrchestrator(fake_api, database, max_concurrent=0)

    @pytest.mark.asyncio
    async def test_loads_stored_playlists(self, remote, database, orchestrator):
        """A new orchestrator starts from the stored results"""
        await orchestrator.reload()

        restarted = PlaylistSyncOrchestrator(remote, database)

        assert [p.uri for p in restarted.playlists] == [MIXED, TRIPLE]
        assert restarted.state(MIXED).duplicate_count == 1
        assert not restarted.state(MIXED).has_checked_once


class TestReload:
    """Test reload and sync"""

    @pytest.mark.asyncio
    async def test_reload_scans_owned_playlists(self, remote, database, orchestrator):
        """Only owned playlists are stored and scanned"""
        summary = await orchestrator.reload()

        assert summary.playlists_checked == 2
        assert summary.playlists_scanned == 2
        assert summary.playlists_with_duplicates == 2
        assert summary.total_duplicates == 3
        assert summary.failures == []

        assert [p.uri for p in orchestrator.playlists] == [MIXED, TRIPLE]
        assert [p.index for p in orchestrator.playlists] == [0, 2]
        assert orchestrator.get_playlist(FOLLOWED) is None
        assert [p.uri for p in database.get_all_playlists()] == [MIXED, TRIPLE]

        mixed = orchestrator.get_playlist(MIXED)
        assert [d.position for d in mixed.duplicate_items] == [2]
        assert mixed.last_scanned_snapshot_id == "m1"
        assert orchestrator.state(MIXED).has_checked_once
        assert orchestrator.state(TRIPLE).duplicate_count == 2
        assert [p.uri for p in orchestrator.playlists_with_duplicates] == [TRIPLE, MIXED]
        assert orchestrator.processing_count == 0

    @pytest.mark.asyncio
    async def test_album_references_stored(self, database, orchestrator):
        """Albums of the duplicates are linked to the playlist"""
        await orchestrator.reload()

        assert database.get_album_references(MIXED) == [
            AlbumReference("spotify:album:a", "Album spotify:album:a", "https://i.scdn.co/image/spotify:album:a")
        ]

    @pytest.mark.asyncio
    async def test_unchanged_snapshot_not_fetched(self, remote, orchestrator):
        """A second reload does not download unchanged playlists"""
        await orchestrator.reload()
        calls = len(remote.items_calls)

        summary = await orchestrator.reload()

        assert len(remote.items_calls) == calls
        assert summary.playlists_checked == 2
        assert summary.playlists_scanned == 0
        assert summary.total_duplicates == 3

    @pytest.mark.asyncio
    async def test_changed_snapshot_rescanned(self, remote, orchestrator):
        """A playlist edited elsewhere is scanned again"""
        await orchestrator.reload()
        remote.remote[MIXED]["items"].append(B)
        remote.remote[MIXED]["snapshot_id"] = "m2"

        summary = await orchestrator.reload()

        assert summary.playlists_scanned == 1
        mixed = orchestrator.get_playlist(MIXED)
        assert [d.position for d in mixed.duplicate_items] == [2, 3]
        assert mixed.item_count == 4

    @pytest.mark.asyncio
    async def test_unfollowed_playlist_forgotten(self, remote, database, orchestrator):
        """Playlists no longer listed are deleted"""
        await orchestrator.reload()
        events = orchestrator.events.subscribe()
        remote.unfollow(TRIPLE)

        await orchestrator.reload()

        assert orchestrator.get_playlist(TRIPLE) is None
        assert database.get_playlist(TRIPLE) is None
        with pytest.raises(KeyError):
            orchestrator.state(TRIPLE)
        removed = [e for e in _drain(events) if e.kind == EventKind.PLAYLIST_REMOVED]
        assert [e.playlist_uri for e in removed] == [TRIPLE]

    @pytest.mark.asyncio
    async def test_reload_only(self, remote, orchestrator):
        """only limits the sync, not the listing refresh"""
        summary = await orchestrator.reload(only={TRIPLE})

        assert [o.playlist_uri for o in summary.outcomes] == [TRIPLE]
        assert orchestrator.get_playlist(MIXED) is not None
        assert all(uri == TRIPLE for uri, _ in remote.items_calls)

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, remote, orchestrator):
        """One failing playlist does not stop the others"""
        remote.items_errors[MIXED] = SpotifyError("Service unavailable")

        summary = await orchestrator.reload()

        assert [f.playlist_uri for f in summary.failures] == [MIXED]
        assert summary.playlists_checked == 1
        assert orchestrator.state(MIXED).last_error == "Service unavailable"
        assert not orchestrator.state(MIXED).has_checked_once
        assert orchestrator.state(TRIPLE).has_checked_once
        assert orchestrator.get_playlist(TRIPLE).duplicate_count == 2

        del remote.items_errors[MIXED]
        summary = await orchestrator.reload()
        assert summary.failures == []
        assert orchestrator.state(MIXED).last_error is None

    @pytest.mark.asyncio
    async def test_not_authorized(self, remote, orchestrator):
        """Logged out reloads do nothing"""
        remote.authorized = False

        summary = await orchestrator.reload()

        assert summary.outcomes == []
        assert orchestrator.playlists == []

    @pytest.mark.asyncio
    async def test_events(self, orchestrator):
        """Additions, state changes, progress and a summary are published"""
        events = orchestrator.events.subscribe()

        await orchestrator.reload()

        published = _drain(events)
        kinds = [e.kind for e in published]
        assert kinds.count(EventKind.PLAYLIST_ADDED) == 2
        assert kinds[-1] == EventKind.SUMMARY
        assert published[-1].changes["total_duplicates"] == 3

        progress = [e.changes for e in published if e.kind == EventKind.PROGRESS]
        assert sorted(p["completed"] for p in progress) == [1, 2]
        assert all(p["total"] == 2 for p in progress)

        mixed_changes = [e.changes for e in published if e.kind == EventKind.STATE_CHANGED and e.playlist_uri == MIXED]
        assert mixed_changes[0] == {"is_scanning": True}
        assert mixed_changes[-1] == {"is_scanning": False, "has_checked_once": True, "duplicate_count": 1}


class TestRemoval:
    """Test duplicate removal through the orchestrator"""

    @pytest.mark.asyncio
    async def test_remove_all(self, remote, orchestrator):
        """Every playlist with duplicates is cleaned"""
        await orchestrator.reload()

        summary = await orchestrator.remove_all_duplicates()

        assert summary.items_removed == 3
        assert summary.playlists_affected == 2
        assert summary.describe() == "Removed 3 duplicates from 2 playlists"
        assert orchestrator.playlists_with_duplicates == []
        assert remote.remote[MIXED]["items"] == [A, B]
        assert remote.remote[TRIPLE]["items"] == [C]
        assert remote.remote[FOLLOWED]["items"] == [A, A]
        assert orchestrator.state(TRIPLE).duplicate_count == 0

        calls = len(remote.items_calls)
        summary = await orchestrator.reload()
        assert len(remote.items_calls) == calls
        assert summary.total_duplicates == 0

    @pytest.mark.asyncio
    async def test_remove_single(self, orchestrator):
        """A single playlist run names the playlist"""
        await orchestrator.reload()

        summary = await orchestrator.remove_all_duplicates([orchestrator.get_playlist(MIXED)])

        assert summary.describe() == "Removed 1 duplicate from Mixed"
        assert orchestrator.get_playlist(TRIPLE).duplicate_count == 2

    @pytest.mark.asyncio
    async def test_nothing_to_remove(self, orchestrator):
        """Without duplicates no request is sent"""
        summary = await orchestrator.remove_all_duplicates()
        assert summary.describe() == "No duplicates to remove"

    @pytest.mark.asyncio
    async def test_conflict_reported_and_rescanned(self, remote, orchestrator):
        """A rejected removal is reported and the playlist is rescanned next time"""
        await orchestrator.reload()
        remote.removal_errors[1] = SnapshotConflictError("Playlist changed on Spotify")

        result = await orchestrator.remove_duplicates(orchestrator.get_playlist(MIXED))
        summary = RemovalSummary(results=[result], names={MIXED: "Mixed"})

        assert summary.describe() == "Failed to remove duplicates from Mixed: Playlist changed on Spotify"
        assert orchestrator.state(MIXED).last_error == "Playlist changed on Spotify"
        assert orchestrator.get_playlist(MIXED).duplicate_count == 1

        calls = len(remote.items_calls)
        await orchestrator.reload()
        assert len(remote.items_calls) == calls + 1

    @pytest.mark.asyncio
    async def test_failed_sync_keeps_stale_duplicates_away(self, remote, orchestrator):
        """An edited playlist whose refresh failed is not cleaned with old positions"""
        await orchestrator.reload()
        remote.remote[MIXED]["items"] = [C, B, A]
        remote.remote[MIXED]["snapshot_id"] = "m2"
        remote.playlist_errors[MIXED] = SpotifyError("Service unavailable")

        await orchestrator.reload()
        mixed = orchestrator.get_playlist(MIXED)
        assert mixed.snapshot_id == "m2"
        assert mixed.last_scanned_snapshot_id == "m1"

        summary = await orchestrator.remove_all_duplicates()

        assert [result.playlist_uri for result in summary.results] == [TRIPLE]
        assert remote.remote[MIXED]["items"] == [C, B, A]
        assert remote.remote[TRIPLE]["items"] == [C]
        calls = len(remote.removal_calls)

        result = await orchestrator.remove_duplicates(mixed)

        assert isinstance(result.error, SnapshotConflictError)
        assert len(remote.removal_calls) == calls
        assert remote.remote[MIXED]["items"] == [C, B, A]

    @pytest.mark.asyncio
    async def test_recovered_sync_allows_removal(self, remote, orchestrator):
        """Once a rescan succeeds the playlist is cleaned again"""
        await orchestrator.reload()
        remote.remote[MIXED]["items"] = [C, B, C]
        remote.remote[MIXED]["snapshot_id"] = "m2"
        remote.playlist_errors[MIXED] = SpotifyError("Service unavailable")
        await orchestrator.reload()

        del remote.playlist_errors[MIXED]
        await orchestrator.reload()
        summary = await orchestrator.remove_all_duplicates([orchestrator.get_playlist(MIXED)])

        assert summary.describe() == "Removed 1 duplicate from Mixed"
        assert remote.remote[MIXED]["items"] == [C, B]
        assert remote.removal_calls[0][2] == "m2"

    @pytest.mark.asyncio
    async def test_scan_supersedes_removal(self, remote, orchestrator):
        """Starting a scan cancels the removal in flight"""
        await orchestrator.reload()
        playlist = orchestrator.get_playlist(TRIPLE)
        remote.removal_gate = asyncio.Event()

        removal = asyncio.ensure_future(orchestrator.remove_duplicates(playlist))
        while not remote.removal_calls:
            await asyncio.sleep(0)
        assert orchestrator.state(TRIPLE).is_removing

        outcome = await orchestrator.scan(playlist)
        result = await removal

        assert result == RemovalResult(playlist_uri=TRIPLE)
        assert outcome.scanned
        assert outcome.duplicate_count == 2
        assert remote.remote[TRIPLE]["items"] == [C, C, C]
        assert not orchestrator.state(TRIPLE).is_removing


class TestSummaries:
    """Test result aggregation"""

    def test_sync_summary(self):
        """Failures and superseded runs are not counted as checked"""
        summary = SyncSummary(outcomes=[
            SyncOutcome("a", scanned=True, duplicate_count=2),
            SyncOutcome("b", scanned=False, duplicate_count=0),
            SyncOutcome("c", error=SpotifyError("boom")),
            SyncOutcome("d", superseded=True),
        ])

        assert summary.as_dict() == {
            "playlists_checked": 2,
            "playlists_scanned": 1,
            "playlists_with_duplicates": 1,
            "total_duplicates": 2,
            "failures": 1,
        }

    def test_removal_summary_falls_back_to_uri(self):
        """Unknown names fall back to the uri"""
        summary = RemovalSummary(results=[RemovalResult("spotify:playlist:x", removed_count=2)])
        assert summary.describe() == "Removed 2 duplicates from spotify:playlist:x"
        assert summary.as_dict()["failed"] is False
