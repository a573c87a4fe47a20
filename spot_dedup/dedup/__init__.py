"""
De-duplication engine for spot-dedup.

Components:
    - matcher: is_probably_same, the similarity heuristic
    - scanner: find_duplicates and the paginated playlist fetch
    - gatekeeper: snapshot bookkeeping deciding when to rescan
    - remover: BatchRemover, sequential descending-position removal
    - state: PlaylistState, TaskRegistry, EventBus
    - orchestrator: PlaylistSyncOrchestrator tying it all together
"""

from spot_dedup.dedup.gatekeeper import needs_scan
from spot_dedup.dedup.matcher import is_probably_same
from spot_dedup.dedup.orchestrator import (
    PlaylistSyncOrchestrator,
    RemovalSummary,
    SyncOutcome,
    SyncSummary,
)
from spot_dedup.dedup.remover import MAX_BATCH_SIZE, BatchRemover, RemovalResult, plan_batches
from spot_dedup.dedup.scanner import ScanResult, fetch_playlist_items, find_duplicates, scan_playlist
from spot_dedup.dedup.state import EventBus, EventKind, PlaylistState, SyncEvent

__all__ = [
    "is_probably_same",
    "find_duplicates",
    "fetch_playlist_items",
    "scan_playlist",
    "ScanResult",
    "needs_scan",
    "MAX_BATCH_SIZE",
    "BatchRemover",
    "RemovalResult",
    "plan_batches",
    "PlaylistSyncOrchestrator",
    "SyncOutcome",
    "SyncSummary",
    "RemovalSummary",
    "EventBus",
    "EventKind",
    "PlaylistState",
    "SyncEvent",
]
