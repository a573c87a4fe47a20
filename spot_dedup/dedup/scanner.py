"""
Duplicate detection within a single playlist.

The scanner walks a playlist's items in order and flags every item that
is probably the same as some earlier item. The first occurrence of a
song is never flagged; each later occurrence is flagged exactly once,
together with the position it occupies at scan time.

Entries that cannot be compared still count toward positions:
    - None entries (content that is no longer available)
    - local files (no usable Spotify URI)
They are never flagged and never matched against.

Two strategies produce the same output for the default matcher:
    - pairwise: compare each item with every item seen so far.
      Works with any matcher. Quadratic in the worst case.
    - indexed: look the item up in a URI index and a (kind, name, artist)
      index. Linear, but only valid for is_probably_same.

Usage:
    from spot_dedup.dedup.scanner import find_duplicates, scan_playlist

    duplicates = find_duplicates(items)
    result = await scan_playlist(api, playlist.uri, playlist.snapshot_id)
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable

from spot_dedup.core.logger import get_logger
from spot_dedup.dedup.matcher import is_probably_same, match_key
from spot_dedup.spotify.client import ITEMS_PAGE_LIMIT, RemoteAPI
from spot_dedup.spotify.models import PlaylistItem, PositionedItem


logger = get_logger(__name__)

Matcher = Callable[[PlaylistItem, PlaylistItem], bool]


def _is_comparable(item: PlaylistItem | None) -> bool:
    return item is not None and not item.is_local


def find_duplicates(
    items: Iterable[PlaylistItem | None],
    matcher: Matcher = is_probably_same,
    indexed: bool = False
) -> list[PositionedItem]:
    """
    Find the items that repeat an earlier item of the same playlist.

    Args:
        items: Playlist entries in playlist order. None marks an entry
               that is unavailable; it occupies a position but is skipped.
        matcher: Pairwise similarity predicate.
        indexed: Use the hashed lookup strategy. Only allowed with the
                 default matcher, for which it gives identical results.

    Returns:
        Flagged items with their zero-based positions, in ascending
        position order.

    Raises:
        ValueError: If indexed=True is combined with a custom matcher.

    Example:
        # [A, B, A, C, B]
        find_duplicates(items)
        # [PositionedItem(A, 2), PositionedItem(B, 4)]
    """
    if indexed:
        if matcher is not is_probably_same:
            raise ValueError("Indexed scanning only supports the default matcher")
        return _find_duplicates_indexed(items)
    return _find_duplicates_pairwise(items, matcher)


def _find_duplicates_pairwise(
    items: Iterable[PlaylistItem | None],
    matcher: Matcher
) -> list[PositionedItem]:
    seen: list[PlaylistItem] = []
    duplicates: list[PositionedItem] = []

    for position, item in enumerate(items):
        if not _is_comparable(item):
            continue

        if any(matcher(item, other) for other in seen):
            duplicates.append(PositionedItem(item=item, position=position))

        seen.append(item)

    return duplicates


def _find_duplicates_indexed(items: Iterable[PlaylistItem | None]) -> list[PositionedItem]:
    seen_uris: set[str] = set()
    seen_keys: set[tuple] = set()
    duplicates: list[PositionedItem] = []

    for position, item in enumerate(items):
        if not _is_comparable(item):
            continue

        key = match_key(item)
        if (item.uri and item.uri in seen_uris) or key in seen_keys:
            duplicates.append(PositionedItem(item=item, position=position))

        if item.uri:
            seen_uris.add(item.uri)
        seen_keys.add(key)

    return duplicates


async def fetch_playlist_items(
    api: RemoteAPI,
    playlist_uri: str,
    page_size: int = ITEMS_PAGE_LIMIT
) -> list[PlaylistItem | None]:
    """
    Fetch every entry of a playlist, following pagination to the end.

    Pages are requested one after another and concatenated in server
    order, so list indexes equal playlist positions.

    Raises:
        SpotifyError: If any page fails. Partial results are discarded.
    """
    items: list[PlaylistItem | None] = []
    offset: int | None = 0

    while offset is not None:
        page = await api.playlist_items_page(playlist_uri, offset=offset, limit=page_size)
        items.extend(page.items)
        offset = page.next_offset

    return items


@dataclass
class ScanResult:
    """
    Outcome of scanning one playlist.

    Attributes:
        snapshot_id: Snapshot the playlist was expected to be at when the
                     scan started. Positions in duplicates refer to it.
        items_count: Number of entries fetched (including unavailable ones).
        duplicates: Flagged items in ascending position order.
    """
    snapshot_id: str | None
    items_count: int
    duplicates: list[PositionedItem] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)


async def scan_playlist(
    api: RemoteAPI,
    playlist_uri: str,
    snapshot_id: str | None,
    matcher: Matcher = is_probably_same,
    indexed: bool = False,
    page_size: int = ITEMS_PAGE_LIMIT
) -> ScanResult:
    """
    Fetch a playlist's items and find its duplicates.

    Raises:
        SpotifyError: If fetching fails.
    """
    items = await fetch_playlist_items(api, playlist_uri, page_size=page_size)
    duplicates = find_duplicates(items, matcher=matcher, indexed=indexed)

    logger.debug(
        f"Scanned {playlist_uri}: {len(items)} items, {len(duplicates)} duplicates"
    )
    return ScanResult(snapshot_id=snapshot_id, items_count=len(items), duplicates=duplicates)
