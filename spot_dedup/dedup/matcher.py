"""
Similarity matching between playlist items.

Two entries are "probably the same" when they share a Spotify URI, or when
they are the same kind of object with the same title and the same primary
artist (tracks) or show (episodes). The name-based fallback catches
re-uploads and regional releases of one recording that carry different
URIs. It is a heuristic: two genuinely different recordings with the same
title and artist are treated as duplicates.
"""

from spot_dedup.spotify.models import ItemKind, PlaylistItem


def is_probably_same(a: PlaylistItem, b: PlaylistItem) -> bool:
    """
    Decide whether two playlist items are probably the same content.

    Rules, in order:
        1. Both URIs non-empty and equal: same.
        2. Track vs episode: never the same.
        3. Same kind: same if name and artist/show name are both equal
           (case-sensitive). Two items without an artist compare equal
           on that field.

    Examples:
        >>> a = PlaylistItem(ItemKind.TRACK, "Song", "spotify:track:1", "Band")
        >>> b = PlaylistItem(ItemKind.TRACK, "Song", "spotify:track:2", "Band")
        >>> is_probably_same(a, b)
        True
    """
    if a.uri and b.uri and a.uri == b.uri:
        return True

    if a.kind != b.kind:
        return False

    return a.name == b.name and a.artist_or_show_name == b.artist_or_show_name


def match_key(item: PlaylistItem) -> tuple[ItemKind, str, str | None]:
    """Key under which is_probably_same's name rule groups items."""
    return (item.kind, item.name, item.artist_or_show_name)
