"""
Utility functions for spot-dedup.

This module provides small helpers used across the application:
    - Spotify URI / URL / ID conversion
    - Chunking of sequences into fixed-size batches
    - Directory creation

Usage:
    from spot_dedup.utils import (
        extract_spotify_id,
        to_playlist_uri,
        chunked,
        ensure_directory
    )
"""

from pathlib import Path
from typing import Iterator, Sequence, TypeVar


T = TypeVar("T")


def extract_spotify_id(url_or_id: str) -> str:
    """
    Extract Spotify ID from a URL or URI, or return the ID as-is.

    Handles various Spotify formats:
        - https://open.spotify.com/playlist/ID
        - https://open.spotify.com/playlist/ID?si=xxx
        - spotify:playlist:ID
        - Just the ID

    Examples:
        extract_spotify_id("https://open.spotify.com/playlist/abc123?si=xyz")
        # Returns: "abc123"

        extract_spotify_id("spotify:track:abc123")
        # Returns: "abc123"
    """
    url_or_id = url_or_id.strip()

    if url_or_id.startswith("spotify:"):
        return url_or_id.split(":")[-1]

    if "spotify.com" in url_or_id:
        url_or_id = url_or_id.split("?")[0]
        return url_or_id.rstrip("/").split("/")[-1]

    return url_or_id


def extract_playlist_id(url: str) -> str:
    """
    Extract playlist ID from a Spotify playlist URL or URI.

    Raises:
        ValueError: If the value is a URL or URI of something other than
                    a playlist.

    Examples:
        extract_playlist_id("https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M")
        # Returns: "37i9dQZF1DXcBWIGoYBM5M"
    """
    url = url.strip()
    if (url.startswith("spotify:") or "spotify.com" in url) and "playlist" not in url:
        raise ValueError(f"Not a playlist URL: {url}")
    playlist_id = extract_spotify_id(url)
    if not playlist_id:
        raise ValueError(f"Not a playlist URL: {url}")
    return playlist_id


def to_playlist_uri(url_or_id: str) -> str:
    """
    Normalize a playlist URL, URI or bare ID to a spotify:playlist: URI.

    Example:
        to_playlist_uri("https://open.spotify.com/playlist/abc?si=1")
        # Returns: "spotify:playlist:abc"
    """
    return f"spotify:playlist:{extract_playlist_id(url_or_id)}"


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """
    Yield consecutive slices of at most size elements.

    Raises:
        ValueError: If size is not positive.

    Example:
        list(chunked([1, 2, 3, 4, 5], 2))
        # Returns: [[1, 2], [3, 4], [5]]
    """
    if size < 1:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def ensure_directory(path: Path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Returns:
        The same path (for chaining).

    Raises:
        OSError: If directory cannot be created (permissions, etc.)
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
