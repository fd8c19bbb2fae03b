"""
Comparison keys for duplicate detection.

strict (default): title + artists + album, so a live cut, a remaster or a
compilation appearance is not the "same" track as the studio album version.
loose: title + artists only, every version of a song regardless of release.
"""
from __future__ import annotations

from lib.library.models import Track

KEY_DELIMITER = "::"
ARTIST_DELIMITER = ","


def normalize_text(s: str) -> str:
    return s.lower().strip()


def normalize_artists(artists) -> str:
    """Lower-case and trim each name, then sort so credit order does not matter."""
    return ARTIST_DELIMITER.join(sorted(normalize_text(a) for a in artists))


def track_key(track: Track, include_album: bool = True) -> str:
    if track.name is None:
        raise ValueError(f"track {track.id} has no title")
    if not track.artists:
        raise ValueError(f"track {track.id} has no artists")

    parts = [normalize_text(track.name), normalize_artists(track.artists)]
    if include_album:
        parts.append(normalize_text(track.album.name))
    return KEY_DELIMITER.join(parts)
