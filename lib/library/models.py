"""
Value types for the liked-songs collection and everything derived from it.

Raw Spotify dicts are converted here, at the collaborator boundary; the
analysis code only ever sees these frozen types.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class AlbumRef:
    """Album a track belongs to, as declared by Spotify."""
    id: str
    name: str
    total_tracks: int
    artists: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Track:
    id: str
    name: str
    artists: Tuple[str, ...]
    album: AlbumRef
    uri: str


@dataclass(frozen=True)
class LikedEntry:
    """A track plus the instant the user added it to Liked Songs."""
    track: Track
    added_at: datetime


@dataclass(frozen=True)
class DuplicateMember:
    index: int  # position in the fetched collection
    track: Track
    added_at: datetime


@dataclass
class DuplicateGroup:
    key: str
    tracks: List[DuplicateMember]

    @property
    def count(self) -> int:
        return len(self.tracks)


@dataclass
class DuplicateResolution:
    """Keep/remove split for one duplicate group."""
    group: DuplicateGroup
    keep: DuplicateMember
    remove: List[DuplicateMember]


@dataclass
class AlbumStat:
    album: AlbumRef
    liked_count: int
    total_tracks: int
    percentage: int
    is_in_library: bool
    tracks: List[LikedEntry]


@dataclass
class YearBucket:
    year: int
    tracks: List[LikedEntry]

    @property
    def count(self) -> int:
        return len(self.tracks)


@dataclass(frozen=True)
class PlaylistRef:
    id: str
    name: str
    url: str = ""


# =========================
# Mutation results
# =========================


@dataclass
class DuplicateRemovalResult:
    removed_count: int = 0
    total_duplicates: int = 0
    errors: List[str] = field(default_factory=list)
    message: str = ""

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class AlbumRemovalDetail:
    album_name: str
    artist_name: str
    tracks_removed: int
    total_tracks: int
    was_in_library: bool
    added_to_library: bool

    @property
    def success(self) -> bool:
        return self.tracks_removed == self.total_tracks


@dataclass
class AlbumRemovalResult:
    removed_albums: int = 0
    removed_tracks: int = 0
    added_to_library: int = 0
    errors: List[str] = field(default_factory=list)
    details: List[AlbumRemovalDetail] = field(default_factory=list)
    message: str = ""

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class YearPlaylistResult:
    year: int
    success: bool
    playlist_id: Optional[str] = None
    playlist_name: Optional[str] = None
    track_count: int = 0
    playlist_url: Optional[str] = None
    error: Optional[str] = None


# =========================
# Spotify item -> LikedEntry
# =========================


def parse_added_at(value: str) -> datetime:
    """Parse Spotify's ISO-8601 ``added_at`` (``2021-03-04T12:00:00Z``) into an aware datetime."""
    s = (value or "").strip()
    if not s:
        raise ValueError("added_at is empty")
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _names(raw_artists: Any) -> Tuple[str, ...]:
    return tuple(a.get("name") or "" for a in (raw_artists or []) if isinstance(a, dict))


def track_from_dict(raw: Dict[str, Any]) -> Track:
    """
    Build a Track from a Spotify track object.

    Raises ValueError when a field the analysis depends on is missing.
    """
    track_id = raw.get("id")
    name = raw.get("name")
    album = raw.get("album")
    if not track_id:
        raise ValueError("track has no id")
    if name is None:
        raise ValueError(f"track {track_id} has no name")
    if not isinstance(album, dict) or not album.get("id"):
        raise ValueError(f"track {track_id} has no album")
    artists = _names(raw.get("artists"))
    if not artists:
        raise ValueError(f"track {track_id} has no artists")

    album_ref = AlbumRef(
        id=album["id"],
        name=album.get("name") or "",
        total_tracks=int(album.get("total_tracks") or 0),
        artists=_names(album.get("artists")),
    )
    return Track(
        id=track_id,
        name=name,
        artists=artists,
        album=album_ref,
        uri=raw.get("uri") or f"spotify:track:{track_id}",
    )


def liked_entry_from_item(item: Dict[str, Any]) -> LikedEntry:
    """Convert one ``current_user_saved_tracks`` item (``{"added_at", "track"}``)."""
    raw_track = item.get("track")
    if not isinstance(raw_track, dict):
        raise ValueError("saved item has no track")
    return LikedEntry(
        track=track_from_dict(raw_track),
        added_at=parse_added_at(item.get("added_at") or ""),
    )
