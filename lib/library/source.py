"""
The contract the analysis/mutation code needs from whatever holds the user's
library. core.SpotifyLibrarySource is the real implementation.
"""
from __future__ import annotations

from typing import List, Protocol, Sequence

from lib.library.models import LikedEntry, PlaylistRef


class LibraryError(Exception):
    """Base error for library access."""


class AuthExpiredError(LibraryError):
    """The access token was rejected. Never retried; the user has to log in again."""

    def __init__(self, message: str = "Authentication expired. Please refresh the page and log in again."):
        super().__init__(message)


class LibraryFetchError(LibraryError):
    """Fetching the collection failed and nothing usable was retrieved."""


class LibrarySource(Protocol):
    def fetch_all(self, refresh: bool = False) -> List[LikedEntry]:
        """Full liked collection, possibly from cache. ``refresh`` forces a refetch."""

    def remove_saved(self, track_ids: Sequence[str]) -> None:
        ...

    def add_saved_albums(self, album_ids: Sequence[str]) -> None:
        ...

    def check_saved_albums(self, album_ids: Sequence[str]) -> List[bool]:
        """One bool per id, in the same order."""

    def create_playlist(self, name: str, description: str, is_public: bool) -> PlaylistRef:
        ...

    def make_playlist_private(self, playlist_id: str) -> None:
        ...

    def add_playlist_tracks(self, playlist_id: str, uris: Sequence[str]) -> None:
        ...

    def invalidate_cache(self) -> None:
        ...
