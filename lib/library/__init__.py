"""
Liked Songs analysis and bulk clean-up.

Public API:
  - find_duplicates(entries, include_album) -> list[DuplicateGroup]
  - analyze_albums(entries, membership_check) -> list[AlbumStat]
  - group_by_year(entries) -> list[YearBucket]
  - MutationPlanner(source).remove_duplicates() / remove_albums() / create_year_playlists()
"""
from lib.library.albums import NotabilityRule, analyze_albums
from lib.library.duplicates import find_duplicates, plan_duplicate_removal
from lib.library.models import (
    AlbumRef,
    AlbumStat,
    DuplicateGroup,
    LikedEntry,
    PlaylistRef,
    Track,
    YearBucket,
    liked_entry_from_item,
)
from lib.library.mutations import BatchDelays, MutationPlanner
from lib.library.normalizer import track_key
from lib.library.source import (
    AuthExpiredError,
    LibraryError,
    LibraryFetchError,
    LibrarySource,
)
from lib.library.years import group_by_year

__all__ = [
    "find_duplicates",
    "plan_duplicate_removal",
    "analyze_albums",
    "group_by_year",
    "track_key",
    "NotabilityRule",
    "MutationPlanner",
    "BatchDelays",
    "AlbumRef",
    "AlbumStat",
    "DuplicateGroup",
    "LikedEntry",
    "PlaylistRef",
    "Track",
    "YearBucket",
    "liked_entry_from_item",
    "AuthExpiredError",
    "LibraryError",
    "LibraryFetchError",
    "LibrarySource",
]
