"""
Album completeness analysis: which albums are over-represented in Liked Songs
relative to their full track count.
"""
from __future__ import annotations

import logging
import math
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Tuple

from lib.library.batching import chunked
from lib.library.models import AlbumRef, AlbumStat, LikedEntry
from lib.library.source import AuthExpiredError

logger = logging.getLogger(__name__)

MEMBERSHIP_BATCH_SIZE = 20
MEMBERSHIP_DELAY_S = 0.1

BatchMembershipFn = Callable[[Sequence[str]], List[bool]]


@dataclass(frozen=True)
class NotabilityRule:
    """
    Product heuristics deciding whether an album is "notable":

        total_tracks > max_excluded_tracks
        and (percentage > notable_percent
             or (liked_count > chunk_min_liked and percentage > chunk_percent))

    The second clause surfaces large chunks of long albums that would never
    reach the headline percentage.
    """
    notable_percent: float = float(os.getenv("ALBUM_NOTABLE_PERCENT", "70"))
    chunk_min_liked: int = int(os.getenv("ALBUM_CHUNK_MIN_LIKED", "5"))
    chunk_percent: float = float(os.getenv("ALBUM_CHUNK_PERCENT", "50"))
    max_excluded_tracks: int = int(os.getenv("ALBUM_MAX_EXCLUDED_TRACKS", "2"))

    def is_notable(self, liked_count: int, total_tracks: int) -> bool:
        if total_tracks <= self.max_excluded_tracks:
            return False
        percentage = liked_percentage(liked_count, total_tracks)
        return percentage > self.notable_percent or (
            liked_count > self.chunk_min_liked and percentage > self.chunk_percent
        )


def liked_percentage(liked_count: int, total_tracks: int) -> float:
    if total_tracks <= 0:
        return 0.0
    return liked_count / total_tracks * 100


def round_percentage(percentage: float) -> int:
    """Round halves up: 62.5 -> 63."""
    return math.floor(percentage + 0.5)


@dataclass
class _AlbumAccumulator:
    album: AlbumRef
    total_tracks: int
    tracks: List[LikedEntry]


def group_by_album(entries: Sequence[LikedEntry]) -> Dict[Tuple[str, str], _AlbumAccumulator]:
    albums: Dict[Tuple[str, str], _AlbumAccumulator] = {}
    for entry in entries:
        album = entry.track.album
        key = (album.id, album.name)
        acc = albums.get(key)
        if acc is None:
            acc = _AlbumAccumulator(album=album, total_tracks=album.total_tracks, tracks=[])
            albums[key] = acc
        acc.tracks.append(entry)
    return albums


def check_library_status(
    album_ids: Sequence[str],
    membership_check: BatchMembershipFn,
    batch_size: int = MEMBERSHIP_BATCH_SIZE,
    delay_s: float = MEMBERSHIP_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, bool]:
    """
    Ask which albums the user has explicitly saved, ``batch_size`` ids per call.

    A failing batch never aborts the analysis: its albums are reported as not
    in the library. An expired login is the exception and is re-raised.
    """
    status: Dict[str, bool] = {}
    logger.info(f"[albums] checking library status for {len(album_ids)} albums")
    for start, batch in chunked(album_ids, batch_size):
        try:
            flags = list(membership_check(batch))
            if len(flags) != len(batch):
                raise ValueError(f"expected {len(batch)} flags, got {len(flags)}")
            for album_id, saved in zip(batch, flags):
                status[album_id] = bool(saved)
            sleep(delay_s)
        except AuthExpiredError:
            raise
        except Exception as e:
            logger.error(f"[albums] library status check failed for batch at {start}: {e}")
            for album_id in batch:
                status[album_id] = False
    return status


def analyze_albums(
    entries: Sequence[LikedEntry],
    membership_check: BatchMembershipFn,
    rule: NotabilityRule | None = None,
    batch_size: int = MEMBERSHIP_BATCH_SIZE,
    delay_s: float = MEMBERSHIP_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> List[AlbumStat]:
    """
    Return the notable albums, highest liked percentage first.

    Ties keep the order in which the albums were first seen.
    """
    rule = rule or NotabilityRule()
    albums = group_by_album(entries)

    album_ids = list(dict.fromkeys(acc.album.id for acc in albums.values()))
    library_status = check_library_status(
        album_ids, membership_check, batch_size=batch_size, delay_s=delay_s, sleep=sleep
    )

    notable: List[AlbumStat] = []
    for acc in albums.values():
        liked_count = len(acc.tracks)
        if not rule.is_notable(liked_count, acc.total_tracks):
            continue
        notable.append(
            AlbumStat(
                album=acc.album,
                liked_count=liked_count,
                total_tracks=acc.total_tracks,
                percentage=round_percentage(liked_percentage(liked_count, acc.total_tracks)),
                is_in_library=library_status.get(acc.album.id, False),
                tracks=sorted(acc.tracks, key=lambda e: e.added_at),
            )
        )

    notable.sort(key=lambda s: s.percentage, reverse=True)
    logger.info(f"[albums] {len(notable)} notable albums out of {len(albums)}")
    return notable
