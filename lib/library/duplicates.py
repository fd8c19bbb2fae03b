"""
Duplicate detection over the liked-songs collection, and the keep-newest plan
used when removing them.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from lib.library.models import (
    DuplicateGroup,
    DuplicateMember,
    DuplicateResolution,
    LikedEntry,
)
from lib.library.normalizer import track_key

logger = logging.getLogger(__name__)


def find_duplicates(
    entries: Sequence[LikedEntry],
    include_album: bool = True,
) -> List[DuplicateGroup]:
    """
    Group entries by normalized key and return only keys seen more than once.

    Members keep their source order; groups come out in order of first
    occurrence of their key.
    """
    by_key: Dict[str, List[DuplicateMember]] = {}
    for index, entry in enumerate(entries):
        key = track_key(entry.track, include_album)
        by_key.setdefault(key, []).append(
            DuplicateMember(index=index, track=entry.track, added_at=entry.added_at)
        )

    groups = [
        DuplicateGroup(key=key, tracks=members)
        for key, members in by_key.items()
        if len(members) > 1
    ]
    logger.info(
        f"[duplicates] entries={len(entries)} groups={len(groups)} "
        f"mode={'strict' if include_album else 'loose'}"
    )
    return groups


def resolve_group(group: DuplicateGroup) -> DuplicateResolution:
    # sorted() is stable with reverse=True too: equal timestamps stay in fetch order,
    # so the earliest-fetched copy wins a tie.
    ordered = sorted(group.tracks, key=lambda m: m.added_at, reverse=True)
    return DuplicateResolution(group=group, keep=ordered[0], remove=ordered[1:])


def plan_duplicate_removal(groups: Sequence[DuplicateGroup]) -> List[DuplicateResolution]:
    return [resolve_group(g) for g in groups]
