"""Liked Songs grouped by the calendar year they were added."""
from __future__ import annotations

import os
from datetime import tzinfo
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from lib.library.models import LikedEntry, YearBucket

REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "").strip()


def report_timezone() -> Optional[tzinfo]:
    """Configured reporting timezone, or None for the process's local time."""
    if REPORT_TIMEZONE:
        return ZoneInfo(REPORT_TIMEZONE)
    return None


def year_of(entry: LikedEntry, tz: Optional[tzinfo] = None) -> int:
    # astimezone(None) converts to local time
    return entry.added_at.astimezone(tz).year


def group_by_year(entries: Sequence[LikedEntry], tz: Optional[tzinfo] = None) -> List[YearBucket]:
    if tz is None:
        tz = report_timezone()

    by_year: Dict[int, List[LikedEntry]] = {}
    for entry in entries:
        by_year.setdefault(year_of(entry, tz), []).append(entry)

    return [
        YearBucket(year=year, tracks=sorted(tracks, key=lambda e: e.added_at))
        for year, tracks in sorted(by_year.items(), key=lambda kv: kv[0], reverse=True)
    ]
