"""Centralized cache for the raw liked-songs collection (TTLCache + JSON file)."""
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

LIKED_CACHE_VERSION = int(os.getenv("LIKED_CACHE_VERSION", "1"))
LIKED_CACHE_DIR = os.getenv("LIKED_CACHE_DIR", str(Path(__file__).resolve().parent.parent / "cache"))
LIKED_CACHE_FILE_TTL_S = int(os.getenv("LIKED_CACHE_FILE_TTL_S", str(24 * 60 * 60)))
LIKED_CACHE_MEMORY_TTL_S = int(os.getenv("LIKED_CACHE_MEMORY_TTL_S", str(10 * 60)))

_SLOT = "liked"


def build_liked_cache_key() -> str:
    return f"liked:{LIKED_CACHE_VERSION}"


class LikedSongsCache:
    """
    Single-slot snapshot of the raw ``current_user_saved_tracks`` items.

    Two tiers: an in-memory TTLCache for back-to-back requests and an optional
    JSON file that survives restarts. Both judge freshness with ``clock``.
    """

    def __init__(
        self,
        path: Optional[str | Path] = None,
        file_ttl_s: float = LIKED_CACHE_FILE_TTL_S,
        memory_ttl_s: float = LIKED_CACHE_MEMORY_TTL_S,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path) if path is not None else None
        self.file_ttl_s = file_ttl_s
        self.clock = clock
        self._memory: TTLCache = TTLCache(maxsize=1, ttl=memory_ttl_s, timer=clock)

    def get(self) -> Optional[List[Dict[str, Any]]]:
        items = self._memory.get(_SLOT)
        if items is not None:
            logger.info(f"[cache] using in-memory liked songs ({len(items)} tracks)")
            return items

        items = self._read_file()
        if items is not None:
            self._memory[_SLOT] = items
        return items

    def put(self, items: List[Dict[str, Any]]) -> None:
        self._memory[_SLOT] = items
        self._write_file(items)

    def invalidate(self) -> None:
        self._memory.clear()
        if self.path is not None:
            try:
                self.path.unlink()
                logger.info("[cache] cache cleared")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"[cache] error clearing cache file {self.path}: {e}")

    def _read_file(self) -> Optional[List[Dict[str, Any]]]:
        if self.path is None:
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("[cache] no cache file found, will fetch fresh data")
            return None
        except (OSError, ValueError) as e:
            logger.error(f"[cache] error reading cache file {self.path}: {e}")
            return None

        if not isinstance(payload, dict) or payload.get("key") != build_liked_cache_key():
            logger.info("[cache] cache file has an unknown layout, will refresh")
            return None
        items = payload.get("items")
        saved_at = payload.get("saved_at")
        if not isinstance(items, list) or not isinstance(saved_at, (int, float)):
            logger.info("[cache] cache file has an unknown layout, will refresh")
            return None

        age_s = self.clock() - saved_at
        if age_s >= self.file_ttl_s:
            logger.info(f"[cache] cache expired ({age_s / 3600:.0f} hours old), will refresh")
            return None
        logger.info(f"[cache] using cached liked songs ({len(items)} tracks, cached {age_s / 3600:.0f} hours ago)")
        return items

    def _write_file(self, items: List[Dict[str, Any]]) -> None:
        if self.path is None:
            return
        payload = {"key": build_liked_cache_key(), "saved_at": self.clock(), "items": items}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload), encoding="utf-8")
            logger.info(f"[cache] saved {len(items)} liked songs to cache")
        except OSError as e:
            logger.error(f"[cache] error saving cache file {self.path}: {e}")


# Lazy-initialized process-wide cache
_liked_cache: LikedSongsCache | None = None


def get_liked_cache() -> LikedSongsCache:
    global _liked_cache
    if _liked_cache is None:
        _liked_cache = LikedSongsCache(path=Path(LIKED_CACHE_DIR) / "liked-songs.json")
    return _liked_cache
