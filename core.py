#!/usr/bin/env python3
"""
Spotify 側の配線:
- OAuth (Authorization Code) マネージャ
- Liked Songs 全件取得（ページング・リトライ・キャッシュ）
- ライブラリ書き込み（トラック削除 / アルバム保存 / プレイリスト作成）

LibrarySource を実装し、分析・一括操作（lib.library）からはこのクラスだけが見える。
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
import spotipy
from spotipy.cache_handler import CacheHandler, MemoryCacheHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError, SpotifyStateError

from lib.cache_manager import LikedSongsCache, get_liked_cache
from lib.library.models import LikedEntry, PlaylistRef, liked_entry_from_item
from lib.library.source import AuthExpiredError, LibraryFetchError

# Configure logger for this module
logger = logging.getLogger(__name__)

SCOPES = [
    "user-library-read",
    "user-library-modify",
    "playlist-modify-public",
    "playlist-modify-private",
]

FETCH_PAGE_SIZE = 50
FETCH_PAGE_DELAY_S = float(os.getenv("SPOTIFY_FETCH_DELAY_S", "0.8"))
FETCH_MAX_RETRIES = 3
FETCH_BACKOFF_BASE_S = 1.0
FETCH_BACKOFF_CAP_S = 10.0


# =========================
# OAuth
# =========================


def get_oauth_manager(cache_handler: CacheHandler | None = None) -> SpotifyOAuth:
    """
    環境変数から OAuth マネージャを組み立てる。

    必要な環境変数:
    - SPOTIFY_CLIENT_ID
    - SPOTIFY_CLIENT_SECRET
    - REDIRECT_URI（または SPOTIFY_REDIRECT_URI）
    """
    client_id = os.getenv("SPOTIFY_CLIENT_ID")
    client_secret = os.getenv("SPOTIFY_CLIENT_SECRET")
    redirect_uri = os.getenv("REDIRECT_URI") or os.getenv("SPOTIFY_REDIRECT_URI")

    if not client_id or not client_secret or not redirect_uri:
        raise RuntimeError(
            "Spotify OAuth settings are not set. "
            "Please set SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET and REDIRECT_URI."
        )

    return SpotifyOAuth(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        scope=" ".join(SCOPES),
        cache_handler=cache_handler or MemoryCacheHandler(),
        open_browser=False,
    )


def _status_of(e: Exception) -> int | None:
    return getattr(e, "http_status", None) or getattr(e, "status", None)


def _is_auth_error(e: Exception) -> bool:
    return isinstance(e, SpotifyException) and _status_of(e) == 401


def describe_fetch_error(e: Exception) -> str:
    """Fetch 失敗時のユーザー向けメッセージ。"""
    status = _status_of(e)
    if isinstance(e, requests.exceptions.Timeout):
        return "Network timeout while fetching songs. Please check your internet connection and try again."
    if status == 429:
        return "Spotify API rate limit exceeded. Please wait a few minutes and try again."
    msg = getattr(e, "msg", None) or str(e)
    return f"Failed to fetch songs: {msg}"


# =========================
# LibrarySource 実装
# =========================


class SpotifyLibrarySource:
    """LibrarySource backed by an authenticated spotipy client."""

    def __init__(
        self,
        sp: spotipy.Spotify,
        cache: LikedSongsCache | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.sp = sp
        self.cache = cache if cache is not None else get_liked_cache()
        self.sleep = sleep
        self._user_id: Optional[str] = None

    def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        spotipy 呼び出し。401 とトークン更新失敗（refresh token 失効など）は
        AuthExpiredError に変換する（リトライしない）。
        """
        try:
            return fn(*args, **kwargs)
        except (SpotifyOauthError, SpotifyStateError) as e:
            logger.warning(f"[auth] token refresh failed: {e}")
            raise AuthExpiredError() from e
        except SpotifyException as e:
            if _is_auth_error(e):
                raise AuthExpiredError() from e
            raise

    # -------- 読み取り --------

    def fetch_all(self, refresh: bool = False) -> List[LikedEntry]:
        items = None if refresh else self.cache.get()
        if items is None:
            items = self._fetch_saved_items()
            self.cache.put(items)
        return _to_entries(items)

    def _fetch_saved_items(self) -> List[Dict[str, Any]]:
        """
        Page through ``current_user_saved_tracks``.

        Each page is retried with exponential backoff. When retries run out the
        pages fetched so far are returned; with nothing fetched the error is
        raised as LibraryFetchError.
        """
        logger.info("[fetch] fetching all liked songs from Spotify API...")
        all_items: List[Dict[str, Any]] = []
        offset = 0
        retry_count = 0

        while True:
            try:
                logger.info(f"[fetch] fetching tracks {offset} to {offset + FETCH_PAGE_SIZE}...")
                page = self._call(self.sp.current_user_saved_tracks, limit=FETCH_PAGE_SIZE, offset=offset)
                items = (page or {}).get("items") or []
                if not items:
                    break
                all_items.extend(items)
                offset += FETCH_PAGE_SIZE
                retry_count = 0
                logger.info(f"[fetch] fetched {len(all_items)} tracks so far...")
                if not (page or {}).get("next"):
                    break
                self.sleep(FETCH_PAGE_DELAY_S)
            except AuthExpiredError:
                raise
            except Exception as e:
                logger.error(f"[fetch] error fetching batch at offset {offset}: {e}")
                if retry_count < FETCH_MAX_RETRIES:
                    retry_count += 1
                    backoff = min(FETCH_BACKOFF_BASE_S * (2 ** retry_count), FETCH_BACKOFF_CAP_S)
                    logger.warning(f"[fetch] retrying in {backoff:.1f}s... (attempt {retry_count}/{FETCH_MAX_RETRIES})")
                    self.sleep(backoff)
                    continue
                if all_items:
                    logger.warning(f"[fetch] failed to fetch all tracks, but got {len(all_items)} tracks to work with")
                    break
                raise LibraryFetchError(describe_fetch_error(e)) from e

        logger.info(f"[fetch] total tracks fetched: {len(all_items)}")
        return all_items

    def check_saved_albums(self, album_ids: Sequence[str]) -> List[bool]:
        return list(self._call(self.sp.current_user_saved_albums_contains, list(album_ids)))

    # -------- 書き込み --------

    def remove_saved(self, track_ids: Sequence[str]) -> None:
        self._call(self.sp.current_user_saved_tracks_delete, list(track_ids))

    def add_saved_albums(self, album_ids: Sequence[str]) -> None:
        self._call(self.sp.current_user_saved_albums_add, list(album_ids))

    def _current_user_id(self) -> str:
        if self._user_id is None:
            me = self._call(self.sp.me)
            self._user_id = me["id"]
        return self._user_id

    def create_playlist(self, name: str, description: str, is_public: bool) -> PlaylistRef:
        playlist = self._call(
            self.sp.user_playlist_create,
            self._current_user_id(),
            name,
            public=is_public,
            collaborative=False,
            description=description,
        )
        logger.info(
            f"[playlists] created id={playlist.get('id')} name={playlist.get('name')} "
            f"public={playlist.get('public')} collaborative={playlist.get('collaborative')}"
        )
        return PlaylistRef(
            id=playlist["id"],
            name=playlist.get("name") or name,
            url=(playlist.get("external_urls") or {}).get("spotify") or "",
        )

    def make_playlist_private(self, playlist_id: str) -> None:
        self._call(self.sp.playlist_change_details, playlist_id, public=False, collaborative=False)

    def add_playlist_tracks(self, playlist_id: str, uris: Sequence[str]) -> None:
        self._call(self.sp.playlist_add_items, playlist_id, list(uris))

    def invalidate_cache(self) -> None:
        self.cache.invalidate()


def _to_entries(items: List[Dict[str, Any]]) -> List[LikedEntry]:
    """Raw saved-track items -> LikedEntry. 壊れた item（ローカル曲・削除済み等）は警告してスキップ。"""
    entries: List[LikedEntry] = []
    skipped = 0
    for item in items:
        try:
            entries.append(liked_entry_from_item(item))
        except (ValueError, TypeError, AttributeError) as e:
            skipped += 1
            logger.debug(f"[fetch] skipping malformed item: {e}")
    if skipped:
        logger.warning(f"[fetch] skipped {skipped} malformed liked items")
    return entries
