"""
Bulk write-back to the user's library, driven by the analysis results.

Every operation makes forward progress and reports what happened: a failed
batch or album is recorded in the result's ``errors`` and the loop moves on.
Nothing is rolled back. Only an expired login stops an operation early.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable, Iterable, List, Optional, Sequence

from lib.library.albums import NotabilityRule, analyze_albums
from lib.library.batching import batch_count, call_with_linear_backoff, chunked
from lib.library.duplicates import find_duplicates, plan_duplicate_removal
from lib.library.models import (
    AlbumRemovalDetail,
    AlbumRemovalResult,
    AlbumStat,
    DuplicateGroup,
    DuplicateRemovalResult,
    YearBucket,
    YearPlaylistResult,
)
from lib.library.source import AuthExpiredError, LibrarySource
from lib.library.years import group_by_year

logger = logging.getLogger(__name__)

REMOVE_BATCH_SIZE = 50  # Spotify's limit for DELETE /me/tracks
PLAYLIST_BATCH_SIZE = 100  # Spotify's limit for POST /playlists/{id}/tracks
PLAYLIST_MAX_ATTEMPTS = 3

PLAYLIST_NAME_TEMPLATE = "Liked Songs {year}"
PLAYLIST_DESCRIPTION_TEMPLATE = "Songs added to Liked Songs during {year}"


@dataclass(frozen=True)
class BatchDelays:
    """Fixed pauses between remote calls (seconds), for the API rate limit."""
    membership_s: float = 0.1
    duplicate_removal_s: float = 0.5
    album_op_s: float = 0.3
    playlist_batch_s: float = 0.5
    retry_unit_s: float = 1.0


def describe_error(e: Exception) -> str:
    """User-facing text for a failed remote call."""
    status = getattr(e, "http_status", None) or getattr(e, "status", None)
    if status == 429:
        return "Rate limit exceeded. Please wait and try again."
    if status == 401 or isinstance(e, AuthExpiredError):
        return "Authentication expired. Please refresh and log in again."
    if isinstance(e, TimeoutError) or "timed out" in str(e).lower():
        return "Network timeout. Please check your connection and try again."
    return getattr(e, "msg", None) or str(e)


class MutationPlanner:
    """
    Analysis entry points plus the bulk mutations built on them.

    ``source`` is the only way out to the remote service; ``sleep`` is
    injectable so tests run without real delays.
    """

    def __init__(
        self,
        source: LibrarySource,
        rule: Optional[NotabilityRule] = None,
        delays: Optional[BatchDelays] = None,
        sleep: Callable[[float], None] = time.sleep,
        tz: Optional[tzinfo] = None,
    ):
        self.source = source
        self.rule = rule or NotabilityRule()
        self.delays = delays or BatchDelays()
        self.sleep = sleep
        self.tz = tz

    # =========================
    # Analysis
    # =========================

    def duplicates(self, include_album: bool = True, refresh: bool = False) -> List[DuplicateGroup]:
        return find_duplicates(self.source.fetch_all(refresh=refresh), include_album=include_album)

    def albums(self, refresh: bool = False) -> List[AlbumStat]:
        return analyze_albums(
            self.source.fetch_all(refresh=refresh),
            self.source.check_saved_albums,
            rule=self.rule,
            delay_s=self.delays.membership_s,
            sleep=self.sleep,
        )

    def years(self, refresh: bool = False) -> List[YearBucket]:
        return group_by_year(self.source.fetch_all(refresh=refresh), tz=self.tz)

    # =========================
    # Mutations
    # =========================

    def remove_duplicates(self) -> DuplicateRemovalResult:
        """Remove every older copy of each strict-mode duplicate, keeping the newest."""
        resolutions = plan_duplicate_removal(self.duplicates(include_album=True))
        result = DuplicateRemovalResult()
        if not resolutions:
            result.message = "No duplicates found to remove"
            return result

        to_remove: List[str] = []
        for res in resolutions:
            to_remove.extend(m.track.id for m in res.remove)
            logger.info(
                f"[duplicates] \"{res.keep.track.name}\" from \"{res.keep.track.album.name}\": "
                f"keeping {res.keep.added_at.isoformat()}, removing {len(res.remove)} older copies"
            )
        result.total_duplicates = len(to_remove)

        batches = batch_count(len(to_remove), REMOVE_BATCH_SIZE)
        try:
            for start, batch in chunked(to_remove, REMOVE_BATCH_SIZE):
                number = start // REMOVE_BATCH_SIZE + 1
                try:
                    logger.info(f"[duplicates] removing batch {number}/{batches} ({len(batch)} tracks)")
                    self.source.remove_saved(batch)
                    result.removed_count += len(batch)
                    self.sleep(self.delays.duplicate_removal_s)
                except AuthExpiredError:
                    raise
                except Exception as e:
                    logger.error(f"[duplicates] batch {number} failed: {e}")
                    result.errors.append(
                        f"Failed to remove batch starting at track {start + 1}: {describe_error(e)}"
                    )
        finally:
            if result.removed_count:
                self.source.invalidate_cache()

        result.message = f"Removed {result.removed_count} out of {result.total_duplicates} duplicate tracks"
        logger.info(f"[duplicates] {result.message}")
        return result

    def remove_albums(
        self,
        album_ids: Optional[Iterable[str]] = None,
        remove_all: bool = False,
        add_to_library: bool = False,
    ) -> AlbumRemovalResult:
        """
        Remove the liked tracks of notable albums.

        ``remove_all`` targets every notable album and implies saving each one
        to the library first, so the music is kept as an album rather than lost.
        """
        selected = [a for a in (album_ids or []) if a]
        if not remove_all and not selected:
            raise ValueError("albumIds is required unless removeAll is set")

        analysis = self.albums()
        if remove_all:
            targets = analysis
            logger.info(f"[albums] removing ALL {len(targets)} notable albums from liked songs")
        else:
            wanted = set(selected)
            targets = [stat for stat in analysis if stat.album.id in wanted]
            logger.info(f"[albums] removing {len(targets)} selected albums from liked songs")

        result = AlbumRemovalResult()
        if not targets:
            result.message = "No albums found to remove"
            return result

        try:
            for stat in targets:
                self._process_album(stat, remove_all or add_to_library, result)
        finally:
            if result.removed_tracks or result.added_to_library:
                self.source.invalidate_cache()

        result.message = f"Removed {result.removed_tracks} tracks from {result.removed_albums} albums"
        if result.added_to_library:
            result.message += f", added {result.added_to_library} albums to library"
        logger.info(f"[albums] {result.message}")
        return result

    def _process_album(self, stat: AlbumStat, save_album: bool, result: AlbumRemovalResult) -> None:
        album = stat.album
        track_ids = [entry.track.id for entry in stat.tracks]
        logger.info(f"[albums] processing \"{album.name}\" ({len(track_ids)} tracks, in library: {stat.is_in_library})")

        added = False
        if save_album and not stat.is_in_library:
            try:
                self.source.add_saved_albums([album.id])
                added = True
                result.added_to_library += 1
                self.sleep(self.delays.album_op_s)
            except AuthExpiredError:
                raise
            except Exception as e:
                logger.error(f"[albums] failed to add \"{album.name}\" to library: {e}")
                result.errors.append(f"Failed to add \"{album.name}\" to library: {describe_error(e)}")

        removed = 0
        for _, batch in chunked(track_ids, REMOVE_BATCH_SIZE):
            try:
                self.source.remove_saved(batch)
                removed += len(batch)
                self.sleep(self.delays.album_op_s)
            except AuthExpiredError:
                raise
            except Exception as e:
                logger.error(f"[albums] failed removing a batch from \"{album.name}\": {e}")
                result.errors.append(f"Failed to remove some tracks from \"{album.name}\": {describe_error(e)}")

        result.removed_albums += 1
        result.removed_tracks += removed
        artists = album.artists or (stat.tracks[0].track.artists if stat.tracks else ())
        result.details.append(
            AlbumRemovalDetail(
                album_name=album.name,
                artist_name=", ".join(artists),
                tracks_removed=removed,
                total_tracks=len(track_ids),
                was_in_library=stat.is_in_library,
                added_to_library=added,
            )
        )

        if added:
            library_action = " (added to library)"
        elif stat.is_in_library:
            library_action = " (was already in library)"
        else:
            library_action = " (not added to library)"
        logger.info(f"[albums] processed \"{album.name}\": removed {removed}/{len(track_ids)} tracks{library_action}")

    def create_year_playlists(self, years: Sequence[int]) -> List[YearPlaylistResult]:
        """One private playlist per requested year; each year succeeds or fails on its own."""
        if not years:
            raise ValueError("years must contain at least one year")

        buckets = {bucket.year: bucket for bucket in self.years()}
        results: List[YearPlaylistResult] = []
        created = False
        try:
            for year in years:
                bucket = buckets.get(year)
                if bucket is None or not bucket.tracks:
                    results.append(YearPlaylistResult(year=year, success=False, error="No tracks found for this year"))
                    continue
                try:
                    results.append(self._create_year_playlist(bucket))
                    created = True
                except AuthExpiredError:
                    raise
                except Exception as e:
                    logger.error(f"[playlists] failed to create playlist for {year}: {e}")
                    results.append(YearPlaylistResult(year=year, success=False, error=describe_error(e)))
        finally:
            if created:
                self.source.invalidate_cache()
        return results

    def _create_year_playlist(self, bucket: YearBucket) -> YearPlaylistResult:
        name = PLAYLIST_NAME_TEMPLATE.format(year=bucket.year)
        description = PLAYLIST_DESCRIPTION_TEMPLATE.format(year=bucket.year)

        logger.info(f"[playlists] creating playlist: {name}")
        playlist = self.source.create_playlist(name, description, False)

        # Newly created playlists do not reliably come back private.
        try:
            self.source.make_playlist_private(playlist.id)
        except AuthExpiredError:
            raise
        except Exception as e:
            logger.warning(f"[playlists] failed to update privacy of {playlist.id}, playlist was created: {e}")

        uris = [entry.track.uri for entry in bucket.tracks]
        batches = batch_count(len(uris), PLAYLIST_BATCH_SIZE)
        logger.info(f"[playlists] adding {len(uris)} tracks in {batches} batches")
        for start, batch in chunked(uris, PLAYLIST_BATCH_SIZE):
            number = start // PLAYLIST_BATCH_SIZE + 1
            logger.info(f"[playlists] adding batch {number}/{batches}")
            call_with_linear_backoff(
                lambda: self.source.add_playlist_tracks(playlist.id, batch),
                max_attempts=PLAYLIST_MAX_ATTEMPTS,
                unit_s=self.delays.retry_unit_s,
                sleep=self.sleep,
                label=f"playlist {playlist.id} batch {number}",
                giveup=(AuthExpiredError,),
            )
            self.sleep(self.delays.playlist_batch_s)

        logger.info(f"[playlists] created \"{name}\" with {len(uris)} tracks")
        return YearPlaylistResult(
            year=bucket.year,
            success=True,
            playlist_id=playlist.id,
            playlist_name=name,
            track_count=len(uris),
            playlist_url=playlist.url or f"https://open.spotify.com/playlist/{playlist.id}",
        )

    def add_album_to_library(self, album_id: str) -> None:
        if not album_id or not album_id.strip():
            raise ValueError("Album ID is required")
        logger.info(f"[albums] adding album to library: {album_id}")
        self.source.add_saved_albums([album_id.strip()])
        self.source.invalidate_cache()
