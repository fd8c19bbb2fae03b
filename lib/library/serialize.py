"""
Flat JSON-ready dicts for the dashboard.

Field names follow the dashboard's camelCase contract; tracks and albums keep
the shape of Spotify's own objects so the front end can render either.
"""
from __future__ import annotations

from typing import Any, Dict, List

from lib.library.models import (
    AlbumRef,
    AlbumRemovalResult,
    AlbumStat,
    DuplicateGroup,
    DuplicateRemovalResult,
    LikedEntry,
    Track,
    YearBucket,
    YearPlaylistResult,
)


def album_to_dict(album: AlbumRef) -> Dict[str, Any]:
    return {
        "id": album.id,
        "name": album.name,
        "total_tracks": album.total_tracks,
        "artists": [{"name": n} for n in album.artists],
    }


def track_to_dict(track: Track) -> Dict[str, Any]:
    return {
        "id": track.id,
        "name": track.name,
        "artists": [{"name": n} for n in track.artists],
        "album": album_to_dict(track.album),
        "uri": track.uri,
    }


def entry_to_dict(entry: LikedEntry) -> Dict[str, Any]:
    return {"track": track_to_dict(entry.track), "addedAt": entry.added_at.isoformat()}


def duplicate_group_to_dict(group: DuplicateGroup) -> Dict[str, Any]:
    return {
        "key": group.key,
        "count": group.count,
        "tracks": [
            {"index": m.index, "track": track_to_dict(m.track), "addedAt": m.added_at.isoformat()}
            for m in group.tracks
        ],
    }


def album_stat_to_dict(stat: AlbumStat) -> Dict[str, Any]:
    return {
        "album": album_to_dict(stat.album),
        "likedCount": stat.liked_count,
        "totalTracks": stat.total_tracks,
        "percentage": stat.percentage,
        "isInLibrary": stat.is_in_library,
        "tracks": [entry_to_dict(e) for e in stat.tracks],
    }


def year_bucket_to_dict(bucket: YearBucket) -> Dict[str, Any]:
    return {
        "year": bucket.year,
        "count": bucket.count,
        "tracks": [entry_to_dict(e) for e in bucket.tracks],
    }


def duplicate_removal_to_dict(result: DuplicateRemovalResult) -> Dict[str, Any]:
    return {
        "success": result.success,
        "removedCount": result.removed_count,
        "totalDuplicates": result.total_duplicates,
        "errors": list(result.errors),
        "message": result.message,
    }


def album_removal_to_dict(result: AlbumRemovalResult) -> Dict[str, Any]:
    return {
        "success": result.success,
        "removedAlbums": result.removed_albums,
        "removedTracks": result.removed_tracks,
        "addedToLibrary": result.added_to_library,
        "errors": list(result.errors),
        "details": [
            {
                "albumName": d.album_name,
                "artistName": d.artist_name,
                "tracksRemoved": d.tracks_removed,
                "totalTracks": d.total_tracks,
                "wasInLibrary": d.was_in_library,
                "addedToLibrary": d.added_to_library,
                "success": d.success,
            }
            for d in result.details
        ],
        "message": result.message,
    }


def year_playlist_results_to_list(results: List[YearPlaylistResult]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for r in results:
        if r.success:
            out.append({
                "year": r.year,
                "success": True,
                "playlistId": r.playlist_id,
                "playlistName": r.playlist_name,
                "trackCount": r.track_count,
                "playlistUrl": r.playlist_url,
            })
        else:
            out.append({"year": r.year, "success": False, "error": r.error})
    return out
