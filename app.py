from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Dict, List, Optional

import spotipy
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from spotipy.cache_handler import MemoryCacheHandler
from starlette.middleware.gzip import GZipMiddleware

# .env / .env.local を先に読む（lib 側のモジュール定数が os.getenv で読むため）
_here = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(_here, ".env"))
load_dotenv(os.path.join(_here, ".env.local"), override=True)

from core import SpotifyLibrarySource, get_oauth_manager  # noqa: E402
from lib.cache_manager import get_liked_cache  # noqa: E402
from lib.library import AuthExpiredError, LibraryFetchError, MutationPlanner  # noqa: E402
from lib.library.serialize import (  # noqa: E402
    album_removal_to_dict,
    album_stat_to_dict,
    duplicate_group_to_dict,
    duplicate_removal_to_dict,
    year_bucket_to_dict,
    year_playlist_results_to_list,
)


# Basic logging configuration to ensure logger outputs appear in the terminal
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn.error")
logger.setLevel(logging.INFO)


# =========================
# Pydantic models
# =========================

class RemoveAlbumsBody(BaseModel):
    albumIds: List[str] = Field(default_factory=list)
    removeAll: bool = False
    addToLibrary: bool = False


class CreateYearPlaylistsBody(BaseModel):
    years: List[int] = Field(..., min_length=1)


class AddAlbumBody(BaseModel):
    albumId: Optional[str] = None


# =========================
# FastAPI app & CORS
# =========================

app = FastAPI(
    title="Liked Songs Doctor",
    version="1.0.0",
)

# Liked-song lists get large; compress JSON responses
app.add_middleware(GZipMiddleware, minimum_size=1000)

default_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

env_origins = os.getenv("ALLOWED_ORIGINS")
if env_origins:
    origins = [o.strip() for o in env_origins.split(",") if o.strip()]
else:
    origins = default_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _log_startup():
    logger.info("liked-songs-doctor: startup event triggered")


# =========================
# Session / dependencies
# =========================

# Single-operator tool: the token lives in process memory only.
_token_cache = MemoryCacheHandler()


def _oauth():
    return get_oauth_manager(cache_handler=_token_cache)


def _is_authenticated() -> bool:
    return _token_cache.get_cached_token() is not None


def get_library_source() -> SpotifyLibrarySource:
    """Spotify-backed source for the logged-in user, or 401."""
    if not _is_authenticated():
        raise HTTPException(status_code=401, detail={"error": "Not authenticated"})
    sp = spotipy.Spotify(auth_manager=_oauth())
    return SpotifyLibrarySource(sp, cache=get_liked_cache())


def get_planner(source: SpotifyLibrarySource = Depends(get_library_source)) -> MutationPlanner:
    return MutationPlanner(source)


async def _run(label: str, failure: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run blocking core work in a thread and map library errors to HTTP errors."""
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except AuthExpiredError as e:
        logger.warning(f"[{label}] authorization failed: {e}")
        # drop the dead token so / and /dashboard report logged-out
        _token_cache.save_token_to_cache(None)
        raise HTTPException(status_code=401, detail={"error": str(e)})
    except LibraryFetchError as e:
        logger.error(f"[{label}] fetch failed: {e}")
        raise HTTPException(status_code=502, detail={"error": str(e)})
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})
    except Exception as e:
        logger.error(f"[{label}] {failure}: {e}")
        raise HTTPException(status_code=500, detail={"error": failure})


# =========================
# System / auth routes
# =========================

@app.get("/health", tags=["system"])
def health() -> Dict[str, Any]:
    return {
        "ok": True,
        "status": "ok",
        "build_commit": os.getenv("RENDER_GIT_COMMIT", "local")[:7],
    }


@app.get("/", tags=["system"])
def root() -> Dict[str, Any]:
    return {"ok": True, "authenticated": _is_authenticated(), "login_url": "/auth", "dashboard_url": "/dashboard"}


@app.get("/auth", tags=["auth"])
def auth():
    return RedirectResponse(_oauth().get_authorize_url())


@app.get("/callback", tags=["auth"])
def callback(code: Optional[str] = None, error: Optional[str] = None):
    if error:
        raise HTTPException(status_code=400, detail={"error": f"Error from Spotify: {error}"})
    if not code:
        raise HTTPException(status_code=400, detail={"error": "No code provided in callback"})
    try:
        _oauth().get_access_token(code, as_dict=False, check_cache=False)
    except Exception as e:
        logger.error(f"[callback] error getting tokens: {e}")
        raise HTTPException(status_code=400, detail={"error": "Authentication failed"})
    return RedirectResponse("/dashboard")


@app.get("/dashboard", tags=["auth"])
def dashboard():
    if not _is_authenticated():
        return RedirectResponse("/")
    return {"ok": True, "authenticated": True}


# =========================
# Analysis endpoints
# =========================

@app.get("/api/duplicates")
async def duplicates(
    loose: bool = Query(False, description="Match on title + artists only (every version of a song)"),
    refresh: Optional[int] = Query(None, description="Bypass cache when set to 1"),
    planner: MutationPlanner = Depends(get_planner),
):
    groups = await _run(
        "api/duplicates", "Failed to find duplicates",
        planner.duplicates, include_album=not loose, refresh=(refresh == 1),
    )
    logger.info(f"[api/duplicates] groups={len(groups)} loose={loose}")
    return {"duplicates": [duplicate_group_to_dict(g) for g in groups]}


@app.get("/api/album-analysis")
async def album_analysis(
    refresh: Optional[int] = Query(None, description="Bypass cache when set to 1"),
    planner: MutationPlanner = Depends(get_planner),
):
    stats = await _run("api/album-analysis", "Failed to analyze albums", planner.albums, refresh=(refresh == 1))
    return {"albumAnalysis": [album_stat_to_dict(s) for s in stats]}


@app.get("/api/year-analysis")
async def year_analysis(
    refresh: Optional[int] = Query(None, description="Bypass cache when set to 1"),
    planner: MutationPlanner = Depends(get_planner),
):
    buckets = await _run("api/year-analysis", "Failed to analyze by year", planner.years, refresh=(refresh == 1))
    return {"yearAnalysis": [year_bucket_to_dict(b) for b in buckets]}


# =========================
# Mutation endpoints
# =========================

@app.post("/api/remove-duplicates")
async def remove_duplicates(planner: MutationPlanner = Depends(get_planner)):
    result = await _run("api/remove-duplicates", "Failed to remove duplicates", planner.remove_duplicates)
    return {"results": duplicate_removal_to_dict(result)}


@app.post("/api/remove-albums")
async def remove_albums(body: RemoveAlbumsBody, planner: MutationPlanner = Depends(get_planner)):
    result = await _run(
        "api/remove-albums", "Failed to remove albums",
        planner.remove_albums, body.albumIds, remove_all=body.removeAll, add_to_library=body.addToLibrary,
    )
    return {"results": album_removal_to_dict(result)}


@app.post("/api/create-year-playlists")
async def create_year_playlists(body: CreateYearPlaylistsBody, planner: MutationPlanner = Depends(get_planner)):
    logger.info(f"[api/create-year-playlists] years={body.years}")
    results = await _run(
        "api/create-year-playlists", "Failed to create year playlists",
        planner.create_year_playlists, body.years,
    )
    return {"results": year_playlist_results_to_list(results)}


@app.post("/api/add-album-to-library")
async def add_album_to_library(body: AddAlbumBody, planner: MutationPlanner = Depends(get_planner)):
    if not body.albumId or not body.albumId.strip():
        raise HTTPException(status_code=400, detail={"error": "Album ID is required"})
    await _run("api/add-album-to-library", "Failed to add album to library", planner.add_album_to_library, body.albumId)
    return {"success": True}


@app.post("/api/clear-cache")
def clear_cache():
    get_liked_cache().invalidate()
    return {"success": True, "message": "Cache cleared successfully"}


# =========================
# Local dev entrypoint
# =========================

if __name__ == "__main__":
    import threading
    import webbrowser

    import uvicorn

    port = int(os.getenv("PORT", "3000"))
    url = f"http://localhost:{port}"
    logger.info(f"Server running at {url}")
    if os.getenv("OPEN_BROWSER", "1") != "0":
        threading.Timer(1.5, webbrowser.open, args=(url,)).start()

    uvicorn.run(
        "app:app",
        host="127.0.0.1",
        port=port,
        reload=True,
    )
