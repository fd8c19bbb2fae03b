import unittest

from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOauthError

from core import FETCH_PAGE_DELAY_S, FETCH_PAGE_SIZE, SpotifyLibrarySource
from lib.cache_manager import LikedSongsCache
from lib.library.source import AuthExpiredError, LibraryFetchError


def _raw_item(i):
    return {
        "added_at": f"2023-01-01T00:{i % 60:02d}:00Z",
        "track": {
            "id": f"t{i}",
            "name": f"Song {i}",
            "artists": [{"name": "Artist"}],
            "album": {"id": "al", "name": "Album", "total_tracks": 10, "artists": [{"name": "Artist"}]},
            "uri": f"spotify:track:t{i}",
        },
    }


class FakeSpotify:
    """Just enough of spotipy.Spotify for SpotifyLibrarySource."""

    def __init__(self, total=0, items=None):
        self.items = items if items is not None else [_raw_item(i) for i in range(total)]
        self.page_calls = []
        self.fail_from_offset = None
        self.page_error = SpotifyException(500, -1, "server error")
        self.me_calls = 0
        self.calls = []

    def current_user_saved_tracks(self, limit=20, offset=0):
        self.page_calls.append(offset)
        if self.fail_from_offset is not None and offset >= self.fail_from_offset:
            raise self.page_error
        page = self.items[offset:offset + limit]
        has_more = offset + limit < len(self.items)
        return {"items": page, "next": "https://api.spotify.com/v1/me/tracks?more" if has_more else None}

    def current_user_saved_albums_contains(self, albums):
        self.calls.append(("contains", albums))
        return [a.startswith("saved") for a in albums]

    def current_user_saved_tracks_delete(self, tracks):
        self.calls.append(("delete", tracks))

    def current_user_saved_albums_add(self, albums):
        self.calls.append(("albums_add", albums))

    def me(self):
        self.me_calls += 1
        return {"id": "user1"}

    def user_playlist_create(self, user, name, public=True, collaborative=False, description=""):
        self.calls.append(("create", user, name, public, collaborative, description))
        n = len([c for c in self.calls if c[0] == "create"])
        return {
            "id": f"pl{n}",
            "name": name,
            "public": public,
            "collaborative": collaborative,
            "external_urls": {"spotify": f"https://open.spotify.com/playlist/pl{n}"},
        }

    def playlist_change_details(self, playlist_id, public=None, collaborative=None):
        self.calls.append(("change", playlist_id, public, collaborative))

    def playlist_add_items(self, playlist_id, items):
        self.calls.append(("add_items", playlist_id, items))


class FetchAllTests(unittest.TestCase):
    def _source(self, sp):
        self.slept = []
        return SpotifyLibrarySource(sp, cache=LikedSongsCache(path=None), sleep=self.slept.append)

    def test_pages_until_next_is_missing(self):
        sp = FakeSpotify(total=120)
        entries = self._source(sp).fetch_all()
        self.assertEqual(len(entries), 120)
        self.assertEqual(sp.page_calls, [0, FETCH_PAGE_SIZE, 2 * FETCH_PAGE_SIZE])
        self.assertEqual(self.slept, [FETCH_PAGE_DELAY_S, FETCH_PAGE_DELAY_S])

    def test_empty_library(self):
        sp = FakeSpotify(total=0)
        self.assertEqual(self._source(sp).fetch_all(), [])

    def test_returns_partial_collection_when_retries_run_out(self):
        sp = FakeSpotify(total=120)
        sp.fail_from_offset = FETCH_PAGE_SIZE
        entries = self._source(sp).fetch_all()

        self.assertEqual(len(entries), FETCH_PAGE_SIZE)
        # one good page, then the first attempt plus three retries on the next
        self.assertEqual(sp.page_calls, [0] + [FETCH_PAGE_SIZE] * 4)
        self.assertEqual(self.slept, [FETCH_PAGE_DELAY_S, 2.0, 4.0, 8.0])

    def test_recovers_from_a_transient_failure(self):
        sp = FakeSpotify(total=60)
        calls = {"n": 0}
        real = sp.current_user_saved_tracks

        def flaky(limit=20, offset=0):
            calls["n"] += 1
            if calls["n"] == 2:
                raise SpotifyException(502, -1, "bad gateway")
            return real(limit=limit, offset=offset)

        sp.current_user_saved_tracks = flaky
        self.assertEqual(len(self._source(sp).fetch_all()), 60)

    def test_nothing_fetched_raises_fetch_error(self):
        sp = FakeSpotify(total=10)
        sp.fail_from_offset = 0
        sp.page_error = SpotifyException(429, -1, "rate limited")
        with self.assertRaises(LibraryFetchError) as ctx:
            self._source(sp).fetch_all()
        self.assertIn("rate limit", str(ctx.exception))

    def test_unauthorized_is_not_retried(self):
        sp = FakeSpotify(total=10)
        sp.fail_from_offset = 0
        sp.page_error = SpotifyException(401, -1, "The access token expired")
        with self.assertRaises(AuthExpiredError):
            self._source(sp).fetch_all()
        self.assertEqual(sp.page_calls, [0])

    def test_revoked_refresh_token_is_not_retried(self):
        sp = FakeSpotify(total=10)
        sp.fail_from_offset = 0
        sp.page_error = SpotifyOauthError("invalid_grant: Refresh token revoked")
        with self.assertRaises(AuthExpiredError):
            self._source(sp).fetch_all()
        self.assertEqual(sp.page_calls, [0])
        self.assertEqual(self.slept, [])

    def test_revoked_token_after_first_page_does_not_return_partial_data(self):
        sp = FakeSpotify(total=120)
        sp.fail_from_offset = FETCH_PAGE_SIZE
        sp.page_error = SpotifyOauthError("invalid_grant: Refresh token revoked")
        with self.assertRaises(AuthExpiredError):
            self._source(sp).fetch_all()
        self.assertEqual(sp.page_calls, [0, FETCH_PAGE_SIZE])

    def test_malformed_items_are_skipped(self):
        items = [_raw_item(0), {"added_at": "2023-01-01T00:00:00Z", "track": None}, _raw_item(2)]
        items[2]["track"]["artists"] = []
        items.append(_raw_item(3))
        sp = FakeSpotify(items=items)
        entries = self._source(sp).fetch_all()
        self.assertEqual([e.track.id for e in entries], ["t0", "t3"])

    def test_cache_is_used_until_refresh(self):
        sp = FakeSpotify(total=5)
        source = self._source(sp)
        source.fetch_all()
        source.fetch_all()
        self.assertEqual(sp.page_calls, [0])

        source.fetch_all(refresh=True)
        self.assertEqual(sp.page_calls, [0, 0])

        source.invalidate_cache()
        source.fetch_all()
        self.assertEqual(sp.page_calls, [0, 0, 0])


class WriteTests(unittest.TestCase):
    def setUp(self):
        self.sp = FakeSpotify()
        self.source = SpotifyLibrarySource(self.sp, cache=LikedSongsCache(path=None), sleep=lambda _s: None)

    def test_create_playlist_looks_up_user_once(self):
        first = self.source.create_playlist("Liked Songs 2022", "desc", False)
        self.source.create_playlist("Liked Songs 2023", "desc", False)

        self.assertEqual(self.sp.me_calls, 1)
        self.assertEqual(first.id, "pl1")
        self.assertEqual(first.url, "https://open.spotify.com/playlist/pl1")
        self.assertEqual(self.sp.calls[0], ("create", "user1", "Liked Songs 2022", False, False, "desc"))

    def test_make_private_and_add_items(self):
        self.source.make_playlist_private("pl1")
        self.source.add_playlist_tracks("pl1", ("spotify:track:a",))
        self.assertEqual(self.sp.calls, [
            ("change", "pl1", False, False),
            ("add_items", "pl1", ["spotify:track:a"]),
        ])

    def test_library_calls(self):
        self.assertEqual(self.source.check_saved_albums(["saved1", "other"]), [True, False])
        self.source.remove_saved(("t1", "t2"))
        self.source.add_saved_albums(("al1",))
        self.assertIn(("delete", ["t1", "t2"]), self.sp.calls)
        self.assertIn(("albums_add", ["al1"]), self.sp.calls)

    def test_unauthorized_write_becomes_auth_expired(self):
        def expired(tracks):
            raise SpotifyException(401, -1, "The access token expired")

        self.sp.current_user_saved_tracks_delete = expired
        with self.assertRaises(AuthExpiredError):
            self.source.remove_saved(["t1"])

    def test_token_refresh_failure_on_write_becomes_auth_expired(self):
        def refresh_failed(playlist_id, items):
            raise SpotifyOauthError("invalid_grant: Refresh token revoked")

        self.sp.playlist_add_items = refresh_failed
        with self.assertRaises(AuthExpiredError):
            self.source.add_playlist_tracks("pl1", ["spotify:track:a"])

    def test_other_errors_pass_through(self):
        def boom(tracks):
            raise SpotifyException(500, -1, "server error")

        self.sp.current_user_saved_tracks_delete = boom
        with self.assertRaises(SpotifyException):
            self.source.remove_saved(["t1"])


if __name__ == "__main__":
    unittest.main()
