import unittest

from fakes import FakeLibrarySource, album_entries, make_album, no_sleep
from lib.library.albums import NotabilityRule, analyze_albums
from lib.library.source import AuthExpiredError


def _analyze(entries, source=None, rule=None):
    source = source or FakeLibrarySource(entries)
    return analyze_albums(entries, source.check_saved_albums, rule=rule, sleep=no_sleep)


class NotabilityTests(unittest.TestCase):
    def test_eight_of_ten_is_notable_at_eighty_percent(self):
        album = make_album("a10", "Ten", total_tracks=10)
        stats = _analyze(album_entries(album, 8))
        self.assertEqual(len(stats), 1)
        self.assertEqual(stats[0].percentage, 80)
        self.assertEqual(stats[0].liked_count, 8)
        self.assertEqual(stats[0].total_tracks, 10)

    def test_six_of_twenty_is_not_notable(self):
        # 30%: more than five liked, but below the 50% chunk threshold
        album = make_album("a20", "Twenty", total_tracks=20)
        self.assertEqual(_analyze(album_entries(album, 6)), [])

    def test_large_chunk_of_long_album_is_notable(self):
        # 11/20 = 55%: below 70 but more than five liked and above 50
        album = make_album("a20", "Twenty", total_tracks=20)
        stats = _analyze(album_entries(album, 11))
        self.assertEqual([s.percentage for s in stats], [55])

    def test_small_chunk_above_fifty_percent_is_not_notable(self):
        # 5/8 = 62.5%: only five liked, so the chunk clause does not apply
        album = make_album("a8", "Eight", total_tracks=8)
        self.assertEqual(_analyze(album_entries(album, 5)), [])

    def test_two_track_or_smaller_releases_are_never_notable(self):
        single = make_album("s1", "Single", total_tracks=1)
        double = make_album("s2", "Double A-side", total_tracks=2)
        entries = album_entries(single, 1) + album_entries(double, 2)
        self.assertEqual(_analyze(entries), [])

    def test_rule_is_configurable(self):
        double = make_album("s2", "Double A-side", total_tracks=2)
        rule = NotabilityRule(max_excluded_tracks=1)
        stats = _analyze(album_entries(double, 2), rule=rule)
        self.assertEqual([s.percentage for s in stats], [100])

    def test_percentage_is_rounded_liked_over_total(self):
        album = make_album("a7", "Seven", total_tracks=7)
        stats = _analyze(album_entries(album, 6))
        self.assertEqual(stats[0].percentage, 86)

    def test_half_percent_rounds_up(self):
        # 25/40 = 62.5%, notable through the chunk clause
        album = make_album("a40", "Forty", total_tracks=40)
        stats = _analyze(album_entries(album, 25))
        self.assertEqual(stats[0].percentage, 63)

    def test_half_percent_rounding_drives_sort_order(self):
        half = make_album("half", "Half", total_tracks=40)
        whole = make_album("whole", "Whole", total_tracks=100)
        # half-even rounding would drop Half to 62, behind Lower
        lower = make_album("lower", "Lower", total_tracks=100)
        entries = album_entries(lower, 62) + album_entries(half, 25) + album_entries(whole, 63)
        stats = _analyze(entries)
        self.assertEqual([s.album.id for s in stats], ["half", "whole", "lower"])
        self.assertEqual([s.percentage for s in stats], [63, 63, 62])


class AnalyzeAlbumsTests(unittest.TestCase):
    def test_sorted_by_percentage_desc_with_stable_ties(self):
        a = make_album("a", "A", total_tracks=10)
        b = make_album("b", "B", total_tracks=4)
        c = make_album("c", "C", total_tracks=10)
        entries = album_entries(a, 8) + album_entries(b, 4) + album_entries(c, 8)
        stats = _analyze(entries)
        self.assertEqual([s.album.id for s in stats], ["b", "a", "c"])

    def test_member_tracks_sorted_ascending_by_added_at(self):
        album = make_album("a", "A", total_tracks=4)
        entries = list(reversed(album_entries(album, 4)))
        stats = _analyze(entries)
        times = [e.added_at for e in stats[0].tracks]
        self.assertEqual(times, sorted(times))

    def test_library_status_comes_from_membership_check(self):
        saved = make_album("saved", "Saved", total_tracks=4)
        unsaved = make_album("unsaved", "Unsaved", total_tracks=4)
        entries = album_entries(saved, 4) + album_entries(unsaved, 4)
        source = FakeLibrarySource(entries, saved_albums={"saved"})
        stats = {s.album.id: s.is_in_library for s in _analyze(entries, source=source)}
        self.assertEqual(stats, {"saved": True, "unsaved": False})

    def test_membership_checked_in_batches_of_twenty(self):
        albums = [make_album(f"a{i}", f"A{i}", total_tracks=4) for i in range(45)]
        entries = [e for album in albums for e in album_entries(album, 4)]
        source = FakeLibrarySource(entries)
        _analyze(entries, source=source)
        sizes = [len(c[1]) for c in source.calls_named("check_saved_albums")]
        self.assertEqual(sizes, [20, 20, 5])

    def test_failed_membership_batch_marks_those_albums_not_in_library(self):
        albums = [make_album(f"a{i}", f"A{i}", total_tracks=4) for i in range(40)]
        entries = [e for album in albums for e in album_entries(album, 4)]
        source = FakeLibrarySource(entries, saved_albums={a.id for a in albums})
        source.fail_check_batches = {1}

        stats = _analyze(entries, source=source)

        self.assertEqual(len(stats), 40)
        status = {s.album.id: s.is_in_library for s in stats}
        for i in range(20):
            self.assertFalse(status[f"a{i}"])
        for i in range(20, 40):
            self.assertTrue(status[f"a{i}"])

    def test_same_album_id_with_different_name_is_a_separate_group(self):
        first = make_album("x", "Deluxe", total_tracks=4)
        second = make_album("x", "Standard", total_tracks=4)
        entries = album_entries(first, 4, prefix="d") + album_entries(second, 4, prefix="s")
        source = FakeLibrarySource(entries)
        stats = _analyze(entries, source=source)
        self.assertEqual(len(stats), 2)
        # one membership lookup per distinct album id
        self.assertEqual(source.calls_named("check_saved_albums")[0][1], ["x"])

    def test_expired_login_during_membership_check_is_raised(self):
        album = make_album("a", "A", total_tracks=4)
        entries = album_entries(album, 4)

        def expired(_ids):
            raise AuthExpiredError()

        with self.assertRaises(AuthExpiredError):
            analyze_albums(entries, expired, sleep=no_sleep)


if __name__ == "__main__":
    unittest.main()
