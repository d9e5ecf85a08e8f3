"""
Unit tests for harmonic ordering.
"""

import random
from collections import Counter

import pytest

from automix.generate.energy import energy_trend
from automix.generate.ordering import TrackOrderOptimizer, harmonic_percentage


@pytest.fixture
def optimizer():
    return TrackOrderOptimizer()


def ids(tracks):
    return [t.track_id for t in tracks]


class TestPermutation:
    """Ordering never adds, drops or duplicates tracks."""

    @pytest.mark.parametrize("curve", ["build", "peak", "chill", "steady"])
    def test_is_permutation(self, optimizer, library, curve):
        shuffled = list(library)
        random.Random(11).shuffle(shuffled)
        ordered = optimizer.optimize(shuffled, curve)
        assert len(ordered) == len(shuffled)
        assert Counter(ids(ordered)) == Counter(ids(shuffled))

    def test_empty_and_single(self, optimizer, make_track):
        assert optimizer.optimize([]) == []
        track = make_track()
        assert optimizer.optimize([track]) == [track]

    def test_keeps_duplicates(self, optimizer, make_track):
        """Identical entries survive as a multiset."""
        track = make_track()
        other = make_track(camelot_key="3B")
        ordered = optimizer.optimize([track, other, track])
        assert Counter(ids(ordered)) == Counter(ids([track, other, track]))


class TestEnergyBias:
    """Energy curve steers the walk."""

    def test_build_starts_low_and_rises(self, optimizer, make_track):
        tracks = [make_track(energy=e, camelot_key="8A") for e in (9, 3, 7, 5, 4, 8)]
        ordered = optimizer.optimize(tracks, "build")
        assert ordered[0].energy == 3
        assert energy_trend(ordered) > 0

    def test_chill_starts_high_and_falls(self, optimizer, make_track):
        tracks = [make_track(energy=e, camelot_key="8A") for e in (3, 9, 4, 7, 5, 8)]
        ordered = optimizer.optimize(tracks, "chill")
        assert ordered[0].energy == 8
        assert energy_trend(ordered) < 0

    def test_peak_opens_high_and_holds_the_top(self, optimizer, make_track):
        tracks = [make_track(energy=e, camelot_key="8A") for e in (3, 9, 4, 8, 5, 9)]
        ordered = optimizer.optimize(tracks, "peak")
        assert ordered[0].energy == 8
        assert [t.energy for t in ordered[1:3]] == [9, 9]

    def test_steady_stays_near_the_mean(self, optimizer, make_track):
        """Tracks at the set's mean energy come first, outliers last."""
        tracks = [make_track(energy=e, camelot_key="8A") for e in (2, 6, 10, 6, 6, 6)]
        ordered = optimizer.optimize(tracks, "steady")
        assert [t.energy for t in ordered[:4]] == [6, 6, 6, 6]
        assert sorted(t.energy for t in ordered[4:]) == [2, 10]
        assert abs(energy_trend(ordered)) < 0.05


class TestHarmonicPercentage:
    """Share of compatible consecutive pairs."""

    def test_fully_compatible(self, make_track):
        keys = ["8A", "9A", "9B", "10B", "10A", "10A"]
        tracks = [make_track(camelot_key=k) for k in keys]
        assert harmonic_percentage(tracks) == 100

    def test_none_compatible(self, make_track):
        keys = ["1A", "7B", "2A", "8B"]
        assert harmonic_percentage([make_track(camelot_key=k) for k in keys]) == 0

    def test_partial(self, make_track):
        keys = ["8A", "9A", "3B"]
        assert harmonic_percentage([make_track(camelot_key=k) for k in keys]) == 50

    def test_short_lists(self, make_track):
        assert harmonic_percentage([]) == 100
        assert harmonic_percentage([make_track()]) == 100

    def test_crafted_beats_shuffled_baseline(self, make_track):
        """A hand-built compatible chain scores higher than a shuffled version."""
        keys = ["1A", "2A", "3A", "4A", "5A", "6A", "7A", "8A", "9A", "10A", "11A", "12A"]
        crafted = [make_track(camelot_key=k) for k in keys]
        shuffled = list(crafted)
        random.Random(2024).shuffle(shuffled)
        assert harmonic_percentage(crafted) == 100
        assert harmonic_percentage(crafted) > harmonic_percentage(shuffled)

    def test_optimizer_improves_shuffled_order(self, optimizer, make_track):
        keys = ["1A", "2A", "3A", "4A", "5A", "6A", "7A", "8A"]
        tracks = [make_track(camelot_key=k, energy=6, bpm=124.0) for k in keys]
        shuffled = [tracks[i] for i in (0, 4, 1, 6, 3, 7, 2, 5)]
        assert harmonic_percentage(optimizer.optimize(shuffled, "steady")) > harmonic_percentage(shuffled)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
