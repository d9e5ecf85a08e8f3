"""
Unit tests for the track catalog loader.
"""

import json

import pytest

from automix.catalog import Track, TrackCatalog, track_from_record


@pytest.fixture
def audio_files(tmp_path):
    """Three real (empty) audio files on disk."""
    files = []
    for name in ("a.mp3", "b.mp3", "c.mp3"):
        path = tmp_path / name
        path.write_bytes(b"\x00")
        files.append(str(path))
    return files


def write_catalog(tmp_path, records, wrap=True):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"tracks": records} if wrap else records))
    return str(path)


class TestTrackFromRecord:
    """Record parsing."""

    def test_camel_case_record(self):
        """Upstream camelCase fields map onto Track."""
        track = track_from_record({
            "id": "abc",
            "filePath": "/music/a.mp3",
            "artist": "Daft Punk",
            "title": "Da Funk",
            "bpm": 111.5,
            "camelotKey": "7A",
            "energy": 7,
            "genre": "French House",
            "duration": 330,
            "mixPoints": {"mixInPoint": 16.0, "mixOutPoint": 300.0, "dropPoint": 64.0},
            "transitionHints": {"idealCrossfadeBars": 16, "preferredInType": "intro"},
        })
        assert track.track_id == "abc"
        assert track.camelot_key == "7A"
        assert track.mix_in_point == 16.0
        assert track.mix_out_point == 300.0
        assert track.drop_point == 64.0
        assert track.ideal_crossfade_bars == 16
        assert track.preferred_in_type == "intro"
        assert track.is_mixable

    def test_snake_case_and_standard_key(self):
        """snake_case names and standard key notation are accepted."""
        track = track_from_record({"file_path": "/music/b.flac", "key": "Am", "bpm": "124"})
        assert track.track_id == "/music/b.flac"
        assert track.camelot_key == "8A"
        assert track.bpm == 124.0
        assert track.title == "b"

    def test_unit_energy_scaled(self):
        """0-1 energy values are scaled to 1-10."""
        track = track_from_record({"filePath": "/x.mp3", "energy": 0.72})
        assert track.energy == 7

    def test_missing_bpm_not_mixable(self):
        track = track_from_record({"filePath": "/x.mp3", "camelotKey": "8A"})
        assert track.bpm is None
        assert not track.is_mixable

    def test_unknown_key_becomes_none(self):
        track = track_from_record({"filePath": "/x.mp3", "bpm": 120, "camelotKey": "unknown"})
        assert track.camelot_key is None
        assert not track.is_mixable

    @pytest.mark.parametrize("bars,expected", [("8", 8), (16.0, 16), ([16], None), ("1e999", None), (0, None)])
    def test_crossfade_bars_coerced(self, bars, expected):
        track = track_from_record({"filePath": "/x.mp3", "transitionHints": {"idealCrossfadeBars": bars}})
        assert track.ideal_crossfade_bars == expected

    def test_missing_path_rejected(self):
        with pytest.raises(ValueError):
            track_from_record({"id": "x", "artist": "Nobody"})


class TestCatalogLoad:
    """Loading catalog documents."""

    def test_missing_catalog_is_empty(self, tmp_path):
        catalog = TrackCatalog.load(str(tmp_path / "nope.json"))
        assert len(catalog) == 0
        assert catalog.mixable() == []

    def test_drops_missing_files(self, tmp_path, audio_files):
        """Entries whose file no longer exists are filtered out."""
        records = [
            {"id": "1", "filePath": audio_files[0], "bpm": 120, "camelotKey": "8A"},
            {"id": "2", "filePath": str(tmp_path / "gone.mp3"), "bpm": 122, "camelotKey": "9A"},
            {"id": "3", "filePath": audio_files[1], "bpm": 124},
        ]
        catalog = TrackCatalog.load(write_catalog(tmp_path, records))
        assert [t.track_id for t in catalog.tracks()] == ["1", "3"]
        assert [t.track_id for t in catalog.mixable()] == ["1"]

    def test_skips_malformed_entries(self, tmp_path, audio_files):
        records = [{"id": "no-path"}, "garbage", {"id": "ok", "filePath": audio_files[2]}]
        catalog = TrackCatalog.load(write_catalog(tmp_path, records))
        assert len(catalog) == 1
        assert catalog.get("ok") is not None
        assert catalog.get("no-path") is None

    def test_bare_list_accepted(self, tmp_path, audio_files):
        records = [{"id": "1", "filePath": audio_files[0]}]
        catalog = TrackCatalog.load(write_catalog(tmp_path, records, wrap=False))
        assert len(catalog) == 1

    def test_skip_file_check(self, tmp_path):
        records = [{"id": "1", "filePath": "/definitely/not/here.mp3", "bpm": 120, "camelotKey": "1B"}]
        catalog = TrackCatalog.load(write_catalog(tmp_path, records), check_files=False)
        assert len(catalog) == 1

    def test_duplicate_ids_keep_first(self, tmp_path, audio_files):
        records = [
            {"id": "1", "filePath": audio_files[0], "title": "First"},
            {"id": "1", "filePath": audio_files[1], "title": "Second"},
            {"filePath": audio_files[2]},
            {"filePath": audio_files[2]},
        ]
        catalog = TrackCatalog.load(write_catalog(tmp_path, records))
        assert len(catalog) == 2
        assert catalog.get("1").title == "First"
        assert [t.track_id for t in catalog.tracks()] == ["1", audio_files[2]]

    def test_malformed_nested_fields(self, tmp_path, audio_files):
        """Non-object mixPoints or transitionHints do not abort the load."""
        records = [
            {"id": "1", "filePath": audio_files[0], "bpm": 120, "mixPoints": [], "transitionHints": [16]},
            {"id": "2", "filePath": audio_files[1], "transitionHints": {"idealCrossfadeBars": "sixteen"}},
            {"id": "3", "filePath": audio_files[2], "mixPoints": "intro"},
        ]
        catalog = TrackCatalog.load(write_catalog(tmp_path, records))
        assert len(catalog) == 3
        assert catalog.get("1").bpm == 120.0
        assert catalog.get("1").mix_in_point is None
        assert catalog.get("2").ideal_crossfade_bars is None


class TestCatalogStats:
    def test_stats(self):
        catalog = TrackCatalog([
            Track("1", "/a", "A", "a", 200.0, bpm=120.0, camelot_key="8A", genre="house"),
            Track("2", "/b", "B", "b", 200.0, bpm=130.0, mix_in_point=8.0),
            Track("3", "/c", "C", "c", 200.0),
        ])
        stats = catalog.get_stats()
        assert stats["total_tracks"] == 3
        assert stats["mixable_tracks"] == 1
        assert stats["tracks_with_genre"] == 1
        assert stats["tracks_with_mix_points"] == 1
        assert stats["bpm_stats"]["min_bpm"] == 120.0
        assert stats["bpm_stats"]["avg_bpm"] == 125.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
