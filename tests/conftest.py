"""Shared fixtures for the automix test suite."""

import itertools

import pytest

from automix.catalog import Track
from automix.config import Config


_ids = itertools.count(1)


def build_track(**overrides) -> Track:
    """Track with sensible mixable defaults; override any field."""
    n = next(_ids)
    fields = {
        "track_id": f"t{n}",
        "file_path": f"/music/t{n}.mp3",
        "artist": f"Artist {n}",
        "title": f"Title {n}",
        "duration_seconds": 300.0,
        "bpm": 124.0,
        "camelot_key": "8A",
        "energy": 6,
        "genre": "house",
    }
    fields.update(overrides)
    return Track(**fields)


@pytest.fixture
def make_track():
    """Factory for Track objects."""
    return build_track


@pytest.fixture
def config(tmp_path):
    """Default config with library paths inside tmp_path."""
    cfg = Config.defaults()
    cfg.data["library"]["catalog_path"] = str(tmp_path / "catalog.json")
    cfg.data["library"]["output_dir"] = str(tmp_path / "output")
    return cfg


@pytest.fixture
def library(make_track):
    """Twelve mixable tracks from six artists around 124 BPM."""
    keys = ["8A", "9A", "8B", "10A", "7A", "9B", "8A", "11A", "6A", "8B", "9A", "7B"]
    tracks = []
    for i, key in enumerate(keys):
        tracks.append(make_track(
            artist=f"Artist {i % 6}",
            title=f"Song {i}",
            bpm=120.0 + i,
            camelot_key=key,
            energy=3 + (i % 6),
            genre="tech house" if i % 2 else "deep house",
        ))
    return tracks
