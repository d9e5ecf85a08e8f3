"""
Track catalog: the pre-analyzed audio library.

The catalog is a JSON document written by the offline analysis tooling:
``{"tracks": [ {...}, ... ]}``. Files are assumed to live on local or
attached storage; entries whose file has disappeared are dropped at load
time. Read-only for the lifetime of a job.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable

from .generate.camelot import normalize_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Track:
    """Immutable container for one analyzed library track."""

    track_id: str
    file_path: str
    artist: str
    title: str
    duration_seconds: float
    bpm: Optional[float] = None
    camelot_key: Optional[str] = None  # Camelot notation (1A-12B)
    energy: Optional[int] = None  # 1-10
    genre: Optional[str] = None
    spotify_id: Optional[str] = None

    # Mix-point hints from structural analysis (seconds into the file)
    mix_in_point: Optional[float] = None
    mix_out_point: Optional[float] = None
    drop_point: Optional[float] = None
    breakdown_point: Optional[float] = None
    ideal_crossfade_bars: Optional[int] = None
    preferred_in_type: Optional[str] = None
    preferred_out_type: Optional[str] = None

    @property
    def is_mixable(self) -> bool:
        """A track can be mixed only with both BPM and key known."""
        return self.bpm is not None and self.camelot_key is not None

    @property
    def normalized_energy(self) -> Optional[float]:
        """Energy on a 0.0-1.0 scale, or None if unknown."""
        if self.energy is None:
            return None
        return max(0.0, min(1.0, self.energy / 10.0))


def _first(record: Dict[str, Any], *names: str) -> Any:
    for name in names:
        value = record.get(name)
        if value is not None:
            return value
    return None


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if result > 0 else None


def _as_energy(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        energy = float(value)
    except (TypeError, ValueError):
        return None
    # Some analyzers emit 0.0-1.0 instead of 1-10
    if 0 < energy <= 1.0:
        energy *= 10
    return int(max(1, min(10, round(energy))))


def _as_bars(value: Any) -> Optional[int]:
    try:
        bars = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return bars if bars > 0 else None


def _as_mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def track_from_record(record: Dict[str, Any]) -> Track:
    """
    Build a Track from one catalog record.

    Accepts the camelCase names written by the analysis tooling
    (``filePath``, ``camelotKey``, ``mixPoints``, ``transitionHints``) as
    well as snake_case equivalents.

    Raises:
        ValueError: If the record has no id or file path.
    """
    file_path = _first(record, "filePath", "file_path")
    if not file_path:
        raise ValueError("record has no file path")
    track_id = _first(record, "id", "trackId", "track_id") or file_path

    mix_points = _as_mapping(_first(record, "mixPoints", "mix_points"))
    hints = _as_mapping(_first(record, "transitionHints", "transition_hints"))

    bars = _first(hints, "idealCrossfadeBars", "ideal_crossfade_bars")
    bars = _first(record, "idealCrossfadeBars", "ideal_crossfade_bars") if bars is None else bars

    return Track(
        track_id=str(track_id),
        file_path=str(file_path),
        artist=str(record.get("artist") or "Unknown Artist"),
        title=str(record.get("title") or Path(str(file_path)).stem),
        duration_seconds=_as_float(_first(record, "duration", "durationSeconds", "duration_seconds")) or 0.0,
        bpm=_as_float(record.get("bpm")),
        camelot_key=normalize_key(_first(record, "camelotKey", "camelot_key", "key")),
        energy=_as_energy(record.get("energy")),
        genre=(str(record["genre"]).strip() or None) if record.get("genre") else None,
        spotify_id=_first(record, "spotifyId", "spotify_id"),
        mix_in_point=_as_float(_first(mix_points, "mixInPoint", "mix_in_point")
                               or _first(record, "mixInPoint", "mix_in_point")),
        mix_out_point=_as_float(_first(mix_points, "mixOutPoint", "mix_out_point")
                                or _first(record, "mixOutPoint", "mix_out_point")),
        drop_point=_as_float(_first(mix_points, "dropPoint", "drop_point")),
        breakdown_point=_as_float(_first(mix_points, "breakdownPoint", "breakdown_point")),
        ideal_crossfade_bars=_as_bars(bars),
        preferred_in_type=_first(hints, "preferredInType", "preferred_in_type"),
        preferred_out_type=_first(hints, "preferredOutType", "preferred_out_type"),
    )


class TrackCatalog:
    """In-memory view of the analyzed library."""

    def __init__(self, tracks: Iterable[Track]):
        self._tracks: List[Track] = []
        self._by_id: Dict[str, Track] = {}
        duplicates = 0
        for track in tracks:
            if track.track_id in self._by_id:
                duplicates += 1
                continue
            self._by_id[track.track_id] = track
            self._tracks.append(track)
        if duplicates:
            logger.warning(f"Dropped {duplicates} catalog entries with a duplicate track id")

    @classmethod
    def load(cls, catalog_path: str, check_files: bool = True) -> "TrackCatalog":
        """
        Load the catalog JSON.

        Args:
            catalog_path: Path to the catalog document
            check_files: Drop entries whose backing file no longer exists

        Returns:
            TrackCatalog (empty if the document is missing)
        """
        path = Path(catalog_path)
        if not path.exists():
            logger.warning(f"Catalog not found: {path}. Starting with an empty library.")
            return cls([])

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        records = data.get("tracks", []) if isinstance(data, dict) else data
        if not isinstance(records, list):
            raise ValueError(f"Catalog {path} must contain a list of tracks")

        tracks = []
        skipped = 0
        missing = 0
        for idx, record in enumerate(records):
            if not isinstance(record, dict):
                skipped += 1
                continue
            try:
                track = track_from_record(record)
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping catalog entry {idx}: {e}")
                skipped += 1
                continue

            if check_files and not Path(track.file_path).exists():
                logger.debug(f"Backing file missing, dropping: {track.file_path}")
                missing += 1
                continue
            tracks.append(track)

        logger.info(
            f"Loaded catalog {path}: {len(tracks)} tracks "
            f"({missing} missing files, {skipped} malformed)"
        )
        return cls(tracks)

    def tracks(self) -> List[Track]:
        """All tracks in catalog order."""
        return list(self._tracks)

    def mixable(self) -> List[Track]:
        """Tracks with both BPM and Camelot key."""
        return [t for t in self._tracks if t.is_mixable]

    def get(self, track_id: str) -> Optional[Track]:
        return self._by_id.get(track_id)

    def __len__(self) -> int:
        return len(self._tracks)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get catalog statistics.

        Returns:
            Dictionary with counts and BPM stats.
        """
        bpms = [t.bpm for t in self._tracks if t.bpm is not None]
        return {
            "total_tracks": len(self._tracks),
            "mixable_tracks": sum(1 for t in self._tracks if t.is_mixable),
            "tracks_with_genre": sum(1 for t in self._tracks if t.genre),
            "tracks_with_mix_points": sum(
                1 for t in self._tracks if t.mix_in_point is not None or t.mix_out_point is not None
            ),
            "bpm_stats": {
                "min_bpm": min(bpms) if bpms else None,
                "max_bpm": max(bpms) if bpms else None,
                "avg_bpm": sum(bpms) / len(bpms) if bpms else None,
            },
        }
