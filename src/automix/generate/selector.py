"""
Track Selector: scored greedy selection of a mix subset.

- BPM pre-filter (relaxed when it leaves too few candidates)
- Genre filter with alias expansion (relaxed when it leaves too few matches)
- Additive score per track, computed during the greedy walk so the
  artist-variety term sees the picks made so far
- Per-artist cap; never returns fewer tracks than requested
"""

import logging
import math
import random
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..catalog import Track
from ..errors import InsufficientLibrary
from .prompt import Constraints

logger = logging.getLogger(__name__)

GENRE_ALIASES: Dict[str, List[str]] = {
    "house": [
        "deep house", "tech house", "progressive house", "funky house",
        "vocal house", "french house", "tribal house", "electro house",
    ],
    "disco": ["nu disco", "nu-disco", "nudisco", "funky", "funk", "boogie"],
    "techno": ["tech house", "minimal", "dub techno"],
    "electronic": ["electronica", "dance", "edm", "electro"],
    "indie": ["indie rock", "indie dance", "indie pop"],
    "hip-hop": ["hip hop", "rap", "hip hop/rap"],
    "rock": ["alt. rock", "alternative rock", "indie rock"],
}

# Requested spellings folded onto an alias key before expansion
_GENRE_FOLDS = {
    "nu disco": "disco",
    "nu-disco": "disco",
    "nudisco": "disco",
    "hip hop": "hip-hop",
}

# Energy assumed for tracks without a rating
DEFAULT_TRACK_ENERGY = 5


@dataclass
class SelectionConfig:
    """Tunables for one selection run."""

    max_tracks_per_artist: int
    bpm_prefilter_tolerance: float = 10.0
    jitter: float = 10.0

    @classmethod
    def for_count(cls, track_count: int, selection: Optional[dict] = None) -> "SelectionConfig":
        """
        Defaults for a mix of ``track_count`` tracks.

        Args:
            track_count: Requested mix length
            selection: Config ``selection`` section, if any
        """
        selection = selection or {}
        return cls(
            max_tracks_per_artist=max(2, math.ceil(track_count / 15)),
            bpm_prefilter_tolerance=float(selection.get("bpm_prefilter_tolerance", 10)),
            jitter=float(selection.get("jitter", 10)),
        )


def expand_genres(genres: List[str]) -> List[str]:
    """
    Expand requested genres with their aliases.

    Args:
        genres: Requested genres (any case)

    Returns:
        De-duplicated, lower-cased list including the requested genres
    """
    expanded: List[str] = []
    for raw in genres:
        genre = raw.strip().lower()
        if not genre:
            continue
        genre = _GENRE_FOLDS.get(genre, genre)
        for candidate in [genre] + GENRE_ALIASES.get(genre, []):
            if candidate not in expanded:
                expanded.append(candidate)
    return expanded


def genre_matches(track_genre: Optional[str], expanded: List[str]) -> bool:
    """True if the track genre contains an expanded genre or vice versa."""
    if not track_genre or not expanded:
        return False
    genre = track_genre.lower()
    return any(g in genre or genre in g for g in expanded)


def filter_by_genre(tracks: List[Track], genres: List[str]) -> List[Track]:
    """Tracks whose genre matches any requested genre (aliases included)."""
    expanded = expand_genres(genres)
    return [t for t in tracks if genre_matches(t.genre, expanded)]


class SelectionEngine:
    """Scored greedy selector over a catalog slice."""

    def __init__(self, config: Optional[SelectionConfig] = None, rng: Optional[random.Random] = None):
        """
        Args:
            config: SelectionConfig; derived from the track count when None
            rng: Random source for the jitter term (inject a seeded one in tests)
        """
        self.config = config
        self.rng = rng or random.Random()

    def score_track(
        self,
        track: Track,
        constraints: Constraints,
        expanded_genres: List[str],
        artist_counts: Dict[str, int],
        jitter: float,
    ) -> float:
        """
        Score one candidate given the picks made so far.

        Returns:
            Additive score (higher is better)
        """
        score = 30.0

        if track.bpm is not None and track.camelot_key is not None:
            score += 20

        if expanded_genres and genre_matches(track.genre, expanded_genres):
            score += 20

        bpm_min, bpm_max = constraints.bpm_range
        if track.bpm is not None:
            if bpm_min <= track.bpm <= bpm_max:
                score += 15
            else:
                score -= 50

        energy = track.energy if track.energy is not None else DEFAULT_TRACK_ENERGY
        energy_min, energy_max = constraints.energy_range
        if energy_min <= energy <= energy_max:
            score += 10
        else:
            score -= 30

        count = artist_counts.get(track.artist.lower(), 0)
        if count == 0:
            score += 15
        elif count >= 2:
            score -= 10 * count

        if jitter > 0:
            score += self.rng.random() * jitter

        return score

    def select(self, tracks: List[Track], constraints: Constraints) -> List[Track]:
        """
        Select ``constraints.track_count`` tracks.

        Args:
            tracks: Candidate library slice (usually the mixable tracks)
            constraints: Parsed constraints

        Returns:
            Selected tracks (unordered; ordering is a separate stage)

        Raises:
            InsufficientLibrary: If fewer tracks than requested can be accepted
        """
        count = constraints.track_count
        config = self.config or SelectionConfig.for_count(count)

        candidates: List[Track] = []
        seen = set()
        for track in tracks:
            if track.track_id not in seen:
                seen.add(track.track_id)
                candidates.append(track)

        if len(candidates) < count:
            raise InsufficientLibrary(len(candidates), count, "mixable tracks")

        tolerance = config.bpm_prefilter_tolerance
        bpm_min, bpm_max = constraints.bpm_range
        in_window = [
            t for t in candidates
            if t.bpm is not None and bpm_min - tolerance <= t.bpm <= bpm_max + tolerance
        ]
        if len(in_window) >= count * 2:
            candidates = in_window
        else:
            logger.warning(
                f"BPM pre-filter left {len(in_window)} tracks (< {count * 2}); using full pool"
            )

        expanded = expand_genres(constraints.genres)
        if expanded:
            genre_pool = [t for t in candidates if genre_matches(t.genre, expanded)]
            if len(genre_pool) >= count:
                candidates = genre_pool
                logger.info(f"Genre filter {constraints.genres}: {len(candidates)} candidates")
            else:
                logger.warning(
                    f"Only {len(genre_pool)} tracks match genres {constraints.genres}; ignoring genre filter"
                )

        selected: List[Track] = []
        artist_counts: Dict[str, int] = {}
        remaining = candidates

        while len(selected) < count and remaining:
            scored = sorted(
                ((self.score_track(t, constraints, expanded, artist_counts, config.jitter), idx, t)
                 for idx, t in enumerate(remaining)),
                key=lambda item: (-item[0], item[1]),
            )

            picked = None
            for _score, _idx, track in scored:
                if artist_counts.get(track.artist.lower(), 0) >= config.max_tracks_per_artist:
                    continue
                picked = track
                break

            if picked is None:
                break

            selected.append(picked)
            key = picked.artist.lower()
            artist_counts[key] = artist_counts.get(key, 0) + 1
            remaining = [t for t in remaining if t.track_id != picked.track_id]
            logger.debug(f"Selected [{len(selected)}/{count}] {picked.artist} - {picked.title}")

        if len(selected) < count:
            raise InsufficientLibrary(
                len(selected), count,
                f"max {config.max_tracks_per_artist} per artist"
            )

        logger.info(f"✅ Selected {len(selected)} tracks ({len(artist_counts)} artists)")
        return selected
