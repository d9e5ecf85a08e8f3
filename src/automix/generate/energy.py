"""
Energy curves: target intensity across the mix.

Energies here are on a 0.0-1.0 scale (catalog energy 1-10 divided by 10).
"""

import logging
from typing import List, Optional

from ..catalog import Track

logger = logging.getLogger(__name__)

ENERGY_CURVES = ("build", "peak", "chill", "steady")


def estimate_track_energy(track: Track) -> float:
    """
    Estimate energy level of a track (0.0-1.0).

    1. Primary: catalog energy rating
    2. Fallback: BPM as a rough proxy (80-180 BPM mapped to 0.0-1.0)
    3. Final fallback: neutral 0.5
    """
    energy = track.normalized_energy
    if energy is not None:
        return energy

    if track.bpm is not None:
        normalized = (float(track.bpm) - 80.0) / 100.0
        return max(0.0, min(1.0, normalized))

    logger.debug(f"No energy data for track {track.track_id}; using neutral 0.5")
    return 0.5


def compute_energy_distance(energy1: float, energy2: float) -> float:
    """Energy distance between two tracks (0.0=same, 1.0=opposite)."""
    return abs(energy1 - energy2)


def target_energy(position: int, total: int, curve: str, baseline: Optional[float] = None) -> float:
    """
    Ideal energy for a position in the mix.

    - build: rises linearly 0.3 → 0.9
    - peak: opens at 0.75, holds 0.85-0.9 through the body of the set
    - chill: falls linearly 0.8 → 0.3
    - steady: flat at ``baseline`` (mean energy of the set), 0.6 if unknown

    Args:
        position: 0-based slot in the mix
        total: Number of tracks in the mix
        curve: One of ENERGY_CURVES
        baseline: Mean energy used by the steady curve

    Returns:
        Target energy level (0.0-1.0)
    """
    progress = position / (total - 1) if total > 1 else 0.0

    if curve == "build":
        return 0.3 + progress * 0.6
    if curve == "peak":
        if progress < 0.2:
            return 0.75 + (progress / 0.2) * 0.1
        return 0.85 + min(progress, 0.8) * 0.0625
    if curve == "chill":
        return 0.8 - progress * 0.5
    return baseline if baseline is not None else 0.6


def mean_energy(tracks: List[Track]) -> float:
    """Mean estimated energy of a set of tracks (0.5 when empty)."""
    if not tracks:
        return 0.5
    return sum(estimate_track_energy(t) for t in tracks) / len(tracks)


def energy_trend(tracks: List[Track]) -> float:
    """
    Mean energy of the second half minus mean energy of the first half.

    Positive for rising sets, negative for falling ones.
    """
    if len(tracks) < 2:
        return 0.0
    half = len(tracks) // 2
    first = tracks[:half]
    second = tracks[len(tracks) - half:]
    return mean_energy(second) - mean_energy(first)
