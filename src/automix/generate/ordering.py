"""
Harmonic ordering: arrange selected tracks for smooth transitions.

Greedy nearest-neighbour walk over the selected set. Each step picks the
remaining track with the best combination of transition quality and
closeness to the energy curve target for that slot.
"""

import logging
from typing import List

from ..catalog import Track
from .camelot import is_harmonic, transition_score
from .energy import compute_energy_distance, estimate_track_energy, mean_energy, target_energy

logger = logging.getLogger(__name__)

# Weight of energy-curve fit relative to the 0-100 transition score
ENERGY_FIT_WEIGHT = 30.0


def harmonic_percentage(tracks: List[Track]) -> int:
    """
    Percentage of consecutive pairs with compatible keys.

    Returns:
        Rounded percentage 0-100; 100 for fewer than two tracks
    """
    if len(tracks) < 2:
        return 100
    pairs = len(tracks) - 1
    good = sum(1 for a, b in zip(tracks, tracks[1:]) if is_harmonic(a.camelot_key, b.camelot_key))
    return round(100 * good / pairs)


class TrackOrderOptimizer:
    """Orders a track set along an energy curve with harmonic transitions."""

    def optimize(self, tracks: List[Track], curve: str = "steady") -> List[Track]:
        """
        Reorder tracks.

        Args:
            tracks: Selected tracks (any order)
            curve: Energy curve name

        Returns:
            Permutation of ``tracks``
        """
        if len(tracks) <= 1:
            return list(tracks)

        total = len(tracks)
        baseline = mean_energy(tracks)
        energies = {id(t): estimate_track_energy(t) for t in tracks}
        remaining = list(tracks)

        first_target = target_energy(0, total, curve, baseline)
        current = min(remaining, key=lambda t: compute_energy_distance(energies[id(t)], first_target))
        remaining.remove(current)
        ordered = [current]

        for position in range(1, total):
            target = target_energy(position, total, curve, baseline)
            best = None
            best_score = float("-inf")
            for candidate in remaining:
                energy = energies[id(candidate)]
                score = transition_score(
                    current.camelot_key, current.bpm, energies[id(current)],
                    candidate.camelot_key, candidate.bpm, energy,
                )
                score += ENERGY_FIT_WEIGHT * (1 - compute_energy_distance(energy, target))
                if score > best_score:
                    best = candidate
                    best_score = score

            remaining.remove(best)
            ordered.append(best)
            current = best

        logger.info(
            f"Ordered {total} tracks ({curve} curve, "
            f"{harmonic_percentage(ordered)}% harmonic transitions)"
        )
        return ordered
