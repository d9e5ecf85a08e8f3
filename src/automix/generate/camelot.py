"""
Camelot wheel helpers: key normalization, compatibility and transition scoring.

Keys are numbered 1-12 around the wheel with an A (minor) or B (major) suffix.
Compatible moves are the same key, one step around the wheel with the same
letter, or the same number with the opposite letter (relative major/minor).
"""

import logging
import re
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Mapping from standard key notation to Camelot notation
STANDARD_TO_CAMELOT_MAJOR = {
    "C": "8B",
    "C#": "3B",
    "Db": "3B",
    "D": "10B",
    "D#": "5B",
    "Eb": "5B",
    "E": "12B",
    "F": "7B",
    "F#": "2B",
    "Gb": "2B",
    "G": "9B",
    "G#": "4B",
    "Ab": "4B",
    "A": "11B",
    "A#": "6B",
    "Bb": "6B",
    "B": "1B",
}

STANDARD_TO_CAMELOT_MINOR = {
    "C": "5A",
    "C#": "12A",
    "Db": "12A",
    "D": "7A",
    "D#": "2A",
    "Eb": "2A",
    "E": "9A",
    "F": "4A",
    "F#": "11A",
    "Gb": "11A",
    "G": "6A",
    "G#": "1A",
    "Ab": "1A",
    "A": "8A",
    "A#": "3A",
    "Bb": "3A",
    "B": "10A",
}

# Score at or above which a pair of keys counts as a harmonic mix
HARMONIC_THRESHOLD = 0.85

_CAMELOT_RE = re.compile(r"^0?(1[0-2]|[1-9])([AaBb])$")
_STANDARD_RE = re.compile(r"^([A-Ga-g])([#b]?)\s*(m|min|minor|maj|major)?$")


def parse_camelot(key: Optional[str]) -> Optional[Tuple[int, str]]:
    """
    Split a Camelot key into (number, letter).

    Args:
        key: Camelot key such as "8A" or "12B"

    Returns:
        Tuple (number, "A"|"B"), or None if the key is missing or malformed
    """
    if not key:
        return None
    match = _CAMELOT_RE.match(key.strip())
    if not match:
        return None
    return int(match.group(1)), match.group(2).upper()


def normalize_key(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a key string to Camelot notation.

    Accepts Camelot ("8a", "08A") and standard notation ("Am", "C major",
    "F#m", "Bb minor"). Unknown keys return None.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text or text.lower() == "unknown":
        return None

    parsed = parse_camelot(text)
    if parsed:
        return f"{parsed[0]}{parsed[1]}"

    match = _STANDARD_RE.match(text)
    if not match:
        logger.debug(f"Unrecognized key notation: {raw!r}")
        return None

    note = match.group(1).upper() + match.group(2)
    mode = (match.group(3) or "").lower()
    table = STANDARD_TO_CAMELOT_MINOR if mode in ("m", "min", "minor") else STANDARD_TO_CAMELOT_MAJOR
    return table.get(note)


def wheel_distance(num1: int, num2: int) -> int:
    """Shortest number of steps between two positions on the 12-step wheel."""
    diff = abs(num1 - num2) % 12
    return min(diff, 12 - diff)


def key_compatibility(key1: Optional[str], key2: Optional[str]) -> float:
    """
    Score harmonic compatibility of two Camelot keys (0.0-1.0).

    - Same key: 1.0
    - Adjacent on the wheel (same letter) or relative major/minor: 0.85
    - Two steps, or one step with a letter change: 0.5
    - Further away: decreasing with wheel distance
    - Unknown/malformed key on either side: neutral 0.5
    """
    a = parse_camelot(key1)
    b = parse_camelot(key2)
    if a is None or b is None:
        return 0.5

    num1, mode1 = a
    num2, mode2 = b
    distance = wheel_distance(num1, num2)

    if mode1 == mode2:
        if distance == 0:
            return 1.0
        if distance == 1:
            return HARMONIC_THRESHOLD
        if distance == 2:
            return 0.5
    else:
        if distance == 0:
            return HARMONIC_THRESHOLD
        if distance == 1:
            return 0.5

    # 3+ steps: 0.35 down to 0.05 at the opposite side of the wheel
    return max(0.05, 0.35 - (distance - 3) * 0.1)


def is_harmonic(key1: Optional[str], key2: Optional[str]) -> bool:
    """True when two known keys are identical, adjacent or relative."""
    if parse_camelot(key1) is None or parse_camelot(key2) is None:
        return False
    return key_compatibility(key1, key2) >= HARMONIC_THRESHOLD


def bpm_compatible(bpm1: Optional[float], bpm2: Optional[float], tolerance: float = 0.06) -> bool:
    """
    Check if two BPMs can be beatmatched (within 6%, or half/double time).

    Missing BPM on either side is treated as compatible.
    """
    if not bpm1 or not bpm2:
        return True

    ratio = max(bpm1, bpm2) / min(bpm1, bpm2)
    if ratio <= 1.0 + tolerance:
        return True
    return abs(ratio - 2.0) <= 2 * tolerance


def transition_score(
    key1: Optional[str],
    bpm1: Optional[float],
    energy1: Optional[float],
    key2: Optional[str],
    bpm2: Optional[float],
    energy2: Optional[float],
) -> float:
    """
    Score a transition between two tracks (0-100).

    Key compatibility contributes up to 40 points, BPM up to 40 and
    energy continuity up to 20. Energies are on a 0.0-1.0 scale.
    """
    score = 0.0

    compat = key_compatibility(key1, key2)
    if compat >= 1.0:
        score += 40
    elif compat >= HARMONIC_THRESHOLD:
        score += 30
    else:
        score += 30 * compat

    if bpm_compatible(bpm1, bpm2):
        if bpm1 and bpm2:
            diff = abs(bpm1 - bpm2)
            if diff < 3:
                score += 40
            elif diff < 6:
                score += 35
            else:
                score += 25
        else:
            score += 25

    if energy1 is not None and energy2 is not None:
        diff = abs(energy1 - energy2)
        if diff < 0.1:
            score += 20
        elif diff < 0.2:
            score += 15
        elif diff < 0.3:
            score += 10

    return score
