"""
Constraint extraction: free-text mix request -> structured Constraints.

Two interchangeable strategies sit behind ``ConstraintStrategy``:

- ``LLMConstraintStrategy`` asks a language model for a JSON object.
- ``KeywordConstraintStrategy`` is a deterministic regex/keyword parser.

``ConstraintParser`` tries them in order and always ends with the keyword
parser, so a failing upstream never surfaces to the caller. Whatever a
strategy proposes, the track count comes from the prompt text only when the
text says "<N> tracks" explicitly.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from ..errors import UpstreamParseFailure
from .energy import ENERGY_CURVES

logger = logging.getLogger(__name__)

_TRACK_COUNT_RE = re.compile(r"(\d+)\s*tracks?", re.IGNORECASE)
_BPM_RE = re.compile(r"(\d{2,3})\s*bpm", re.IGNORECASE)
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

# Order matters only for readability; every hit is collected
GENRE_VOCABULARY = [
    "tech house", "deep house", "house", "techno", "trance",
    "drum and bass", "dnb", "hip hop", "hip-hop", "breaks",
    "disco", "nu-disco", "nu disco", "nudisco", "funk", "soul", "r&b",
    "ambient", "downtempo", "chill", "lounge", "indie dance", "electronica",
]


@dataclass
class Constraints:
    """Structured constraints for one mix request."""

    track_count: int
    bpm_range: Tuple[float, float] = (115.0, 135.0)
    energy_range: Tuple[int, int] = (3, 8)
    genres: List[str] = field(default_factory=list)
    moods: List[str] = field(default_factory=list)
    energy_curve: str = "steady"

    def __post_init__(self):
        if self.track_count < 1:
            raise ValueError(f"track_count must be positive, got {self.track_count}")
        if self.energy_curve not in ENERGY_CURVES:
            raise ValueError(f"Unknown energy curve: {self.energy_curve}")

    def to_dict(self) -> dict:
        return {
            "trackCount": self.track_count,
            "bpmRange": {"min": self.bpm_range[0], "max": self.bpm_range[1]},
            "energyRange": {"min": self.energy_range[0], "max": self.energy_range[1]},
            "genres": list(self.genres),
            "moods": list(self.moods),
            "energyCurve": self.energy_curve,
        }


def has_explicit_track_count(prompt: str) -> bool:
    """True if the prompt states a number of tracks ("10 tracks", "1 track")."""
    return _TRACK_COUNT_RE.search(prompt) is not None


def explicit_track_count(prompt: str) -> Optional[int]:
    """The explicitly requested number of tracks, or None."""
    match = _TRACK_COUNT_RE.search(prompt)
    if not match:
        return None
    count = int(match.group(1))
    return count if count > 0 else None


class ConstraintStrategy:
    """Interface for prompt parsing strategies."""

    name = "base"

    def parse(self, prompt: str, defaults: Constraints) -> Constraints:
        """
        Extract constraints from ``prompt``, starting from ``defaults``.

        Raises:
            UpstreamParseFailure: If this strategy cannot produce constraints.
        """
        raise NotImplementedError


class KeywordConstraintStrategy(ConstraintStrategy):
    """Deterministic regex/keyword parser. Never fails."""

    name = "keyword"

    def parse(self, prompt: str, defaults: Constraints) -> Constraints:
        lower = prompt.lower()
        constraints = replace(defaults, genres=list(defaults.genres), moods=list(defaults.moods))

        count = explicit_track_count(prompt)
        if count is not None:
            constraints.track_count = count

        bpm_match = _BPM_RE.search(lower)
        if bpm_match:
            bpm = float(bpm_match.group(1))
            constraints.bpm_range = (bpm - 5, bpm + 5)

        if "build" in lower or "warm up" in lower or "warmup" in lower:
            constraints.energy_curve = "build"
        elif "peak" in lower or "high energy" in lower:
            constraints.energy_curve = "peak"
        elif "chill" in lower or "downtempo" in lower or "ambient" in lower:
            constraints.energy_curve = "chill"
        else:
            constraints.energy_curve = "steady"

        for genre in GENRE_VOCABULARY:
            if genre in lower and genre not in constraints.genres:
                constraints.genres.append(genre)

        return constraints


class _RangeModel(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    min: float
    max: float


class _LLMConstraintsModel(BaseModel):
    """Shape of the JSON object the language model must return."""

    trackCount: Optional[int] = None
    bpmRange: Optional[_RangeModel] = None
    energyRange: Optional[_RangeModel] = None
    genres: List[str] = []
    moods: List[str] = []
    energyCurve: Optional[str] = None


LLM_PROMPT_TEMPLATE = """Parse this DJ mix request and extract constraints as JSON:
"{prompt}"

Return ONLY valid JSON with these fields:
- trackCount (number, ONLY include if explicitly mentioned in prompt, otherwise omit)
- bpmRange: {{ "min", "max" }} (reasonable DJ range)
- energyRange: {{ "min", "max" }} (1-10 scale)
- genres: string[] (detected genres)
- moods: string[] (mood descriptors)
- energyCurve: "build" | "peak" | "chill" | "steady"

IMPORTANT: Only include trackCount field if the user explicitly specified a number of tracks. If not mentioned, omit this field entirely."""


class LLMConstraintStrategy(ConstraintStrategy):
    """Ask a language model (Anthropic Messages API) for constraints."""

    name = "llm"

    def __init__(self, client, model: str, max_tokens: int = 500):
        """
        Args:
            client: ``anthropic.Anthropic`` instance (timeout configured on the client)
            model: Model name
            max_tokens: Response budget
        """
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    def parse(self, prompt: str, defaults: Constraints) -> Constraints:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": LLM_PROMPT_TEMPLATE.format(prompt=prompt)}],
            )
            text = "".join(
                block.text for block in response.content if getattr(block, "type", None) == "text"
            )
        except Exception as e:
            raise UpstreamParseFailure(f"Language model request failed: {e}") from e

        return self.from_text(text, defaults)

    @staticmethod
    def from_text(text: str, defaults: Constraints) -> Constraints:
        """
        Convert a model reply into Constraints.

        Raises:
            UpstreamParseFailure: If the reply holds no valid JSON object.
        """
        match = _JSON_OBJECT_RE.search(text or "")
        if not match:
            raise UpstreamParseFailure("No JSON object in language model reply")

        try:
            parsed = _LLMConstraintsModel.model_validate(json.loads(match.group(0)))
        except (json.JSONDecodeError, ValidationError) as e:
            raise UpstreamParseFailure(f"Malformed language model reply: {e}") from e

        constraints = replace(defaults, genres=list(defaults.genres), moods=list(defaults.moods))

        if parsed.trackCount is not None and parsed.trackCount > 0:
            constraints.track_count = parsed.trackCount

        if parsed.bpmRange is not None:
            low, high = sorted((parsed.bpmRange.min, parsed.bpmRange.max))
            if low > 0:
                constraints.bpm_range = (low, high)

        if parsed.energyRange is not None:
            low, high = sorted((parsed.energyRange.min, parsed.energyRange.max))
            constraints.energy_range = (
                int(max(1, min(10, round(low)))),
                int(max(1, min(10, round(high)))),
            )

        constraints.genres = [g.strip().lower() for g in parsed.genres if g and g.strip()]
        constraints.moods = [m.strip().lower() for m in parsed.moods if m and m.strip()]

        curve = (parsed.energyCurve or "steady").lower()
        constraints.energy_curve = curve if curve in ENERGY_CURVES else "steady"

        return constraints


class ConstraintParser:
    """Runs strategies in order and enforces the explicit track count rule."""

    def __init__(self, strategies: Optional[List[ConstraintStrategy]] = None, defaults: Optional[dict] = None):
        """
        Args:
            strategies: Strategies to try first; the keyword parser is always appended
            defaults: Config ``mix`` section (default BPM/energy ranges)
        """
        self.strategies = [s for s in (strategies or []) if not isinstance(s, KeywordConstraintStrategy)]
        self.fallback = KeywordConstraintStrategy()
        self.defaults = defaults or {}

    @classmethod
    def from_config(cls, config) -> "ConstraintParser":
        """Build a parser; the LLM strategy is used only when an API key is set."""
        strategies: List[ConstraintStrategy] = []
        llm = config["llm"]
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if llm.get("enabled", True) and api_key:
            import anthropic

            client = anthropic.Anthropic(api_key=api_key, timeout=float(llm["timeout_seconds"]))
            strategies.append(LLMConstraintStrategy(client, llm["model"], llm["max_tokens"]))
            logger.info(f"Constraint parser: LLM strategy enabled ({llm['model']})")
        else:
            logger.info("Constraint parser: keyword strategy only (no ANTHROPIC_API_KEY)")

        return cls(strategies, defaults=config["mix"])

    def _base_constraints(self, track_count: int) -> Constraints:
        d = self.defaults
        return Constraints(
            track_count=track_count,
            bpm_range=(float(d.get("default_bpm_min", 115)), float(d.get("default_bpm_max", 135))),
            energy_range=(int(d.get("default_energy_min", 3)), int(d.get("default_energy_max", 8))),
        )

    def parse(self, prompt: str, default_track_count: int) -> Constraints:
        """
        Parse a prompt into constraints.

        Args:
            prompt: Free-text mix request
            default_track_count: Caller-supplied track count

        Returns:
            Constraints (never raises for upstream failures)
        """
        defaults = self._base_constraints(default_track_count)
        explicit = explicit_track_count(prompt)

        constraints = None
        for strategy in self.strategies:
            try:
                constraints = strategy.parse(prompt, defaults)
                logger.debug(f"Constraints parsed by {strategy.name} strategy")
                break
            except UpstreamParseFailure as e:
                logger.warning(f"{strategy.name} strategy failed, falling back: {e}")
            except Exception as e:
                logger.warning(f"{strategy.name} strategy crashed, falling back: {e}", exc_info=True)

        if constraints is None:
            constraints = self.fallback.parse(prompt, defaults)

        if explicit is not None:
            constraints.track_count = explicit
            logger.info(f"Using explicit track count from prompt: {explicit}")
        else:
            if constraints.track_count != default_track_count:
                logger.warning(
                    f"Ignoring inferred track count ({constraints.track_count}), "
                    f"using caller's ({default_track_count})"
                )
            constraints.track_count = default_track_count

        return constraints
