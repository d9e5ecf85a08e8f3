"""
Mix Generation Module: turn a request into an ordered track list.

- Constraint extraction (language model, keyword fallback)
- Scored greedy selection with artist cap
- Greedy harmonic ordering along an energy curve
- Playlist matching against the local catalog
"""

__all__ = ["camelot", "energy", "prompt", "selector", "ordering", "matcher"]
