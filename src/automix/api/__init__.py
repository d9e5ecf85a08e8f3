"""HTTP routes for mix generation, status polling and downloads."""

__all__ = ["mixes"]
