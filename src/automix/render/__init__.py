"""
Render Engine Module: offline crossfade mixing via ffmpeg.

- One atrim per input, chained acrossfade filters
- Progress parsed from ffmpeg's -progress output
- Timeout and cancellation kill the subprocess
"""

__all__ = ["render"]
