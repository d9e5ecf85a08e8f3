"""
ffmpeg Render Engine.

Builds a per-track timing plan and executes one ffmpeg process that trims
every input and chains them with acrossfade filters.

- Progress read from ``-progress pipe:1``
- Bounded by a wall-clock timeout and an optional cancellation token
- Output validated, tagged and measured with mutagen
"""

import logging
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import mutagen
from mutagen.easyid3 import EasyID3
from mutagen.flac import FLAC

from ..catalog import Track
from ..errors import RenderFailure

logger = logging.getLogger(__name__)

# acrossfade rejects durations of 60 s and more
MAX_CROSSFADE_SECONDS = 55.0
MIN_CROSSFADE_SECONDS = 1.0
# Share of the shorter segment a crossfade may occupy
MAX_CROSSFADE_SHARE = 0.4
# Planning length for tracks without a known duration
FALLBACK_TRACK_SECONDS = 180.0

MP3_BITRATES = {"high": 320, "medium": 192, "low": 128}
OUTPUT_FORMATS = ("mp3", "flac", "wav")

ProgressCallback = Callable[[float, str], None]


@dataclass
class PlannedSegment:
    """Portion of one input file that ends up in the mix."""

    track: Track
    start: float
    end: float
    crossfade_in: float = 0.0
    crossfade_out: float = 0.0

    @property
    def length(self) -> float:
        return max(0.0, self.end - self.start)


@dataclass
class RenderPlan:
    segments: List[PlannedSegment] = field(default_factory=list)

    @property
    def transition_count(self) -> int:
        return max(0, len(self.segments) - 1)

    @property
    def total_duration(self) -> float:
        """Planned mix length: segment lengths minus overlaps."""
        total = sum(s.length for s in self.segments)
        overlap = sum(s.crossfade_out for s in self.segments)
        return max(0.0, total - overlap)


@dataclass
class RenderResult:
    output_path: str
    duration_seconds: float
    transition_count: int
    plan: RenderPlan


def bars_to_seconds(bars: float, bpm: float) -> float:
    """Length of ``bars`` 4/4 bars at ``bpm``, capped for acrossfade."""
    if not bars or not bpm:
        return 0.0
    return min(bars * 4 * 60.0 / bpm, MAX_CROSSFADE_SECONDS)


def _track_duration(track: Track) -> float:
    return track.duration_seconds if track.duration_seconds > 0 else FALLBACK_TRACK_SECONDS


def _raw_crossfade(outgoing: Track, incoming: Track, default_seconds: float) -> float:
    """Crossfade before capping: bar hint of the outgoing (else incoming) track."""
    bars = outgoing.ideal_crossfade_bars or incoming.ideal_crossfade_bars
    bpms = [b for b in (outgoing.bpm, incoming.bpm) if b]
    if bars and bpms:
        seconds = bars_to_seconds(bars, sum(bpms) / len(bpms))
        if seconds > 0:
            return seconds
    return float(default_seconds)


def plan_mix(tracks: List[Track], default_crossfade: float = 8.0) -> RenderPlan:
    """
    Build the timing plan for an ordered track list.

    - Incoming tracks start at their mix-in hint, else at 0
    - Outgoing tracks end at mix-out hint + crossfade, else at the file end
    - Crossfades are capped to 40% of the shorter neighbouring segment, min 1 s

    Args:
        tracks: Ordered tracks
        default_crossfade: Seconds used when no bar hint is available

    Returns:
        RenderPlan with one PlannedSegment per track
    """
    if not tracks:
        return RenderPlan()

    durations = [_track_duration(t) for t in tracks]
    starts = []
    for idx, track in enumerate(tracks):
        start = 0.0
        if idx > 0 and track.mix_in_point is not None and track.mix_in_point < durations[idx]:
            start = track.mix_in_point
        starts.append(start)

    crossfades = [
        _raw_crossfade(tracks[i], tracks[i + 1], default_crossfade)
        for i in range(len(tracks) - 1)
    ]

    def segment_end(idx: int, crossfade: float) -> float:
        track = tracks[idx]
        mix_out = track.mix_out_point
        if idx < len(tracks) - 1 and mix_out is not None and mix_out > starts[idx]:
            return min(durations[idx], mix_out + crossfade)
        return durations[idx]

    # Cap against segment lengths computed with the uncapped crossfade
    ends = [segment_end(i, crossfades[i] if i < len(crossfades) else 0.0) for i in range(len(tracks))]
    for i, raw in enumerate(crossfades):
        shorter = min(ends[i] - starts[i], ends[i + 1] - starts[i + 1])
        capped = min(raw, shorter * MAX_CROSSFADE_SHARE)
        crossfades[i] = max(MIN_CROSSFADE_SECONDS, capped)
        ends[i] = segment_end(i, crossfades[i])

    segments = []
    for idx, track in enumerate(tracks):
        segments.append(PlannedSegment(
            track=track,
            start=round(starts[idx], 3),
            end=round(ends[idx], 3),
            crossfade_in=round(crossfades[idx - 1], 3) if idx > 0 else 0.0,
            crossfade_out=round(crossfades[idx], 3) if idx < len(crossfades) else 0.0,
        ))
    return RenderPlan(segments)


def build_filter_graph(plan: RenderPlan) -> str:
    """
    Build the ffmpeg filter_complex graph for a plan.

    Every input is trimmed to its segment, then the trimmed streams are
    chained pairwise with acrossfade. The final stream is labelled [out].
    """
    parts = []
    for idx, segment in enumerate(plan.segments):
        parts.append(
            f"[{idx}:a]atrim=start={segment.start:.3f}:end={segment.end:.3f},"
            f"asetpts=PTS-STARTPTS[a{idx}]"
        )

    if len(plan.segments) == 1:
        parts.append("[a0]anull[out]")
        return ";".join(parts)

    current = "a0"
    for idx in range(1, len(plan.segments)):
        label = "out" if idx == len(plan.segments) - 1 else f"x{idx}"
        duration = plan.segments[idx].crossfade_in
        parts.append(f"[{current}][a{idx}]acrossfade=d={duration:.3f}:c1=tri:c2=tri[{label}]")
        current = label
    return ";".join(parts)


def encoder_args(output_format: str, quality: str) -> List[str]:
    """ffmpeg codec arguments for a format/quality pair."""
    if output_format == "flac":
        return ["-c:a", "flac"]
    if output_format == "wav":
        return ["-c:a", "pcm_s16le"]
    if output_format != "mp3":
        logger.warning(f"Unknown output format: {output_format}, defaulting to MP3")
    bitrate = MP3_BITRATES.get(quality, MP3_BITRATES["high"])
    return ["-c:a", "libmp3lame", "-b:a", f"{bitrate}k"]


def build_ffmpeg_command(
    plan: RenderPlan,
    output_path: str,
    output_format: str = "mp3",
    quality: str = "high",
    binary: str = "ffmpeg",
) -> List[str]:
    """Full ffmpeg argv for rendering ``plan`` into ``output_path``."""
    cmd = [binary, "-hide_banner", "-nostdin", "-y"]
    for segment in plan.segments:
        cmd.extend(["-i", segment.track.file_path])
    cmd.extend(["-filter_complex", build_filter_graph(plan), "-map", "[out]"])
    cmd.extend(encoder_args(output_format, quality))
    cmd.extend(["-progress", "pipe:1", "-nostats", output_path])
    return cmd


def parse_progress_seconds(line: str) -> Optional[float]:
    """
    Rendered position from one ``-progress`` line, in seconds.

    ffmpeg reports ``out_time_us`` and (despite the name, also in
    microseconds) ``out_time_ms``.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        micros = int(value)
    except ValueError:
        return None
    return max(0.0, micros / 1_000_000)


def _validate_output_file(output_path: str, min_size_bytes: int = 1024) -> bool:
    """
    Validate rendered output file.

    Args:
        output_path: Path to output file
        min_size_bytes: Smallest acceptable size

    Returns:
        True if valid, False otherwise
    """
    output_file = Path(output_path)

    if not output_file.exists():
        logger.error(f"Output file does not exist: {output_path}")
        return False

    file_size = output_file.stat().st_size
    if file_size < min_size_bytes:
        logger.error(f"Output file too small: {file_size} bytes (minimum {min_size_bytes})")
        return False

    logger.debug(f"Output validation passed: {output_path} ({file_size} bytes)")
    return True


def _write_mix_metadata(output_path: str, mix_name: str, timestamp: str) -> bool:
    """
    Write title/album/genre/date tags to the rendered mix.

    Args:
        output_path: Path to output file
        mix_name: Mix title
        timestamp: Generation timestamp (ISO format)

    Returns:
        True if tags were written, False otherwise
    """
    year = timestamp[:4]
    album_name = f"Automix {timestamp[:10]}"
    genre = "DJ Mix"

    lower = output_path.lower()
    try:
        if lower.endswith(".mp3"):
            try:
                audio = EasyID3(output_path)
            except mutagen.MutagenError:
                # Fresh encodes may carry no ID3 header yet
                audio = EasyID3()
            audio["title"] = mix_name
            audio["album"] = album_name
            audio["genre"] = genre
            audio["date"] = year
            audio.save(output_path)
            logger.debug(f"Added ID3 metadata to {output_path}")
        elif lower.endswith(".flac"):
            audio = FLAC(output_path)
            audio["title"] = mix_name
            audio["album"] = album_name
            audio["genre"] = genre
            audio["date"] = year
            audio.save()
            logger.debug(f"Added VORBIS metadata to {output_path}")
        else:
            logger.debug(f"Unsupported format for metadata: {output_path}")
            return False
    except Exception as e:
        logger.warning(f"Failed to write tags to {output_path}: {e}")
        return False

    return True


def _read_duration(output_path: str) -> Optional[float]:
    """Actual duration of the rendered file via mutagen, or None."""
    try:
        audio = mutagen.File(output_path)
    except Exception as e:
        logger.warning(f"Could not read duration of {output_path}: {e}")
        return None
    if audio is None or getattr(audio, "info", None) is None:
        return None
    length = getattr(audio.info, "length", None)
    return float(length) if length else None


def _cleanup_partial_output(output_path: str) -> None:
    """
    Clean up partial or failed output files.

    Args:
        output_path: Path to output file to remove
    """
    try:
        output_file = Path(output_path)
        if output_file.exists():
            output_file.unlink()
            logger.debug(f"Cleaned up partial output: {output_path}")
    except OSError as e:
        logger.warning(f"Failed to clean up output file {output_path}: {e}")


def _tail(text: str, lines: int = 20) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class MixRenderer:
    """ffmpeg offline rendering orchestrator."""

    def __init__(self, config: dict):
        """
        Initialize render engine.

        Args:
            config: ``render`` section of the configuration
        """
        self.binary = config.get("binary", "ffmpeg")
        self.output_format = config.get("output_format", "mp3")
        self.quality = config.get("quality", "high")
        self.default_crossfade = float(config.get("crossfade_duration_seconds", 8))
        self.timeout_seconds = float(config.get("timeout_seconds", 1800))
        self.min_output_bytes = int(config.get("min_output_bytes", 1024))
        self.poll_interval = 0.2
        logger.info(f"MixRenderer initialized ({self.binary}, {self.output_format}/{self.quality})")

    @property
    def extension(self) -> str:
        return self.output_format if self.output_format in OUTPUT_FORMATS else "mp3"

    def render(
        self,
        tracks: List[Track],
        output_path: str,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        mix_name: Optional[str] = None,
    ) -> RenderResult:
        """
        Render ordered tracks to one file.

        Args:
            tracks: Ordered tracks
            output_path: Destination file
            progress_callback: Called with (percent 0-100, message)
            cancel_event: When set, the render is aborted
            mix_name: Title tag for the output

        Returns:
            RenderResult

        Raises:
            RenderFailure: On subprocess error, timeout, cancellation or bad output
        """
        if not tracks:
            raise RenderFailure("No tracks to render")
        if cancel_event is not None and cancel_event.is_set():
            raise RenderFailure("cancelled")

        plan = plan_mix(tracks, self.default_crossfade)
        cmd = build_ffmpeg_command(plan, output_path, self.output_format, self.quality, self.binary)
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        logger.info(
            f"Starting ffmpeg render: {output_path} ({len(tracks)} tracks, "
            f"~{plan.total_duration:.0f}s planned)"
        )
        logger.debug(f"ffmpeg filter graph: {build_filter_graph(plan)}")

        try:
            returncode, stderr_text, abort_reason = self._run(cmd, plan, progress_callback, cancel_event)
        except Exception:
            _cleanup_partial_output(output_path)
            raise

        if abort_reason is not None:
            logger.error(f"Render aborted: {abort_reason}")
            _cleanup_partial_output(output_path)
            raise RenderFailure(abort_reason, _tail(stderr_text))

        if returncode != 0:
            logger.error(f"ffmpeg failed with return code {returncode}")
            logger.error(f"ffmpeg stderr: {_tail(stderr_text) or '(no stderr)'}")
            _cleanup_partial_output(output_path)
            raise RenderFailure(f"ffmpeg exited with code {returncode}", _tail(stderr_text))

        if not _validate_output_file(output_path, self.min_output_bytes):
            _cleanup_partial_output(output_path)
            raise RenderFailure("Output file missing or empty", _tail(stderr_text))

        _write_mix_metadata(output_path, mix_name or Path(output_path).stem, datetime.now().isoformat())
        duration = _read_duration(output_path) or plan.total_duration

        if progress_callback:
            progress_callback(100.0, "Render complete")

        logger.info(f"✅ Render complete: {output_path} ({duration:.0f}s)")
        return RenderResult(
            output_path=output_path,
            duration_seconds=duration,
            transition_count=plan.transition_count,
            plan=plan,
        )

    def _run(self, cmd, plan, progress_callback, cancel_event):
        """
        Run ffmpeg, streaming progress and supervising timeout/cancellation.

        Returns:
            (return code, stderr text, abort reason or None)
        """
        total = plan.total_duration or 1.0
        abort = {"reason": None}
        done = threading.Event()

        with tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace") as stderr_file:
            try:
                proc = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    text=True,
                )
            except OSError as e:
                raise RenderFailure(f"Could not start {self.binary}", str(e)) from e

            deadline = time.monotonic() + self.timeout_seconds

            def supervise():
                while not done.wait(self.poll_interval):
                    if cancel_event is not None and cancel_event.is_set():
                        abort["reason"] = "cancelled"
                    elif time.monotonic() > deadline:
                        abort["reason"] = f"Render timeout after {self.timeout_seconds:.0f} seconds"
                    else:
                        continue
                    logger.warning(f"Killing ffmpeg: {abort['reason']}")
                    proc.kill()
                    return

            supervisor = threading.Thread(target=supervise, name="render-supervisor", daemon=True)
            supervisor.start()

            last_reported = -1
            try:
                for line in proc.stdout:
                    seconds = parse_progress_seconds(line)
                    if seconds is None or progress_callback is None:
                        continue
                    percent = min(100.0, seconds / total * 100)
                    if int(percent) > last_reported:
                        last_reported = int(percent)
                        progress_callback(percent, f"Rendering mix... {int(percent)}%")
                returncode = proc.wait()
            finally:
                done.set()
                supervisor.join()
                if proc.poll() is None:
                    proc.kill()
                    proc.wait()

            stderr_file.seek(0)
            stderr_text = stderr_file.read()

        return returncode, stderr_text, abort["reason"]
