"""
Pipeline worker: runs mix jobs end-to-end in a bounded thread pool.

Prompt jobs:   parse -> load catalog -> select -> order -> render
Playlist jobs: (matching happens at request time) -> order -> render

Each stage reports through JobManager. Every job carries a cancellation
token; a watchdog cancels jobs that outlive ``jobs.max_job_seconds``.
"""

import logging
import random
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .catalog import Track, TrackCatalog
from .errors import InsufficientLibrary, MatchFailure, RenderFailure
from .generate.matcher import (
    MatchStats,
    SpotifyPlaylistSource,
    match_playlist_to_local,
    matched_tracks,
)
from .generate.ordering import TrackOrderOptimizer, harmonic_percentage
from .generate.prompt import ConstraintParser, Constraints
from .generate.selector import SelectionConfig, SelectionEngine
from .jobs import JobManager, MixResult, TrackEntry
from .render.render import MixRenderer

logger = logging.getLogger(__name__)

# Share of overall job progress before rendering starts
RENDER_PROGRESS_START = 40
RENDER_PROGRESS_SPAN = 60

ENERGY_DESCRIPTORS = {
    "build": ["Warm-Up", "Rising", "Ascending", "Building", "Elevating"],
    "peak": ["Peak-Time", "Prime", "Apex", "Zenith", "High-Energy"],
    "chill": ["Sunset", "Wind-Down", "Mellow", "Smooth", "Easy"],
    "steady": ["Groove", "Flow", "Cruise", "Ride", "Vibe"],
}


class JobCancelled(Exception):
    """Raised inside a pipeline when its cancellation token is set."""
    pass


def time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "Morning"
    if 12 <= hour < 17:
        return "Afternoon"
    if 17 <= hour < 21:
        return "Evening"
    if hour >= 21 or hour < 2:
        return "Night"
    return "Late-Night"


def generate_mix_name(constraints: Constraints, rng: Optional[random.Random] = None,
                      now: Optional[datetime] = None) -> str:
    """
    Human-readable mix name, e.g. ``Automix-Rising-Techno-Evening-2026-10-19``.

    Args:
        constraints: Parsed constraints (curve and first genre are used)
        rng: Random source for the descriptor pick
        now: Clock override
    """
    rng = rng or random.Random()
    now = now or datetime.now()
    parts = ["Automix"]

    descriptors = ENERGY_DESCRIPTORS.get(constraints.energy_curve)
    if descriptors:
        parts.append(rng.choice(descriptors))

    if constraints.genres:
        parts.append(constraints.genres[0].title().replace(" ", "-"))

    parts.append(time_of_day(now.hour))
    parts.append(now.strftime("%Y-%m-%d"))
    return "-".join(parts)


def sanitize_filename(name: str, max_length: int = 50) -> str:
    """Filesystem-safe version of a mix name."""
    name = re.sub(r"[^\w\s-]", "", name)
    name = re.sub(r"\s+", "-", name.strip())
    name = re.sub(r"-+", "-", name)
    return name[:max_length].strip("-") or "mix"


def render_progress(percent: float) -> float:
    """Map render progress (0-100) into the overall job window (40-100)."""
    return RENDER_PROGRESS_START + percent * RENDER_PROGRESS_SPAN / 100


def build_tracklist(tracks: List[Track]) -> List[TrackEntry]:
    return [
        TrackEntry(
            position=idx + 1,
            artist=t.artist,
            title=t.title,
            bpm=t.bpm,
            key=t.camelot_key,
            energy=t.energy,
        )
        for idx, t in enumerate(tracks)
    ]


class MixWorker:
    """Owns the thread pool and runs jobs from acceptance to completion."""

    def __init__(
        self,
        config,
        jobs: JobManager,
        parser: Optional[ConstraintParser] = None,
        renderer: Optional[MixRenderer] = None,
        catalog_loader: Optional[Callable[[], TrackCatalog]] = None,
        playlist_source: Optional[SpotifyPlaylistSource] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            config: Config instance
            jobs: Shared job registry
            parser: Constraint parser (built from config when None)
            renderer: Renderer (built from config when None)
            catalog_loader: Returns a fresh TrackCatalog for each job
            playlist_source: Playlist fetcher for playlist mode
            rng: Random source for selection jitter and naming
        """
        self.config = config
        self.jobs = jobs
        self.parser = parser or ConstraintParser.from_config(config)
        self.renderer = renderer or MixRenderer(config["render"])
        library = config["library"]
        self.catalog_loader = catalog_loader or (lambda: TrackCatalog.load(library["catalog_path"]))
        self.playlist_source = playlist_source or SpotifyPlaylistSource(
            api_base=config["playlist"]["api_base"],
            timeout=float(config["playlist"]["timeout_seconds"]),
        )
        self.rng = rng or random.Random()
        self.optimizer = TrackOrderOptimizer()

        self.output_dir = Path(library["output_dir"])
        self.mix_url_prefix = library["mix_url_prefix"].rstrip("/")
        self.max_job_seconds = float(config["jobs"]["max_job_seconds"])
        self.retention_hours = float(config["jobs"]["retention_hours"])

        self._executor = ThreadPoolExecutor(
            max_workers=int(config["jobs"]["max_workers"]),
            thread_name_prefix="mix-worker",
        )
        self._tokens: Dict[str, threading.Event] = {}
        self._tokens_lock = threading.Lock()
        logger.info(f"MixWorker initialized ({config['jobs']['max_workers']} workers)")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_prompt_job(self, job_id: str, prompt: str, track_count: int) -> Future:
        """Queue a prompt job; returns immediately."""
        self.jobs.cleanup(self.retention_hours)
        return self._executor.submit(self._guarded, job_id, self.run_prompt_job, prompt, track_count)

    def submit_playlist_job(self, job_id: str, tracks: List[Track], mix_name: str) -> Future:
        """Queue a playlist job over already-matched tracks; returns immediately."""
        self.jobs.cleanup(self.retention_hours)
        return self._executor.submit(self._guarded, job_id, self.run_playlist_job, tracks, mix_name)

    def cancel(self, job_id: str, reason: str = "Cancelled") -> bool:
        """
        Cancel a running job: sets its token and fails it.

        Returns:
            True if the job had a live token
        """
        with self._tokens_lock:
            token = self._tokens.get(job_id)
        self.jobs.fail(job_id, reason)
        if token is None:
            return False
        token.set()
        return True

    def shutdown(self, wait: bool = True) -> None:
        """Cancel outstanding jobs and stop the pool."""
        with self._tokens_lock:
            job_ids = list(self._tokens)
        for job_id in job_ids:
            self.cancel(job_id, "Server shutting down")
        self._executor.shutdown(wait=wait)
        logger.info("MixWorker stopped")

    # ------------------------------------------------------------------
    # Playlist matching (request time)
    # ------------------------------------------------------------------

    def match_playlist(self, playlist_id: str, access_token: str) -> Tuple[List[Track], MatchStats, List[dict]]:
        """
        Fetch a playlist and match it against the catalog.

        Returns:
            (distinct matched tracks in playlist order, stats, unmatched [{name, artist}])

        Raises:
            PlaylistFetchError: If the provider request fails
        """
        playlist = self.playlist_source.fetch_tracks(playlist_id, access_token)
        catalog = self.catalog_loader()
        matches, stats = match_playlist_to_local(playlist, catalog.tracks())
        unmatched = [
            {"name": m.playlist_track.name, "artist": m.playlist_track.artist}
            for m in matches if m.local_track is None
        ]
        return matched_tracks(matches), stats, unmatched

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def run_prompt_job(self, job_id: str, cancel: threading.Event, prompt: str, track_count: int) -> None:
        """Run the full prompt pipeline for one job (blocking)."""
        logger.info(f"Starting job {job_id}: {prompt!r}")

        self.jobs.update(job_id, 5, "Parsing prompt...")
        constraints = self.parser.parse(prompt, track_count)
        logger.info(f"Job {job_id} constraints: {constraints.to_dict()}")
        self._check(cancel)

        self.jobs.update(job_id, 10, "Loading audio library...")
        catalog = self.catalog_loader()
        mixable = catalog.mixable()
        if len(mixable) < constraints.track_count:
            raise InsufficientLibrary(len(mixable), constraints.track_count, "analyzed tracks")
        self._check(cancel)

        self.jobs.update(job_id, 20, "Selecting tracks...")
        engine = SelectionEngine(
            SelectionConfig.for_count(constraints.track_count, self.config["selection"]),
            rng=self.rng,
        )
        selected = engine.select(mixable, constraints)
        self._check(cancel)

        mix_name = generate_mix_name(constraints, self.rng)
        self._order_and_render(job_id, cancel, selected, constraints.energy_curve, mix_name)

    def run_playlist_job(self, job_id: str, cancel: threading.Event, tracks: List[Track], mix_name: str) -> None:
        """Order and render already-matched playlist tracks (blocking)."""
        logger.info(f"Starting playlist job {job_id}: {len(tracks)} tracks")
        if not tracks:
            raise MatchFailure("No playlist tracks found in local library")
        self._order_and_render(job_id, cancel, tracks, "steady", mix_name)

    def _order_and_render(self, job_id: str, cancel: threading.Event, tracks: List[Track],
                          curve: str, mix_name: str) -> None:
        self.jobs.update(job_id, 30, "Optimizing track order...")
        ordered = self.optimizer.optimize(tracks, curve)
        harmonic = harmonic_percentage(ordered)
        self._check(cancel)

        file_name = f"{sanitize_filename(mix_name)}-{job_id}.{self.renderer.extension}"
        output_path = self.output_dir / file_name
        self.jobs.update(job_id, RENDER_PROGRESS_START, "Rendering mix...")

        def on_progress(percent: float, message: str) -> None:
            self.jobs.update(job_id, render_progress(percent), message)

        result = self.renderer.render(
            ordered,
            str(output_path),
            progress_callback=on_progress,
            cancel_event=cancel,
            mix_name=mix_name,
        )

        self.jobs.complete(job_id, MixResult(
            mix_name=mix_name,
            mix_url=f"{self.mix_url_prefix}/{file_name}",
            tracklist=build_tracklist(ordered),
            duration=result.duration_seconds,
            transition_count=result.transition_count,
            harmonic_percentage=harmonic,
        ))

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    @staticmethod
    def _check(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise JobCancelled()

    def _timeout_message(self) -> str:
        return f"Job timed out after {self.max_job_seconds:.0f} seconds"

    def _on_timeout(self, job_id: str) -> None:
        logger.warning(f"Job {job_id} exceeded {self.max_job_seconds:.0f}s; cancelling")
        self.cancel(job_id, self._timeout_message())

    def _guarded(self, job_id: str, pipeline, *args) -> None:
        """Run a pipeline, turning every failure into ``JobManager.fail``."""
        cancel = threading.Event()
        with self._tokens_lock:
            self._tokens[job_id] = cancel
        watchdog = threading.Timer(self.max_job_seconds, self._on_timeout, args=(job_id,))
        watchdog.daemon = True
        watchdog.start()

        try:
            pipeline(job_id, cancel, *args)
        except JobCancelled:
            logger.warning(f"Job {job_id} stopped after cancellation")
            self.jobs.fail(job_id, "Cancelled")
        except (InsufficientLibrary, MatchFailure, RenderFailure) as e:
            logger.error(f"❌ Job {job_id} failed: {e}")
            self.jobs.fail(job_id, str(e))
        except Exception as e:
            logger.error(f"❌ Job {job_id} crashed: {e}", exc_info=True)
            self.jobs.fail(job_id, f"Unexpected error: {e}")
        finally:
            watchdog.cancel()
            with self._tokens_lock:
                self._tokens.pop(job_id, None)
