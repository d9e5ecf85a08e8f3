"""
Playlist matching: map streaming-playlist tracks onto the local catalog.

Strategies, in priority order:
1. Exact Spotify id (catalog entries carrying ``spotify_id``)
2. Fuzzy artist + title match (normalized SequenceMatcher ratio >= 0.7)

Also holds the thin Spotify Web API client used to fetch playlist tracks.
"""

import difflib
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import requests

from ..catalog import Track

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.7

STRATEGY_SPOTIFY_ID = "spotify-id"
STRATEGY_FUZZY = "fuzzy-match"
STRATEGY_NONE = "no-match"

_PLAYLIST_ID_RE = re.compile(r"playlist[/:]([a-zA-Z0-9]+)")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


class PlaylistFetchError(Exception):
    """Raised when the playlist cannot be fetched from the provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class PlaylistTrack:
    """One track of a source playlist."""

    spotify_id: str
    name: str
    artist: str
    duration_ms: Optional[int] = None


@dataclass
class TrackMatch:
    playlist_track: PlaylistTrack
    local_track: Optional[Track]
    strategy: str
    confidence: float


@dataclass
class MatchStats:
    """Summary of a playlist match run."""

    total: int = 0
    matched: int = 0
    strategy_breakdown: Dict[str, int] = field(default_factory=lambda: {
        STRATEGY_SPOTIFY_ID: 0,
        STRATEGY_FUZZY: 0,
        STRATEGY_NONE: 0,
    })

    @property
    def match_rate(self) -> float:
        """Matched share of the playlist, in percent."""
        return (self.matched / self.total) * 100 if self.total else 0.0


def extract_playlist_id(url: str) -> Optional[str]:
    """
    Extract a playlist id from a URL or URI.

    Handles ``https://open.spotify.com/playlist/<id>`` and
    ``spotify:playlist:<id>``.
    """
    if not url:
        return None
    match = _PLAYLIST_ID_RE.search(url)
    return match.group(1) if match else None


def normalize_text(text: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    text = _PUNCTUATION_RE.sub("", (text or "").lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def similarity(a: str, b: str) -> float:
    """Fuzzy similarity of two strings after normalization (0.0-1.0)."""
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if norm_a == norm_b:
        return 1.0
    return difflib.SequenceMatcher(None, norm_a, norm_b).ratio()


def match_track_to_local(playlist_track: PlaylistTrack, library: List[Track]) -> TrackMatch:
    """
    Find the local track for one playlist entry.

    Returns:
        TrackMatch (``local_track`` is None when nothing qualifies)
    """
    if playlist_track.spotify_id:
        for track in library:
            if track.spotify_id and track.spotify_id == playlist_track.spotify_id:
                return TrackMatch(playlist_track, track, STRATEGY_SPOTIFY_ID, 1.0)

    best: Optional[Track] = None
    best_score = 0.0
    for track in library:
        score = (similarity(playlist_track.artist, track.artist)
                 + similarity(playlist_track.name, track.title)) / 2
        if score >= FUZZY_THRESHOLD and score > best_score:
            best = track
            best_score = score

    if best is not None:
        return TrackMatch(playlist_track, best, STRATEGY_FUZZY, best_score)

    return TrackMatch(playlist_track, None, STRATEGY_NONE, 0.0)


def match_playlist_to_local(
    playlist: List[PlaylistTrack], library: List[Track]
) -> Tuple[List[TrackMatch], MatchStats]:
    """
    Match every playlist entry against the library.

    Returns:
        (matches in playlist order, MatchStats)
    """
    matches = [match_track_to_local(t, library) for t in playlist]

    stats = MatchStats(total=len(matches))
    for match in matches:
        stats.strategy_breakdown[match.strategy] += 1
        if match.local_track is not None:
            stats.matched += 1

    logger.info(
        f"Matched {stats.matched}/{stats.total} playlist tracks "
        f"({stats.match_rate:.1f}%, breakdown: {stats.strategy_breakdown})"
    )
    return matches, stats


def matched_tracks(matches: List[TrackMatch]) -> List[Track]:
    """Distinct local tracks in playlist order."""
    seen = set()
    result = []
    for match in matches:
        track = match.local_track
        if track is None or track.track_id in seen:
            continue
        seen.add(track.track_id)
        result.append(track)
    return result


class SpotifyPlaylistSource:
    """Fetches playlist tracks from the Spotify Web API."""

    def __init__(self, api_base: str = "https://api.spotify.com/v1", timeout: float = 15.0,
                 session: Optional[requests.Session] = None):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_tracks(self, playlist_id: str, access_token: str) -> List[PlaylistTrack]:
        """
        Fetch all tracks of a playlist, following pagination.

        Raises:
            PlaylistFetchError: On HTTP or network failure
        """
        url = f"{self.api_base}/playlists/{playlist_id}/tracks?limit=100"
        headers = {"Authorization": f"Bearer {access_token}"}
        tracks: List[PlaylistTrack] = []

        while url:
            try:
                response = self.session.get(url, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                raise PlaylistFetchError(f"Failed to fetch playlist: {e}") from e

            if response.status_code != 200:
                raise PlaylistFetchError(
                    f"Failed to fetch playlist: {response.status_code} {response.reason}",
                    status_code=response.status_code,
                )

            data = response.json()
            for item in data.get("items", []):
                track = item.get("track") or {}
                if not track.get("id"):
                    continue
                artists = track.get("artists") or []
                tracks.append(PlaylistTrack(
                    spotify_id=track["id"],
                    name=track.get("name", ""),
                    artist=artists[0].get("name", "Unknown") if artists else "Unknown",
                    duration_ms=track.get("duration_ms"),
                ))

            url = data.get("next")

        logger.info(f"Fetched {len(tracks)} tracks from playlist {playlist_id}")
        return tracks
