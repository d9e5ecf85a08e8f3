"""
Polling client for the automix HTTP API.

Submits a mix request, then polls the status endpoint until the job is
complete or failed. Running out of attempts raises ``PollingTimeout``,
which says nothing about the job's server-side state; a job that ended
failed raises ``MixJobFailed``.
"""

import logging
import time
from typing import Any, Dict, Optional

import requests

from .errors import MixJobFailed, PollingTimeout

logger = logging.getLogger(__name__)


class MixClient:
    """Thin requests-based client."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 30.0,
                 session: Optional[requests.Session] = None, spotify_token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.spotify_token = spotify_token

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {}
        if self.spotify_token:
            headers["Authorization"] = f"Bearer {self.spotify_token}"
        response = self.session.post(f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def generate_mix(self, prompt: str, track_count: Optional[int] = None,
                     playlist_url: Optional[str] = None) -> Dict[str, Any]:
        """Start a mix job from a prompt. Returns the acceptance payload."""
        payload: Dict[str, Any] = {"prompt": prompt}
        if track_count is not None:
            payload["trackCount"] = track_count
        if playlist_url:
            payload["playlistURL"] = playlist_url
        return self._post("/generate-mix", payload)

    def playlist_to_mix(self, playlist_url: str, track_count: Optional[int] = None) -> Dict[str, Any]:
        """Start a mix job from a streaming playlist. Returns match stats and job id."""
        payload: Dict[str, Any] = {"playlistUrl": playlist_url}
        if track_count is not None:
            payload["trackCount"] = track_count
        return self._post("/playlist-to-mix", payload)

    def get_status(self, job_id: str) -> Dict[str, Any]:
        response = self.session.get(f"{self.base_url}/mix-status/{job_id}", timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def wait_for_mix(self, job_id: str, max_attempts: int = 120, interval_seconds: float = 5.0,
                     on_progress=None) -> Dict[str, Any]:
        """
        Poll until the job is terminal.

        Args:
            job_id: Job to watch
            max_attempts: Status requests before giving up
            interval_seconds: Pause between requests
            on_progress: Optional callable(status payload) for each poll

        Returns:
            The job's ``result`` payload

        Raises:
            PollingTimeout: If the job is still running after ``max_attempts``
            MixJobFailed: If the job ended failed
        """
        for attempt in range(1, max_attempts + 1):
            status = self.get_status(job_id)
            if on_progress:
                on_progress(status)

            state = status.get("status")
            if state == "complete":
                logger.info(f"✅ Mix ready: {status['result']['mixUrl']}")
                return status["result"]
            if state == "failed":
                raise MixJobFailed(job_id, status.get("error") or "unknown error")

            logger.debug(f"[{attempt}/{max_attempts}] {status.get('progress')}% {status.get('progressMessage')}")
            if attempt < max_attempts:
                time.sleep(interval_seconds)

        raise PollingTimeout(job_id, max_attempts)
