import logging
import os
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from ..errors import InvalidRequest, MatchFailure
from ..generate.matcher import PlaylistFetchError, extract_playlist_id

logger = logging.getLogger(__name__)
router = APIRouter()

MEDIA_TYPES = {
    ".mp3": "audio/mpeg",
    ".flac": "audio/flac",
    ".wav": "audio/wav",
}


class GenerateMixRequest(BaseModel):
    prompt: Optional[str] = None
    trackCount: Optional[int] = Field(default=None, ge=1, le=200)
    playlistURL: Optional[str] = None


class PlaylistToMixRequest(BaseModel):
    playlistUrl: Optional[str] = None
    trackCount: Optional[int] = Field(default=None, ge=1, le=200)


class JobAccepted(BaseModel):
    jobId: str
    status: str
    message: str
    statusUrl: str


class UnmatchedTrack(BaseModel):
    name: str
    artist: str


class PlaylistJobAccepted(JobAccepted):
    matchedTracks: int
    totalTracks: int
    matchRate: float
    unmatchedTracks: List[UnmatchedTrack]


def _status_url(job_id: str) -> str:
    return f"/mix-status/{job_id}"


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
        if token:
            return token
    return os.getenv("SPOTIFY_ACCESS_TOKEN") or None


def _start_playlist_mix(request: Request, playlist_url: Optional[str], track_count: Optional[int],
                        authorization: Optional[str]) -> PlaylistJobAccepted:
    if not playlist_url or not playlist_url.strip():
        raise InvalidRequest("Missing or invalid playlistUrl")

    playlist_id = extract_playlist_id(playlist_url)
    if not playlist_id:
        raise InvalidRequest("Invalid Spotify playlist URL")

    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated with Spotify")

    worker = request.app.state.worker
    jobs = request.app.state.jobs

    try:
        tracks, stats, unmatched = worker.match_playlist(playlist_id, token)
    except PlaylistFetchError as e:
        logger.error(f"Playlist fetch failed for {playlist_id}: {e}")
        status = 401 if e.status_code == 401 else 502
        raise HTTPException(status_code=status, detail=str(e))

    if track_count:
        tracks = tracks[:track_count]

    job = jobs.create(f"Spotify Playlist: {playlist_id}", len(tracks))

    if not tracks:
        jobs.fail(job.job_id, str(MatchFailure("No playlist tracks found in local library")))
        status, message = "failed", "None of the playlist tracks exist in the local library."
    else:
        worker.submit_playlist_job(job.job_id, tracks, f"Playlist-Mix-{playlist_id}")
        status = "pending"
        message = f"Mixing {len(tracks)} matched tracks. Poll {_status_url(job.job_id)} for progress."

    return PlaylistJobAccepted(
        jobId=job.job_id,
        status=status,
        message=message,
        statusUrl=_status_url(job.job_id),
        matchedTracks=stats.matched,
        totalTracks=stats.total,
        matchRate=round(stats.match_rate, 1),
        unmatchedTracks=[UnmatchedTrack(**u) for u in unmatched],
    )


@router.post("/generate-mix")
def generate_mix(body: GenerateMixRequest, request: Request, authorization: Optional[str] = Header(default=None)):
    """Accept a prompt (or playlist) and start a background mix job."""
    if body.playlistURL and body.playlistURL.strip():
        return _start_playlist_mix(request, body.playlistURL, body.trackCount, authorization)

    if not body.prompt or not body.prompt.strip():
        raise InvalidRequest("Missing or invalid prompt")

    config = request.app.state.config
    track_count = body.trackCount or config["mix"]["default_track_count"]
    prompt = body.prompt.strip()

    job = request.app.state.jobs.create(prompt, track_count)
    request.app.state.worker.submit_prompt_job(job.job_id, prompt, track_count)

    return JobAccepted(
        jobId=job.job_id,
        status="pending",
        message=f"Mix generation started. Poll {_status_url(job.job_id)} for progress.",
        statusUrl=_status_url(job.job_id),
    )


@router.post("/playlist-to-mix")
def playlist_to_mix(body: PlaylistToMixRequest, request: Request, authorization: Optional[str] = Header(default=None)):
    """Match a streaming playlist against the library and start a mix job."""
    return _start_playlist_mix(request, body.playlistUrl, body.trackCount, authorization)


@router.get("/mix-status/{job_id}")
def mix_status(job_id: str, request: Request):
    job = request.app.state.jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_status_dict()


@router.get("/mixes/{file_name}")
def download_mix(file_name: str, request: Request):
    """Serve a rendered mix from the output directory."""
    if Path(file_name).name != file_name or file_name.startswith("."):
        raise InvalidRequest("Invalid file name")

    output_dir = Path(request.app.state.config["library"]["output_dir"])
    path = output_dir / file_name
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Mix not found")

    media_type = MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream")
    return FileResponse(path, media_type=media_type, filename=file_name)
