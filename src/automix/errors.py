"""
Error taxonomy for the mix-generation pipeline.

Parsing failures are recovered inside the constraint parser. Selection,
matching and render failures are fatal to a job and end up in its
``error`` field. Request validation failures are rejected before any job
exists.
"""


class AutomixError(Exception):
    """Base class for all pipeline errors."""
    pass


class InvalidRequest(AutomixError):
    """Missing or malformed prompt or playlist URL."""
    pass


class InsufficientLibrary(AutomixError):
    """The catalog cannot supply the requested number of tracks."""

    def __init__(self, available: int, requested: int, detail: str = ""):
        self.available = available
        self.requested = requested
        message = f"Not enough tracks in library: have {available}, need {requested}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class UpstreamParseFailure(AutomixError):
    """The text-understanding service was unavailable or returned garbage."""
    pass


class MatchFailure(AutomixError):
    """None of the source playlist's tracks exist in the local catalog."""
    pass


class RenderFailure(AutomixError):
    """The audio subprocess failed or produced no usable output."""

    def __init__(self, message: str, diagnostics: str = ""):
        self.diagnostics = diagnostics
        if diagnostics:
            message = f"{message}: {diagnostics}"
        super().__init__(message)


class PollingTimeout(AutomixError):
    """The polling client gave up before the job reached a terminal state."""

    def __init__(self, job_id: str, attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(f"Job {job_id} did not finish after {attempts} polling attempts")


class MixJobFailed(AutomixError):
    """Client-side view of a job that ended in the failed state."""

    def __init__(self, job_id: str, error: str):
        self.job_id = job_id
        self.error = error
        super().__init__(f"Job {job_id} failed: {error}")
