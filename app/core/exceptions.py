"""
Exception taxonomy for the intake and extraction pipeline.

Request-path errors carry the HTTP status code they map to; the FastAPI
handlers in main.py render them as {"detail": message}. Processing errors
never leave a workflow run: the engine retries transient ones and records
fatal ones on the candidate.
"""


class CandidatePipelineError(Exception):
    """Base class for all pipeline errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CandidatePipelineError):
    """Missing, empty or oversized input."""

    status_code = 400


class ConflictError(CandidatePipelineError):
    """A candidate with the same fingerprint already exists."""

    status_code = 409


class NotFoundError(CandidatePipelineError):
    """Unknown candidate, file or workflow run."""

    status_code = 404


class PersistenceError(CandidatePipelineError):
    """Candidate Store or Blob Store unavailable."""

    status_code = 500


class TransientProcessingError(CandidatePipelineError):
    """Retryable failure inside a workflow step (timeout, network, rate limit)."""


class FatalProcessingError(CandidatePipelineError):
    """Non-retryable failure inside a workflow step (e.g. the blob is gone)."""


class RunOwnershipLostError(CandidatePipelineError):
    """The run was claimed by another worker or has already finished."""
