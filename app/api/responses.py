# ============================================================================
# FILE: app/api/responses.py
# Maps service outcomes onto HTTP responses
# ============================================================================
from fastapi import HTTPException, status

from app.schemas.outcomes import Conflict, NotFound, Ok, Outcome, UpstreamUnavailable, ValidationFailed


def unwrap(outcome: Outcome):
    """
    Return the value of an Ok outcome, raise the matching HTTPException otherwise.

    Conflict            -> 409
    ValidationFailed    -> 422 with the per-field messages
    NotFound            -> 404
    UpstreamUnavailable -> 503 with Retry-After
    """
    if isinstance(outcome, Ok):
        return outcome.value

    if isinstance(outcome, Conflict):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "conflict", "message": outcome.message}
        )

    if isinstance(outcome, ValidationFailed):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "validation_failed", "message": outcome.message, "fields": outcome.fields}
        )

    if isinstance(outcome, NotFound):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": outcome.message}
        )

    if isinstance(outcome, UpstreamUnavailable):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "upstream_unavailable", "message": outcome.message, "retryable": outcome.retryable},
            headers={"Retry-After": str(outcome.retry_after_seconds)}
        )

    raise TypeError(f"Unknown outcome: {outcome!r}")
