"""Translation of service errors into HTTP errors.

- NotFoundError / NoPromptAvailableError → 404
- ProviderError / StorageError → 502 (upstream failed after its retry budget)
- ValueError → 422
- anything else → 500
"""

import structlog
from fastapi import HTTPException, status

from vibra.services.exceptions import (
    NoPromptAvailableError,
    NotFoundError,
    ProviderError,
    StorageError,
)

logger = structlog.get_logger()


def to_http_error(error: Exception, event: str, **context) -> HTTPException:
    """Log error under event and return the HTTPException to raise."""
    if isinstance(error, (NotFoundError, NoPromptAvailableError)):
        logger.info(event, outcome="not_found", error=str(error), **context)
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))

    if isinstance(error, (ProviderError, StorageError)):
        logger.error(
            event,
            outcome="upstream_failed",
            error=str(error),
            error_type=type(error).__name__,
            **context,
        )
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Image generation failed: {error}",
        )

    if isinstance(error, ValueError):
        logger.info(event, outcome="invalid", error=str(error), **context)
        return HTTPException(status_code=422, detail=str(error))

    logger.error(
        event,
        outcome="unexpected_error",
        error=str(error),
        error_type=type(error).__name__,
        **context,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error. Please try again later.",
    )
