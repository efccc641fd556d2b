from __future__ import annotations

import logging

from fastapi import HTTPException, status

from src.app.core.exceptions import (
    ExecutionFailureError,
    InvalidArgumentError,
    InvalidCommandError,
    PipelineAlreadyExistsError,
    PipelineError,
    PipelineNotFoundError,
    PipelinePermissionError,
    UnresolvedEnumeratorError,
    UnsupportedSourceError,
)

logger = logging.getLogger("incremental_api")

_STATUS_BY_ERROR: tuple[tuple[type[PipelineError], int], ...] = (
    (PipelineNotFoundError, status.HTTP_404_NOT_FOUND),
    (PipelinePermissionError, status.HTTP_403_FORBIDDEN),
    (PipelineAlreadyExistsError, status.HTTP_409_CONFLICT),
    (InvalidArgumentError, status.HTTP_400_BAD_REQUEST),
    (InvalidCommandError, status.HTTP_400_BAD_REQUEST),
    (UnsupportedSourceError, status.HTTP_400_BAD_REQUEST),
    (UnresolvedEnumeratorError, status.HTTP_400_BAD_REQUEST),
    (ExecutionFailureError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def http_error(exc: PipelineError) -> HTTPException:
    """Доменная ошибка -> HTTPException с понятным detail."""
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, error_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            code = error_code
            break

    detail: str | dict = str(exc)
    if exc.detail:
        detail = {"message": str(exc), "detail": exc.detail}

    if code >= 500:
        logger.error("Pipeline operation failed: %s", exc)

    return HTTPException(status_code=code, detail=detail)
