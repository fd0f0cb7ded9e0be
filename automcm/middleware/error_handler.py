"""Map the package's error taxonomy onto HTTP responses."""

import logging
from typing import Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from pydantic import ValidationError

from ..errors import (
    ArtifactNotFoundError,
    ArtifactReadError,
    AutoMCMError,
    ConfigurationError,
    PhasePreconditionError,
    PhaseTimeoutError,
    ProviderRequestError,
    UnsupportedProviderError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (ArtifactNotFoundError, status.HTTP_404_NOT_FOUND, "Artifact Not Found"),
    (ArtifactReadError, status.HTTP_422_UNPROCESSABLE_ENTITY, "Artifact Not Readable"),
    (PhasePreconditionError, status.HTTP_409_CONFLICT, "Phase Precondition Failed"),
    (ConfigurationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "Configuration Error"),
    (ProviderRequestError, status.HTTP_502_BAD_GATEWAY, "LLM Provider Error"),
    (PhaseTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT, "Phase Timeout"),
)


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError]
) -> ORJSONResponse:
    """
    Handle Pydantic validation errors with detailed error messages.

    Args:
        request: FastAPI request
        exc: Validation error

    Returns:
        JSON response with validation error details
    """
    errors = []
    for error in exc.errors():
        field_path = ".".join(str(x) for x in error["loc"] if x != "body")
        errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(f"Validation error on {request.url.path}: {errors}")

    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "The request data failed validation",
            "details": errors,
        },
    )


async def automcm_exception_handler(request: Request, exc: AutoMCMError) -> ORJSONResponse:
    """
    Translate workflow errors to status codes.

    404 not found, 409 precondition, 422 configuration or unreadable
    artifact, 502 provider,
    504 timeout; anything else in the taxonomy is a 500.
    """
    status_code, title = status.HTTP_500_INTERNAL_SERVER_ERROR, "Workflow Error"
    for error_type, code, name in _STATUS_CODES:
        if isinstance(exc, error_type):
            status_code, title = code, name
            break

    details = None
    if isinstance(exc, ProviderRequestError):
        details = {"status_code": exc.status_code, "provider": exc.provider, "body": exc.body}
    elif isinstance(exc, UnsupportedProviderError):
        details = {"provider": str(exc.provider), "supported": exc.supported}

    if status_code >= 500:
        logger.error(f"{title} on {request.url.path}: {exc}")
    else:
        logger.warning(f"{title} on {request.url.path}: {exc}")

    return ORJSONResponse(
        status_code=status_code,
        content={"error": title, "message": str(exc), "details": details},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "details": None,
        },
    )
