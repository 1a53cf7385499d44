"""Global exception handlers that map domain exceptions to HTTP responses."""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.errors import (
    CONCURRENT_MODIFICATION,
    DUPLICATE_IN_PROGRESS_SESSION,
    DUPLICATE_RESOURCE,
    ENTITY_CREATION_FAILED,
    EXTERNAL_STORE_UNAVAILABLE,
    FORBIDDEN,
    INVALID_STATE_TRANSITION,
    NOT_FOUND,
    RESEND_LIMIT_EXCEEDED,
    SESSION_NOT_FOUND,
    UNAUTHORIZED,
    VALIDATION_ERROR,
    VALIDATION_FAILED,
    ConcurrentModificationError,
    DomainValidationError,
    DuplicateInProgressSessionError,
    DuplicateResourceError,
    EntityCreationFailedError,
    ExternalStoreUnavailableError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ResendLimitExceededError,
    SessionNotFoundError,
    UnauthorizedError,
    ValidationFailedError,
)
from app.schemas.error import ErrorResponse
from app.schemas.session import Violation


def _error_response(status_code: int, detail: str, code: str, **extra) -> JSONResponse:
    """Return a standardized error response with detail and machine-readable code."""
    body = ErrorResponse(detail=detail, code=code, **extra)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def domain_validation_error_handler(
    _request: Request, exc: DomainValidationError
) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, str(exc), VALIDATION_ERROR)


def duplicate_resource_error_handler(
    _request: Request, exc: DuplicateResourceError
) -> JSONResponse:
    return _error_response(status.HTTP_409_CONFLICT, str(exc), DUPLICATE_RESOURCE)


def duplicate_in_progress_session_error_handler(
    _request: Request, exc: DuplicateInProgressSessionError
) -> JSONResponse:
    return _error_response(status.HTTP_409_CONFLICT, str(exc), DUPLICATE_IN_PROGRESS_SESSION)


def not_found_error_handler(_request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, str(exc), NOT_FOUND)


def session_not_found_error_handler(
    _request: Request, exc: SessionNotFoundError
) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, str(exc), SESSION_NOT_FOUND)


def forbidden_error_handler(_request: Request, exc: ForbiddenError) -> JSONResponse:
    return _error_response(status.HTTP_403_FORBIDDEN, str(exc), FORBIDDEN)


def unauthorized_error_handler(_request: Request, exc: UnauthorizedError) -> JSONResponse:
    return _error_response(status.HTTP_401_UNAUTHORIZED, str(exc), UNAUTHORIZED)


def invalid_state_transition_error_handler(
    _request: Request, exc: InvalidStateTransitionError
) -> JSONResponse:
    return _error_response(
        status.HTTP_409_CONFLICT,
        str(exc),
        INVALID_STATE_TRANSITION,
        context={"current_state": exc.current_state, "requested": exc.requested},
    )


def validation_failed_error_handler(
    _request: Request, exc: ValidationFailedError
) -> JSONResponse:
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        str(exc),
        VALIDATION_FAILED,
        violations=[Violation.model_validate(v) for v in exc.violations],
    )


def concurrent_modification_error_handler(
    _request: Request, exc: ConcurrentModificationError
) -> JSONResponse:
    return _error_response(status.HTTP_409_CONFLICT, str(exc), CONCURRENT_MODIFICATION)


def entity_creation_failed_error_handler(
    _request: Request, exc: EntityCreationFailedError
) -> JSONResponse:
    return _error_response(
        status.HTTP_502_BAD_GATEWAY,
        str(exc),
        ENTITY_CREATION_FAILED,
        context={"entity_type": exc.entity_type, "cause": exc.cause},
    )


def resend_limit_exceeded_error_handler(
    _request: Request, exc: ResendLimitExceededError
) -> JSONResponse:
    return _error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        str(exc),
        RESEND_LIMIT_EXCEEDED,
        context={"limit": exc.limit},
    )


def external_store_unavailable_error_handler(
    _request: Request, exc: ExternalStoreUnavailableError
) -> JSONResponse:
    return _error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE, str(exc), EXTERNAL_STORE_UNAVAILABLE
    )


def register_exception_handlers(app):
    """Register domain exception handlers on the FastAPI app.

    Starlette picks the handler of the closest class in the exception's MRO,
    so subclasses get their own codes.
    """
    app.add_exception_handler(DomainValidationError, domain_validation_error_handler)
    app.add_exception_handler(DuplicateResourceError, duplicate_resource_error_handler)
    app.add_exception_handler(
        DuplicateInProgressSessionError, duplicate_in_progress_session_error_handler
    )
    app.add_exception_handler(ForbiddenError, forbidden_error_handler)
    app.add_exception_handler(NotFoundError, not_found_error_handler)
    app.add_exception_handler(SessionNotFoundError, session_not_found_error_handler)
    app.add_exception_handler(UnauthorizedError, unauthorized_error_handler)
    app.add_exception_handler(InvalidStateTransitionError, invalid_state_transition_error_handler)
    app.add_exception_handler(ValidationFailedError, validation_failed_error_handler)
    app.add_exception_handler(ConcurrentModificationError, concurrent_modification_error_handler)
    app.add_exception_handler(EntityCreationFailedError, entity_creation_failed_error_handler)
    app.add_exception_handler(ResendLimitExceededError, resend_limit_exceeded_error_handler)
    app.add_exception_handler(
        ExternalStoreUnavailableError, external_store_unavailable_error_handler
    )
