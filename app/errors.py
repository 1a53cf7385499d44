"""Custom domain exceptions for the application."""

# Stable, machine-readable error codes for API consumers.
NOT_FOUND = "NOT_FOUND"
DUPLICATE_RESOURCE = "DUPLICATE_RESOURCE"
VALIDATION_ERROR = "VALIDATION_ERROR"
UNAUTHORIZED = "UNAUTHORIZED"
FORBIDDEN = "FORBIDDEN"
SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
VALIDATION_FAILED = "VALIDATION_FAILED"
CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
ENTITY_CREATION_FAILED = "ENTITY_CREATION_FAILED"
EXTERNAL_STORE_UNAVAILABLE = "EXTERNAL_STORE_UNAVAILABLE"
DUPLICATE_IN_PROGRESS_SESSION = "DUPLICATE_IN_PROGRESS_SESSION"
RESEND_LIMIT_EXCEEDED = "RESEND_LIMIT_EXCEEDED"


class DomainError(Exception):
    """Base exception for domain/business logic errors."""

    pass


class NotFoundError(DomainError):
    """Raised when a requested resource does not exist."""

    pass


class DuplicateResourceError(DomainError):
    """Raised when attempting to create or update a resource that would violate a uniqueness constraint."""

    pass


class DomainValidationError(DomainError):
    """Raised when business rules or domain validation fail (e.g. invalid dates, missing required fields)."""

    pass


class UnauthorizedError(DomainError):
    """Raised when credentials are missing or wrong."""

    pass


class ForbiddenError(DomainError):
    """Raised when the caller is authenticated but lacks the required capability."""

    pass


class SessionNotFoundError(NotFoundError):
    """Raised when a session id is unknown or its session has expired.

    Expired and never-created sessions are indistinguishable to callers.
    """

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found or expired")
        self.session_id = session_id


class InvalidStateTransitionError(DomainError):
    """Raised when an operation is not legal from the session's current state."""

    def __init__(self, current_state: str, requested: str, message: str | None = None):
        super().__init__(
            message
            or f"Cannot move from '{current_state}' to '{requested}'"
        )
        self.current_state = current_state
        self.requested = requested


class ValidationFailedError(DomainError):
    """Raised when the cross-entity validator reports one or more violations.

    Carries the complete violation list, never just the first one.
    """

    def __init__(self, violations: list):
        super().__init__(f"Validation failed with {len(violations)} violation(s)")
        self.violations = list(violations)


class ConcurrentModificationError(DomainError):
    """Raised when a conditional write lost a race; re-read status and retry."""

    def __init__(self, session_id: str, expected_version: int | None = None):
        super().__init__(
            f"Session {session_id} was modified concurrently, re-read its status and retry"
        )
        self.session_id = session_id
        self.expected_version = expected_version


class EntityCreationFailedError(DomainError):
    """Raised when a required creation step failed and the session ended FAILED."""

    def __init__(self, session_id: str, entity_type: str, cause: str):
        super().__init__(f"Creation of '{entity_type}' failed: {cause}")
        self.session_id = session_id
        self.entity_type = entity_type
        self.cause = cause


class ExternalStoreUnavailableError(DomainError):
    """Raised when the session store or the remote entity store cannot be reached.

    Retryable with backoff.
    """

    pass


class DuplicateInProgressSessionError(DuplicateResourceError):
    """Raised when a live session already exists for the same natural key."""

    def __init__(self, flow: str, natural_key: str):
        super().__init__(f"A {flow} session is already in progress for {natural_key}")
        self.flow = flow
        self.natural_key = natural_key


class ResendLimitExceededError(DomainError):
    """Raised when a session has used up its verification email resends."""

    def __init__(self, session_id: str, limit: int):
        super().__init__(
            f"Verification email for session {session_id} was already resent {limit} time(s)"
        )
        self.session_id = session_id
        self.limit = limit
