"""Session store adapter.

Durable keyed storage for onboarding sessions with per-record expiry. Reads
treat expired rows as absent; only writes tied to a state transition ever move
``expires_at``. Every write is conditional on the version the caller read.
"""

import logging
from dataclasses import replace
from datetime import datetime
from functools import wraps

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from app.db.models.registration_session import RegistrationSessionRecord
from app.domain.session import EntityCreationRecord, RegistrationSession
from app.domain.states import TERMINAL_STATES, SessionState
from app.errors import (
    ConcurrentModificationError,
    DuplicateInProgressSessionError,
    DuplicateResourceError,
    ExternalStoreUnavailableError,
    InvalidStateTransitionError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

_TERMINAL_VALUES = [state.value for state in TERMINAL_STATES]


def _store_errors(func):
    """Translate database connectivity failures into a retryable domain error."""

    @wraps(func)
    def wrapper(db: Session, *args, **kwargs):
        try:
            return func(db, *args, **kwargs)
        except IntegrityError:
            raise
        except DBAPIError as exc:
            db.rollback()
            logger.error("Session store unavailable during %s: %s", func.__name__, exc)
            raise ExternalStoreUnavailableError("Session store is unavailable") from exc

    return wrapper


def active_key(flow: str, natural_key: str) -> str:
    return f"{flow}:{natural_key}"


def _to_domain(record: RegistrationSessionRecord) -> RegistrationSession:
    return RegistrationSession(
        session_id=record.session_id,
        flow=record.flow,
        natural_key=record.natural_key,
        state=SessionState(record.state),
        version=record.version,
        created_at=record.created_at,
        updated_at=record.updated_at,
        expires_at=record.expires_at,
        lease_until=record.lease_until,
        staged_data=dict(record.staged_data or {}),
        progress=tuple(EntityCreationRecord.from_dict(item) for item in record.progress or []),
        history=tuple(EntityCreationRecord.from_dict(item) for item in record.history or []),
        last_error=record.last_error,
        context=dict(record.context or {}),
    )


def _to_columns(session: RegistrationSession) -> dict:
    return {
        "flow": session.flow,
        "natural_key": session.natural_key,
        "active_key": None if session.is_terminal else active_key(session.flow, session.natural_key),
        "state": session.state.value,
        "updated_at": session.updated_at,
        "expires_at": session.expires_at,
        "lease_until": session.lease_until,
        "staged_data": session.staged_data,
        "progress": [record.to_dict() for record in session.progress],
        "history": [record.to_dict() for record in session.history],
        "last_error": session.last_error,
        "context": session.context,
    }


def _release_expired_key(db: Session, key: str, now: datetime) -> None:
    """Let an expired session give up its natural key so a new one can start."""
    db.query(RegistrationSessionRecord).filter(
        RegistrationSessionRecord.active_key == key,
        RegistrationSessionRecord.expires_at <= now,
    ).update({"active_key": None}, synchronize_session=False)


@_store_errors
def create_session(db: Session, session: RegistrationSession, now: datetime) -> RegistrationSession:
    """Insert a new session. Fails if the id exists or the natural key is held by a live session."""
    _release_expired_key(db, active_key(session.flow, session.natural_key), now)
    record = RegistrationSessionRecord(
        session_id=session.session_id,
        version=session.version,
        created_at=session.created_at,
        **_to_columns(session),
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if db.get(RegistrationSessionRecord, session.session_id) is not None:
            raise DuplicateResourceError(f"Session {session.session_id} already exists") from exc
        raise DuplicateInProgressSessionError(session.flow, session.natural_key) from exc
    return session


@_store_errors
def get_session(db: Session, session_id: str, now: datetime) -> RegistrationSession | None:
    """Get a live session by id. Expired sessions read as absent."""
    record = (
        db.query(RegistrationSessionRecord)
        .filter(
            RegistrationSessionRecord.session_id == session_id,
            RegistrationSessionRecord.expires_at > now,
        )
        .first()
    )
    if record is None:
        return None
    return _to_domain(record)


@_store_errors
def save_session(
    db: Session,
    session: RegistrationSession,
    expected_version: int,
    now: datetime,
) -> RegistrationSession:
    """
    Write the full session record if nobody else wrote it since it was read.

    The write only applies when the stored version equals ``expected_version``,
    the stored session has not expired and is not already terminal.

    Raises:
        SessionNotFoundError: If the session is gone or expired
        InvalidStateTransitionError: If the stored session is already terminal
        ConcurrentModificationError: If another writer got there first
    """
    values = _to_columns(session)
    values["version"] = expected_version + 1

    updated = (
        db.query(RegistrationSessionRecord)
        .filter(
            RegistrationSessionRecord.session_id == session.session_id,
            RegistrationSessionRecord.version == expected_version,
            RegistrationSessionRecord.expires_at > now,
            RegistrationSessionRecord.state.notin_(_TERMINAL_VALUES),
        )
        .update(values, synchronize_session=False)
    )
    if updated == 0:
        db.rollback()
        record = db.get(RegistrationSessionRecord, session.session_id)
        if record is None or record.expires_at <= now:
            raise SessionNotFoundError(session.session_id)
        if record.state in _TERMINAL_VALUES:
            raise InvalidStateTransitionError(
                record.state,
                session.state.value,
                f"Session is already {record.state} and read-only",
            )
        raise ConcurrentModificationError(session.session_id, expected_version)

    try:
        db.commit()
    except IntegrityError as exc:
        # Another live session took the natural key; only possible for a stale writer.
        db.rollback()
        raise ConcurrentModificationError(session.session_id, expected_version) from exc
    return replace(session, version=expected_version + 1)


@_store_errors
def delete_session(db: Session, session_id: str) -> None:
    """Delete a session whatever its state. Deleting an absent session is a no-op."""
    db.query(RegistrationSessionRecord).filter(
        RegistrationSessionRecord.session_id == session_id
    ).delete(synchronize_session=False)
    db.commit()


@_store_errors
def find_expired_sessions(
    db: Session, now: datetime, flow: str | None = None, limit: int = 500
) -> list[RegistrationSession]:
    """List sessions past their expiry, oldest first. Reclamation only."""
    query = db.query(RegistrationSessionRecord).filter(RegistrationSessionRecord.expires_at <= now)
    if flow is not None:
        query = query.filter(RegistrationSessionRecord.flow == flow)
    records = (
        query
        .order_by(RegistrationSessionRecord.expires_at)
        .limit(limit)
        .all()
    )
    return [_to_domain(record) for record in records]
