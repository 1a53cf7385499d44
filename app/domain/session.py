"""Value types for one onboarding session.

Sessions are immutable values: every change produces a new instance via
``dataclasses.replace`` and is written back through the session store with the
version it was read at.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from app.domain.states import SessionState, StateMachine, is_terminal
from app.errors import InvalidStateTransitionError


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every session timestamp is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EntityOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    COMPENSATED = "COMPENSATED"
    # Only ever written to history: the remote record could not be deleted.
    COMPENSATION_FAILED = "COMPENSATION_FAILED"


@dataclass(frozen=True, slots=True)
class EntityCreationRecord:
    entity_type: str
    outcome: EntityOutcome
    recorded_at: datetime
    external_id: str | None = None
    error_detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "outcome": self.outcome.value,
            "recorded_at": self.recorded_at.isoformat(),
            "external_id": self.external_id,
            "error_detail": self.error_detail,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EntityCreationRecord":
        return cls(
            entity_type=data["entity_type"],
            outcome=EntityOutcome(data["outcome"]),
            recorded_at=datetime.fromisoformat(data["recorded_at"]),
            external_id=data.get("external_id"),
            error_detail=data.get("error_detail"),
        )


@dataclass(frozen=True, slots=True)
class Violation:
    field: str
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "code": self.code, "message": self.message}


@dataclass(frozen=True, slots=True)
class RegistrationSession:
    session_id: str
    flow: str
    natural_key: str
    state: SessionState
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    staged_data: dict[str, Any] = field(default_factory=dict)
    progress: tuple[EntityCreationRecord, ...] = ()
    history: tuple[EntityCreationRecord, ...] = ()
    last_error: dict[str, Any] | None = None
    context: dict[str, Any] = field(default_factory=dict)
    lease_until: datetime | None = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.state)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def progress_for(self, entity_type: str) -> EntityCreationRecord | None:
        for record in self.progress:
            if record.entity_type == entity_type:
                return record
        return None

    def failed_required_step(self, required: set[str]) -> EntityCreationRecord | None:
        for record in self.progress:
            if record.outcome == EntityOutcome.FAILURE and record.entity_type in required:
                return record
        return None

    def external_ids(self) -> dict[str, str]:
        """External ids of every step whose record still exists remotely."""
        return {
            record.entity_type: record.external_id
            for record in self.progress
            if record.outcome == EntityOutcome.SUCCESS and record.external_id
        }

    def with_record(self, record: EntityCreationRecord, now: datetime) -> "RegistrationSession":
        """Append a step outcome to progress and history.

        The only slot that may be superseded is a SUCCESS turning COMPENSATED
        during rollback; every other outcome is a new entry.
        """
        if self.is_terminal:
            raise InvalidStateTransitionError(
                self.state.value, "record", f"Session is {self.state.value} and read-only"
            )

        progress = list(self.progress)
        existing = self.progress_for(record.entity_type)
        if record.outcome == EntityOutcome.COMPENSATED:
            if existing is None or existing.outcome != EntityOutcome.SUCCESS:
                raise ValueError(f"No successful '{record.entity_type}' step to compensate")
            progress[progress.index(existing)] = record
        elif record.outcome == EntityOutcome.COMPENSATION_FAILED:
            pass  # the SUCCESS slot stays: the remote record still exists
        else:
            if existing is not None:
                raise ValueError(f"Step '{record.entity_type}' already recorded")
            progress.append(record)

        return replace(
            self,
            progress=tuple(progress),
            history=self.history + (record,),
            updated_at=now,
        )


def transition(
    session: RegistrationSession,
    machine: StateMachine,
    to_state: SessionState,
    now: datetime,
    extend_until: datetime | None = None,
    **changes: Any,
) -> RegistrationSession:
    """Move a session to ``to_state`` if the table allows it.

    ``extend_until`` can only push ``expires_at`` later, never earlier.
    """
    machine.ensure_transition(session.state, to_state)
    expires_at = session.expires_at
    if extend_until is not None and extend_until > expires_at:
        expires_at = extend_until
    return replace(
        session,
        state=to_state,
        updated_at=now,
        expires_at=expires_at,
        **changes,
    )
