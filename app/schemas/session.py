from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.domain.session import EntityOutcome
from app.domain.states import SessionState


class EntityCreationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entity_type: str
    outcome: EntityOutcome
    recorded_at: datetime
    external_id: str | None = None
    error_detail: str | None = None


class Violation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field: str
    code: str
    message: str


class SessionSnapshot(BaseModel):
    """Read-only view of a session, including its full creation progress."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    flow: str
    state: SessionState
    version: int
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    staged_data: dict[str, Any]
    progress: list[EntityCreationRecord]
    history: list[EntityCreationRecord]
    last_error: dict[str, Any] | None = None
    context: dict[str, Any]


class ExecutionResult(BaseModel):
    session_id: str
    state: SessionState
    external_ids: dict[str, str]
    progress: list[EntityCreationRecord]

    @classmethod
    def from_session(cls, session) -> "ExecutionResult":
        return cls(
            session_id=session.session_id,
            state=session.state,
            external_ids=session.external_ids(),
            progress=[EntityCreationRecord.model_validate(record) for record in session.progress],
        )


class ApprovalDecision(BaseModel):
    decision: Literal["approve", "reject"]
    reason: str | None = Field(None, max_length=1000)


class EmailVerificationRequest(BaseModel):
    token: str = Field(..., min_length=1)


class PaymentConfirmation(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=255)


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class PurgeResult(BaseModel):
    purged: int
