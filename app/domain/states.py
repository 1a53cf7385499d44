from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from app.errors import InvalidStateTransitionError


class SessionState(str, Enum):
    # Approval-gated flow
    STAGED = "staged"
    EMAIL_VERIFICATION_PENDING = "email_verification_pending"
    EMAIL_VERIFIED = "email_verified"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"

    # Payment-gated flow
    INITIATED = "initiated"
    COLLECTING_DATA = "collecting_data"
    PRICING_CALCULATED = "pricing_calculated"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_CONFIRMED = "payment_confirmed"

    # Shared
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


TERMINAL_STATES = frozenset(
    {
        SessionState.COMPLETED,
        SessionState.FAILED,
        SessionState.EXPIRED,
        SessionState.CANCELLED,
        SessionState.REJECTED,
    }
)

_S = SessionState

APPROVAL_GATED_TRANSITIONS: Mapping[SessionState, frozenset[SessionState]] = MappingProxyType(
    {
        _S.STAGED: frozenset(
            # PENDING_APPROVAL directly when email verification is switched off.
            {_S.EMAIL_VERIFICATION_PENDING, _S.PENDING_APPROVAL, _S.FAILED, _S.CANCELLED, _S.EXPIRED}
        ),
        _S.EMAIL_VERIFICATION_PENDING: frozenset(
            {_S.EMAIL_VERIFIED, _S.FAILED, _S.CANCELLED, _S.EXPIRED}
        ),
        _S.EMAIL_VERIFIED: frozenset(
            # APPROVED directly when admin approval is switched off.
            {_S.PENDING_APPROVAL, _S.APPROVED, _S.FAILED, _S.CANCELLED, _S.EXPIRED}
        ),
        _S.PENDING_APPROVAL: frozenset(
            {_S.APPROVED, _S.REJECTED, _S.CANCELLED, _S.EXPIRED}
        ),
        _S.APPROVED: frozenset({_S.PROCESSING, _S.FAILED, _S.CANCELLED}),
        _S.PROCESSING: frozenset({_S.COMPLETED, _S.FAILED}),
        _S.COMPLETED: frozenset(),
        _S.FAILED: frozenset(),
        _S.EXPIRED: frozenset(),
        _S.CANCELLED: frozenset(),
        _S.REJECTED: frozenset(),
    }
)

PAYMENT_GATED_TRANSITIONS: Mapping[SessionState, frozenset[SessionState]] = MappingProxyType(
    {
        _S.INITIATED: frozenset({_S.COLLECTING_DATA, _S.FAILED, _S.CANCELLED, _S.EXPIRED}),
        _S.COLLECTING_DATA: frozenset(
            {_S.PRICING_CALCULATED, _S.FAILED, _S.CANCELLED, _S.EXPIRED}
        ),
        _S.PRICING_CALCULATED: frozenset(
            # PAYMENT_CONFIRMED directly when nothing is due.
            {_S.PAYMENT_PENDING, _S.PAYMENT_CONFIRMED, _S.FAILED, _S.CANCELLED, _S.EXPIRED}
        ),
        _S.PAYMENT_PENDING: frozenset(
            {_S.PAYMENT_CONFIRMED, _S.FAILED, _S.CANCELLED, _S.EXPIRED}
        ),
        _S.PAYMENT_CONFIRMED: frozenset({_S.PROCESSING, _S.FAILED}),
        _S.PROCESSING: frozenset({_S.COMPLETED, _S.FAILED}),
        _S.COMPLETED: frozenset(),
        _S.FAILED: frozenset(),
        _S.EXPIRED: frozenset(),
        _S.CANCELLED: frozenset(),
        _S.REJECTED: frozenset(),
    }
)


def is_terminal(state: SessionState) -> bool:
    return state in TERMINAL_STATES


@dataclass(frozen=True, slots=True)
class StateMachine:
    """Legal transitions of one lifecycle shape.

    The table is static: a state missing from it has no outgoing edges, and
    terminal states never have any.
    """

    transitions: Mapping[SessionState, frozenset[SessionState]]

    @property
    def states(self) -> frozenset[SessionState]:
        return frozenset(self.transitions)

    def next_states(self, state: SessionState) -> frozenset[SessionState]:
        if state in TERMINAL_STATES:
            return frozenset()
        return self.transitions.get(state, frozenset())

    def can_transition(self, from_state: SessionState, to_state: SessionState) -> bool:
        return to_state in self.next_states(from_state)

    def ensure_transition(self, from_state: SessionState, to_state: SessionState) -> None:
        if not self.can_transition(from_state, to_state):
            raise InvalidStateTransitionError(from_state.value, to_state.value)


APPROVAL_GATED = StateMachine(APPROVAL_GATED_TRANSITIONS)
PAYMENT_GATED = StateMachine(PAYMENT_GATED_TRANSITIONS)
