"""Onboarding orchestrator.

Every operation reads one session, checks the move against the flow's state
machine, writes the session back conditionally on the version it read and only
then publishes a lifecycle event. Nothing is kept in memory between calls.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Mapping

from pydantic import BaseModel
from sqlalchemy.orm import Session

import app.repositories.registration_session as session_repo
from app.clients.entities import EntityCreationClient
from app.core.config import settings
from app.core.security import decode_token, generate_session_id
from app.domain.membership import MembershipCategory, PriceTable
from app.domain.session import RegistrationSession, transition, utcnow
from app.domain.states import SessionState
from app.domain.validation import run_checks
from app.errors import (
    ConcurrentModificationError,
    DomainValidationError,
    EntityCreationFailedError,
    InvalidStateTransitionError,
    ResendLimitExceededError,
    SessionNotFoundError,
    ValidationFailedError,
)
from app.events.emitter import EventEmitter, LifecycleEvent
from app.services.flows import FlowDefinition
from app.services.sequencer import EntityCreationSequencer

logger = logging.getLogger(__name__)


class Orchestrator:
    def __init__(
        self,
        db: Session,
        flow: FlowDefinition,
        clients: Mapping[str, EntityCreationClient] | None = None,
        emitter: EventEmitter | None = None,
        price_table: PriceTable | None = None,
        clock: Callable[[], datetime] = utcnow,
        lease: timedelta | None = None,
    ):
        self.db = db
        self.flow = flow
        self.clients = clients or {}
        self.emitter = emitter or EventEmitter()
        self.price_table = price_table or PriceTable()
        self.clock = clock
        self.lease = lease or timedelta(seconds=settings.processing_lease_seconds)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _load(self, session_id: str) -> RegistrationSession:
        session = session_repo.get_session(self.db, session_id, self.clock())
        if session is None or session.flow != self.flow.name:
            raise SessionNotFoundError(session_id)
        return session

    def _save(self, session: RegistrationSession) -> RegistrationSession:
        return session_repo.save_session(self.db, session, session.version, self.clock())

    def _publish(
        self,
        session: RegistrationSession,
        from_state: SessionState | None,
        name: str | None = None,
    ) -> None:
        self.emitter.publish(
            LifecycleEvent(
                name=f"{self.flow.name}.{name or session.state.value}",
                session_id=session.session_id,
                flow=self.flow.name,
                from_state=from_state.value if from_state else None,
                to_state=session.state.value,
                timestamp=session.updated_at,
                payload_snapshot={
                    "natural_key": session.natural_key,
                    "staged_data": session.staged_data,
                    "context": session.context,
                    "last_error": session.last_error,
                },
            )
        )

    def _transition(
        self,
        session: RegistrationSession,
        to_state: SessionState,
        extend_by: timedelta | None = None,
        **changes: Any,
    ) -> RegistrationSession:
        now = self.clock()
        from_state = session.state
        moved = transition(
            session,
            self.flow.machine,
            to_state,
            now,
            extend_until=now + extend_by if extend_by else None,
            **changes,
        )
        saved = self._save(moved)
        logger.info(
            "%s session %s: %s -> %s",
            self.flow.name,
            saved.session_id,
            from_state.value,
            to_state.value,
        )
        self._publish(saved, from_state)
        return saved

    def _merge(self, session: RegistrationSession, partial: BaseModel) -> dict[str, Any]:
        data = {**session.staged_data, **partial.model_dump(exclude_unset=True, mode="json")}
        if self.flow.natural_key(data) != session.natural_key:
            raise DomainValidationError(
                f"{self.flow.natural_key_field} cannot change during a {self.flow.name} session"
            )
        return data

    def _ensure_editable(self, session: RegistrationSession, operation: str) -> None:
        if session.state not in self.flow.editable_states:
            raise InvalidStateTransitionError(
                session.state.value,
                operation,
                f"Staged data is frozen in state '{session.state.value}'",
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def initiate(self, bundle: BaseModel) -> RegistrationSession:
        """
        Start a session with shape-valid, not yet validated, staged data.

        Raises:
            DomainValidationError: If the bundle lacks the flow's natural key
            DuplicateInProgressSessionError: If a live session holds the same key
        """
        data = bundle.model_dump(exclude_unset=True, mode="json")
        natural_key = self.flow.natural_key(data)
        if not natural_key:
            raise DomainValidationError(
                f"{self.flow.natural_key_field} is required to start a {self.flow.name} session"
            )

        now = self.clock()
        session = RegistrationSession(
            session_id=generate_session_id(),
            flow=self.flow.name,
            natural_key=natural_key,
            state=self.flow.initial_state,
            created_at=now,
            updated_at=now,
            expires_at=now + self.flow.ttl,
            staged_data=data,
        )
        created = session_repo.create_session(self.db, session, now)
        logger.info("%s session %s started", self.flow.name, created.session_id)
        self._publish(created, None)
        return created

    def stage(self, session_id: str, partial: BaseModel) -> RegistrationSession:
        """Replace the given slots of the staged bundle without validating."""
        session = self._load(session_id)
        self._ensure_editable(session, "stage")
        data = self._merge(session, partial)

        if session.state == SessionState.INITIATED:
            return self._transition(session, SessionState.COLLECTING_DATA, staged_data=data)
        return self._save(replace(session, staged_data=data, updated_at=self.clock()))

    def validate(self, session_id: str, partial: BaseModel | None = None) -> RegistrationSession:
        """
        Merge ``partial``, run every cross-entity check and advance on success.

        Merged data is kept even when validation fails.

        Raises:
            ValidationFailedError: With every violation found
        """
        session = self._load(session_id)
        self._ensure_editable(session, "validate")
        if partial is not None and partial.model_fields_set:
            # Merge only; the state moves once the checks pass.
            data = self._merge(session, partial)
            session = self._save(replace(session, staged_data=data, updated_at=self.clock()))

        violations = run_checks(self.flow.checks, session.staged_data, self.clock().date())
        if violations:
            logger.info(
                "%s session %s failed validation with %s violation(s)",
                self.flow.name,
                session_id,
                len(violations),
            )
            raise ValidationFailedError(violations)

        if self.flow.machine.can_transition(session.state, SessionState.EMAIL_VERIFICATION_PENDING):
            return self._after_registration_validated(session)
        return self._price(session)

    def _after_registration_validated(self, session: RegistrationSession) -> RegistrationSession:
        if self.flow.require_email_verification:
            return self._transition(session, SessionState.EMAIL_VERIFICATION_PENDING)
        return self._transition(
            session, SessionState.PENDING_APPROVAL, extend_by=self.flow.approval_window
        )

    def _price(self, session: RegistrationSession) -> RegistrationSession:
        if session.state == SessionState.INITIATED:
            session = self._transition(session, SessionState.COLLECTING_DATA)

        category = session.staged_data["category"]
        quote = self.price_table.quote(
            MembershipCategory(int(category["category"])), int(category["membership_year"])
        )
        return self._transition(
            session,
            SessionState.PRICING_CALCULATED,
            context={**session.context, "pricing": quote.to_dict()},
        )

    def resend_verification(self, session_id: str) -> RegistrationSession:
        """
        Send the verification email again with a fresh token.

        Raises:
            InvalidStateTransitionError: If the session is not awaiting verification
            ResendLimitExceededError: Once the flow's resend allowance is used up
        """
        session = self._load(session_id)
        if session.state != SessionState.EMAIL_VERIFICATION_PENDING:
            raise InvalidStateTransitionError(
                session.state.value,
                "resend_verification",
                f"No verification email is pending in state '{session.state.value}'",
            )

        resends = session.context.get("verification_resends", 0)
        if resends >= self.flow.max_verification_resends:
            raise ResendLimitExceededError(session_id, self.flow.max_verification_resends)

        saved = self._save(
            replace(
                session,
                context={**session.context, "verification_resends": resends + 1},
                updated_at=self.clock(),
            )
        )
        logger.info("%s session %s: verification email resent", self.flow.name, session_id)
        self._publish(saved, session.state, name="verification_resent")
        return saved

    def verify_email(self, session_id: str, token: str) -> RegistrationSession:
        """
        Accept an email verification token and move on to approval.

        Raises:
            DomainValidationError: If the token is invalid, expired or for another session
        """
        payload = decode_token(token)
        if (
            payload is None
            or payload.get("type") != "email_verification"
            or payload.get("sub") != session_id
        ):
            raise DomainValidationError("Invalid or expired verification token")

        session = self._load(session_id)
        if session.state != SessionState.EMAIL_VERIFIED:
            session = self._transition(
                session,
                SessionState.EMAIL_VERIFIED,
                context={**session.context, "email_verified_at": self.clock().isoformat()},
            )
        if self.flow.require_admin_approval:
            return self._transition(
                session, SessionState.PENDING_APPROVAL, extend_by=self.flow.approval_window
            )
        return self._transition(
            session,
            SessionState.APPROVED,
            context={**session.context, "approval": {"decision": "approve", "decided_by": "auto"}},
        )

    def approve(
        self,
        session_id: str,
        decision: str,
        decided_by: str,
        reason: str | None = None,
    ) -> RegistrationSession:
        """
        Record an administrator's decision on a pending registration.

        The caller must already have checked that ``decided_by`` may decide.
        """
        session = self._load(session_id)
        if session.state != SessionState.PENDING_APPROVAL:
            raise InvalidStateTransitionError(session.state.value, decision)
        to_state = SessionState.APPROVED if decision == "approve" else SessionState.REJECTED
        approval = {
            "decision": decision,
            "decided_by": decided_by,
            "decided_at": self.clock().isoformat(),
            "reason": reason,
        }
        return self._transition(session, to_state, context={**session.context, "approval": approval})

    def request_payment(self, session_id: str) -> RegistrationSession:
        """Open the payment step, or skip it when the category costs nothing."""
        session = self._load(session_id)
        if session.state != SessionState.PRICING_CALCULATED:
            raise InvalidStateTransitionError(
                session.state.value, SessionState.PAYMENT_PENDING.value
            )

        pricing = session.context.get("pricing") or {}
        if Decimal(pricing.get("amount", "0")) > 0:
            return self._transition(session, SessionState.PAYMENT_PENDING)
        return self._transition(
            session,
            SessionState.PAYMENT_CONFIRMED,
            extend_by=self.flow.paid_window,
            context={**session.context, "payment": {"reference": None, "waived": True}},
        )

    def confirm_payment(self, session_id: str, payment_reference: str) -> RegistrationSession:
        """Record a payment the provider has already captured."""
        session = self._load(session_id)
        if session.state != SessionState.PAYMENT_PENDING:
            raise InvalidStateTransitionError(
                session.state.value, SessionState.PAYMENT_CONFIRMED.value
            )
        payment = {
            "reference": payment_reference,
            "waived": False,
            "confirmed_at": self.clock().isoformat(),
        }
        return self._transition(
            session,
            SessionState.PAYMENT_CONFIRMED,
            extend_by=self.flow.paid_window,
            context={**session.context, "payment": payment},
        )

    def execute(self, session_id: str) -> RegistrationSession:
        """
        Create the session's records in the remote system of record.

        Safe to call again after a crash or a client retry: recorded steps are
        never repeated, and a finished session is returned as it is.

        Raises:
            EntityCreationFailedError: If a required step failed and the session ended FAILED
            ConcurrentModificationError: If another execute holds the processing lease
        """
        session = self._load(session_id)

        if session.state == SessionState.COMPLETED:
            return session
        if session.state == SessionState.FAILED:
            error = session.last_error or {}
            raise EntityCreationFailedError(
                session_id, error.get("entity_type", "unknown"), error.get("cause", "unknown")
            )

        now = self.clock()
        lease_until = now + self.lease
        if session.state in self.flow.execute_from:
            session = self._transition(session, SessionState.PROCESSING, lease_until=lease_until)
        elif session.state == SessionState.PROCESSING:
            if session.lease_until is not None and session.lease_until > now:
                raise ConcurrentModificationError(session_id)
            logger.info("%s session %s: resuming processing", self.flow.name, session_id)
            session = self._save(replace(session, lease_until=lease_until, updated_at=now))
        else:
            raise InvalidStateTransitionError(session.state.value, SessionState.PROCESSING.value)

        sequencer = EntityCreationSequencer(
            self.flow, self.clients, self._save, self.clock, lease=self.lease
        )
        session = sequencer.run(session)

        required = self.flow.required_entity_types(session.staged_data)
        failure = session.failed_required_step(required)
        if failure is not None:
            last_error = {"entity_type": failure.entity_type, "cause": failure.error_detail}
            self._transition(
                session, SessionState.FAILED, lease_until=None, last_error=last_error
            )
            raise EntityCreationFailedError(session_id, failure.entity_type, failure.error_detail)

        return self._transition(session, SessionState.COMPLETED, lease_until=None)

    def status(self, session_id: str) -> RegistrationSession:
        return self._load(session_id)

    def cancel(self, session_id: str, reason: str | None = None) -> RegistrationSession:
        session = self._load(session_id)
        return self._transition(
            session,
            SessionState.CANCELLED,
            context={**session.context, "cancellation": {"reason": reason}},
        )

    def purge_expired(self, limit: int = 500) -> int:
        """
        Delete sessions past their expiry.

        Sessions that expired before reaching a terminal state are announced
        with an ``expired`` event first. Returns how many sessions were deleted.
        """
        now = self.clock()
        expired = session_repo.find_expired_sessions(self.db, now, flow=self.flow.name, limit=limit)
        for session in expired:
            if not session.is_terminal:
                self._publish(
                    replace(session, state=SessionState.EXPIRED, updated_at=now), session.state
                )
            session_repo.delete_session(self.db, session.session_id)
        if expired:
            logger.info("Purged %s expired %s session(s)", len(expired), self.flow.name)
        return len(expired)
