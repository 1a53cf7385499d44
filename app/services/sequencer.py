"""Entity creation sequencer.

Creates the records of one session in a fixed dependency order and undoes them
in reverse when a required record cannot be created. Every outcome is persisted
before the next remote call, so a crashed run can be resumed with ``run``
without creating anything twice.
"""

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Callable, Mapping

from app.clients.entities import EntityCreationClient
from app.domain.session import EntityCreationRecord, EntityOutcome, RegistrationSession
from app.services.flows import FlowDefinition

logger = logging.getLogger(__name__)

Persist = Callable[[RegistrationSession], RegistrationSession]


def _describe(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"


class EntityCreationSequencer:
    def __init__(
        self,
        flow: FlowDefinition,
        clients: Mapping[str, EntityCreationClient],
        persist: Persist,
        clock: Callable,
        lease: timedelta | None = None,
    ):
        self.flow = flow
        self.clients = clients
        self.persist = persist
        self.clock = clock
        self.lease = lease

    def _record(
        self,
        session: RegistrationSession,
        entity_type: str,
        outcome: EntityOutcome,
        external_id: str | None = None,
        error_detail: str | None = None,
    ) -> RegistrationSession:
        now = self.clock()
        record = EntityCreationRecord(
            entity_type=entity_type,
            outcome=outcome,
            recorded_at=now,
            external_id=external_id,
            error_detail=error_detail,
        )
        session = session.with_record(record, now)
        if self.lease is not None:
            # Each persisted step extends the claim by one lease.
            session = replace(session, lease_until=now + self.lease)
        return self.persist(session)

    def run(self, session: RegistrationSession) -> RegistrationSession:
        """
        Create every outstanding record of the session.

        Steps with a progress entry are never invoked again. If a required step
        has already failed, only the rollback is (re)run.

        Returns the session still in PROCESSING; the caller decides between
        COMPLETED and FAILED from its progress.
        """
        bundle = session.staged_data
        required = self.flow.required_entity_types(bundle)

        failure = session.failed_required_step(required)
        if failure is not None:
            logger.info(
                "Session %s resumes rollback after %s failure", session.session_id, failure.entity_type
            )
            return self.compensate(session)

        parent_keys = {**self.flow.parent_keys(bundle), **session.external_ids()}

        for step in self.flow.steps:
            if session.progress_for(step.entity_type) is not None:
                continue

            payload = bundle.get(step.slot)
            is_required = step.entity_type in required
            if not payload:
                if not is_required:
                    continue
                session = self._record(
                    session,
                    step.entity_type,
                    EntityOutcome.FAILURE,
                    error_detail=f"No staged data for required '{step.slot}'",
                )
                return self.compensate(session)

            client = self.clients[step.entity_type]
            try:
                created = client.create(payload, parent_keys)
            except Exception as exc:
                session = self._record(
                    session, step.entity_type, EntityOutcome.FAILURE, error_detail=_describe(exc)
                )
                if is_required:
                    logger.error(
                        "Session %s: required step %s failed: %s",
                        session.session_id,
                        step.entity_type,
                        _describe(exc),
                    )
                    return self.compensate(session)
                logger.warning(
                    "Session %s: optional step %s failed, continuing: %s",
                    session.session_id,
                    step.entity_type,
                    _describe(exc),
                )
                continue

            session = self._record(
                session, step.entity_type, EntityOutcome.SUCCESS, external_id=created.external_id
            )
            parent_keys[step.entity_type] = created.external_id

        return session

    def compensate(self, session: RegistrationSession) -> RegistrationSession:
        """Delete every created record, newest first.

        A delete that fails is recorded as COMPENSATION_FAILED and the rollback
        moves on; the remote record is then left for manual cleanup.
        """
        for record in reversed(session.progress):
            if record.outcome != EntityOutcome.SUCCESS:
                continue
            try:
                self.clients[record.entity_type].delete(record.external_id)
            except Exception as exc:
                logger.warning(
                    "Session %s: could not delete %s %s: %s",
                    session.session_id,
                    record.entity_type,
                    record.external_id,
                    _describe(exc),
                )
                session = self._record(
                    session,
                    record.entity_type,
                    EntityOutcome.COMPENSATION_FAILED,
                    external_id=record.external_id,
                    error_detail=_describe(exc),
                )
            else:
                session = self._record(
                    session,
                    record.entity_type,
                    EntityOutcome.COMPENSATED,
                    external_id=record.external_id,
                )
        return session
