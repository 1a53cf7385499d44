from dataclasses import replace

import pytest
from sqlalchemy.orm import Session

import app.repositories.registration_session as session_repo
from app.core.config import settings
from app.domain.session import EntityCreationRecord, EntityOutcome
from app.domain.states import SessionState
from app.errors import (
    ConcurrentModificationError,
    EntityCreationFailedError,
    ExternalStoreUnavailableError,
)
from app.schemas.registration import RegistrationBundle
from app.services.flows import CreationStep, registration_flow
from app.services.orchestrator import Orchestrator


def _success(entity_type, external_id, now):
    return EntityCreationRecord(entity_type, EntityOutcome.SUCCESS, now, external_id=external_id)


def _failure(entity_type, now):
    return EntityCreationRecord(entity_type, EntityOutcome.FAILURE, now, error_detail="boom")


def _outcomes(session) -> list[tuple[str, EntityOutcome]]:
    return [(record.entity_type, record.outcome) for record in session.progress]


@pytest.fixture
def approved_orchestrator(db: Session, registration_clients, emitter, clock) -> Orchestrator:
    """Registration flow without the email and approval gates."""
    flow = replace(
        registration_flow(settings),
        require_email_verification=False,
        require_admin_approval=False,
    )
    return Orchestrator(db, flow, clients=registration_clients, emitter=emitter, clock=clock)


@pytest.fixture
def approved_session(approved_orchestrator, registration_data):
    orchestrator = approved_orchestrator
    session = orchestrator.initiate(RegistrationBundle(**registration_data))
    orchestrator.validate(session.session_id)
    return orchestrator.approve(session.session_id, "approve", decided_by="admin@test.example.com")


# ============================================================================
# HAPPY PATH
# ============================================================================


def test_execute_creates_every_record_in_order(approved_orchestrator, approved_session, journal):
    session = approved_orchestrator.execute(approved_session.session_id)

    assert session.state == SessionState.COMPLETED
    assert journal == [
        ("create", "account"),
        ("create", "address"),
        ("create", "contact"),
        ("create", "identity"),
        ("create", "education"),
    ]
    # management is optional and was not staged
    assert _outcomes(session) == [
        ("account", EntityOutcome.SUCCESS),
        ("address", EntityOutcome.SUCCESS),
        ("contact", EntityOutcome.SUCCESS),
        ("identity", EntityOutcome.SUCCESS),
        ("education", EntityOutcome.SUCCESS),
    ]
    assert session.lease_until is None


def test_children_are_bound_to_the_account(approved_orchestrator, approved_session, registration_clients):
    approved_orchestrator.execute(approved_session.session_id)

    _, parent_keys = registration_clients["address"].create_calls[0]
    assert parent_keys == {"account": "account-1"}


# ============================================================================
# IDEMPOTENT EXECUTE
# ============================================================================


def test_resumed_execute_does_not_repeat_recorded_steps(
    approved_orchestrator, approved_session, registration_clients, journal, clock
):
    """A run that crashed after two steps picks up at the third."""
    orchestrator = approved_orchestrator
    # The crashed run: PROCESSING, account and address recorded, lease about to lapse.
    session = orchestrator._transition(
        approved_session, SessionState.PROCESSING, lease_until=clock()
    )
    for entity_type in ("account", "address"):
        created = registration_clients[entity_type].create({}, {})
        session = orchestrator._save(
            session.with_record(_success(entity_type, created.external_id, clock()), clock())
        )
    journal.clear()
    clock.advance(minutes=1)

    session = orchestrator.execute(session.session_id)

    assert session.state == SessionState.COMPLETED
    assert ("create", "account") not in journal
    assert ("create", "address") not in journal
    assert journal[0] == ("create", "contact")


def test_execute_twice_returns_the_completed_session(approved_orchestrator, approved_session, journal):
    first = approved_orchestrator.execute(approved_session.session_id)
    journal.clear()

    second = approved_orchestrator.execute(approved_session.session_id)

    assert journal == []
    assert second.state == SessionState.COMPLETED
    assert second.progress == first.progress


def test_execute_while_another_run_holds_the_lease(approved_orchestrator, approved_session):
    approved_orchestrator._transition(
        approved_session,
        SessionState.PROCESSING,
        lease_until=approved_orchestrator.clock() + approved_orchestrator.lease,
    )

    with pytest.raises(ConcurrentModificationError):
        approved_orchestrator.execute(approved_session.session_id)


# ============================================================================
# ROLLBACK
# ============================================================================


def test_required_failure_compensates_in_reverse_order(
    approved_orchestrator, approved_session, registration_clients, journal
):
    registration_clients["identity"].create_error = ConnectionError("connection reset")

    with pytest.raises(EntityCreationFailedError) as exc_info:
        approved_orchestrator.execute(approved_session.session_id)

    assert exc_info.value.entity_type == "identity"
    assert journal == [
        ("create", "account"),
        ("create", "address"),
        ("create", "contact"),
        ("create", "identity"),
        ("delete", "contact"),
        ("delete", "address"),
        ("delete", "account"),
    ]

    session = approved_orchestrator.status(approved_session.session_id)
    assert session.state == SessionState.FAILED
    assert _outcomes(session) == [
        ("account", EntityOutcome.COMPENSATED),
        ("address", EntityOutcome.COMPENSATED),
        ("contact", EntityOutcome.COMPENSATED),
        ("identity", EntityOutcome.FAILURE),
    ]
    assert session.last_error["entity_type"] == "identity"
    assert "connection reset" in session.last_error["cause"]
    for client in registration_clients.values():
        assert client.records == {}


def test_address_network_failure_after_account(approved_orchestrator, approved_session, registration_clients):
    """The root record is undone when the first dependent record cannot be created."""
    registration_clients["address"].create_error = ExternalStoreUnavailableError(
        "Dataverse POST osot_table_addresses failed after 3 attempts"
    )

    with pytest.raises(EntityCreationFailedError):
        approved_orchestrator.execute(approved_session.session_id)

    session = approved_orchestrator.status(approved_session.session_id)
    assert session.state == SessionState.FAILED
    assert _outcomes(session) == [
        ("account", EntityOutcome.COMPENSATED),
        ("address", EntityOutcome.FAILURE),
    ]
    assert [(r.entity_type, r.outcome) for r in session.history] == [
        ("account", EntityOutcome.SUCCESS),
        ("address", EntityOutcome.FAILURE),
        ("account", EntityOutcome.COMPENSATED),
    ]


def test_compensation_failure_is_recorded_and_rollback_continues(
    approved_orchestrator, approved_session, registration_clients, journal
):
    registration_clients["contact"].create_error = RuntimeError("400 Bad Request")
    registration_clients["address"].delete_error = RuntimeError("503 Service Unavailable")

    with pytest.raises(EntityCreationFailedError) as exc_info:
        approved_orchestrator.execute(approved_session.session_id)

    # The original failure is what the caller sees.
    assert exc_info.value.entity_type == "contact"
    assert ("delete", "account") in journal

    session = approved_orchestrator.status(approved_session.session_id)
    assert session.state == SessionState.FAILED
    assert _outcomes(session) == [
        ("account", EntityOutcome.COMPENSATED),
        ("address", EntityOutcome.SUCCESS),
        ("contact", EntityOutcome.FAILURE),
    ]
    assert (
        "address",
        EntityOutcome.COMPENSATION_FAILED,
    ) in [(r.entity_type, r.outcome) for r in session.history]


def test_failed_session_reports_the_original_failure_again(
    approved_orchestrator, approved_session, registration_clients, journal
):
    registration_clients["education"].create_error = RuntimeError("boom")
    with pytest.raises(EntityCreationFailedError):
        approved_orchestrator.execute(approved_session.session_id)
    journal.clear()

    with pytest.raises(EntityCreationFailedError) as exc_info:
        approved_orchestrator.execute(approved_session.session_id)

    assert exc_info.value.entity_type == "education"
    assert journal == []


def test_optional_failure_does_not_roll_back(
    approved_orchestrator, registration_data, registration_clients, journal
):
    registration_data["management"] = {"vendor": True}
    orchestrator = approved_orchestrator
    session = orchestrator.initiate(RegistrationBundle(**registration_data))
    orchestrator.validate(session.session_id)
    orchestrator.approve(session.session_id, "approve", decided_by="admin@test.example.com")
    registration_clients["management"].create_error = RuntimeError("timeout")

    session = orchestrator.execute(session.session_id)

    assert session.state == SessionState.COMPLETED
    assert not any(call[0] == "delete" for call in journal)
    assert session.progress_for("management").outcome == EntityOutcome.FAILURE
    assert "management" not in session.external_ids()


def test_interrupted_rollback_resumes_on_next_execute(
    approved_orchestrator, approved_session, registration_clients, journal, db
):
    """A crash after the failure was recorded finishes the rollback on retry."""
    orchestrator = approved_orchestrator
    session = orchestrator._transition(
        approved_session, SessionState.PROCESSING, lease_until=None
    )
    created = registration_clients["account"].create({}, {})
    now = orchestrator.clock()
    session = orchestrator._save(session.with_record(_success("account", created.external_id, now), now))
    session = orchestrator._save(session.with_record(_failure("address", now), now))
    journal.clear()

    with pytest.raises(EntityCreationFailedError):
        orchestrator.execute(session.session_id)

    assert journal == [("delete", "account")]
    final = session_repo.get_session(db, session.session_id, orchestrator.clock())
    assert final.state == SessionState.FAILED



def test_lease_is_renewed_after_every_step(
    approved_orchestrator, approved_session, registration_clients, clock, db
):
    """A slow run keeps its claim as long as steps keep completing."""
    orchestrator = approved_orchestrator
    rivals: list[Exception] = []

    def slow(client):
        create = client.create

        def wrapped(payload, parent_keys):
            clock.advance(minutes=4)
            if client.entity_type == "identity":
                rival = Orchestrator(db, orchestrator.flow, clients=registration_clients, clock=clock)
                with pytest.raises(ConcurrentModificationError) as exc_info:
                    rival.execute(approved_session.session_id)
                rivals.append(exc_info.value)
            return create(payload, parent_keys)

        client.create = wrapped

    for client in registration_clients.values():
        slow(client)

    session = orchestrator.execute(approved_session.session_id)

    assert session.state == SessionState.COMPLETED
    assert len(rivals) == 1
    assert len(registration_clients["identity"].create_calls) == 1


def test_network_failure_after_identity_rolls_identity_back(
    db: Session, registration_clients, emitter, clock, registration_data, journal
):
    flow = replace(
        registration_flow(settings),
        require_email_verification=False,
        require_admin_approval=False,
        steps=(CreationStep("identity", "identity"), CreationStep("address", "address")),
    )
    orchestrator = Orchestrator(db, flow, clients=registration_clients, emitter=emitter, clock=clock)
    session = orchestrator.initiate(RegistrationBundle(**registration_data))
    orchestrator.validate(session.session_id)
    orchestrator.approve(session.session_id, "approve", decided_by="admin@test.example.com")
    registration_clients["address"].create_error = ConnectionError("network unreachable")

    with pytest.raises(EntityCreationFailedError):
        orchestrator.execute(session.session_id)

    failed = orchestrator.status(session.session_id)
    assert failed.state == SessionState.FAILED
    assert _outcomes(failed) == [
        ("identity", EntityOutcome.COMPENSATED),
        ("address", EntityOutcome.FAILURE),
    ]
    assert journal == [("create", "identity"), ("create", "address"), ("delete", "identity")]
