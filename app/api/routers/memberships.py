from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from app.api.deps import get_membership_orchestrator, require_roles
from app.api.exception_handlers import entity_creation_failed_error_handler
from app.db.models.staff import User
from app.errors import EntityCreationFailedError
from app.schemas.membership import MembershipBundle
from app.schemas.session import (
    CancelRequest,
    ExecutionResult,
    PaymentConfirmation,
    PurgeResult,
    SessionSnapshot,
)
from app.services.orchestrator import Orchestrator

router = APIRouter(prefix="/memberships", tags=["memberships"])


@router.post("", response_model=SessionSnapshot, status_code=status.HTTP_201_CREATED)
def initiate_membership(
    bundle: MembershipBundle,
    orchestrator: Orchestrator = Depends(get_membership_orchestrator),
):
    """Start a membership enrolment for an existing account."""
    return SessionSnapshot.model_validate(orchestrator.initiate(bundle))


@router.post("/maintenance/purge", response_model=PurgeResult)
def purge_expired_memberships(
    orchestrator: Orchestrator = Depends(get_membership_orchestrator),
    current_user: User = Depends(require_roles("admin")),
):
    return PurgeResult(purged=orchestrator.purge_expired())


@router.post("/{session_id}/stage", response_model=SessionSnapshot)
def stage_membership_data(
    session_id: str,
    bundle: MembershipBundle,
    orchestrator: Orchestrator = Depends(get_membership_orchestrator),
):
    return SessionSnapshot.model_validate(orchestrator.stage(session_id, bundle))


@router.post("/{session_id}/validate", response_model=SessionSnapshot)
def validate_membership(
    session_id: str,
    bundle: MembershipBundle | None = None,
    orchestrator: Orchestrator = Depends(get_membership_orchestrator),
):
    """Validate the staged membership data and calculate its price."""
    return SessionSnapshot.model_validate(orchestrator.validate(session_id, bundle))


@router.post("/{session_id}/payment", response_model=SessionSnapshot)
def request_membership_payment(
    session_id: str,
    orchestrator: Orchestrator = Depends(get_membership_orchestrator),
):
    """
    Open the payment step. Categories that cost nothing go straight to
    payment confirmed.
    """
    return SessionSnapshot.model_validate(orchestrator.request_payment(session_id))


@router.post("/{session_id}/payment/confirm", response_model=SessionSnapshot)
def confirm_membership_payment(
    session_id: str,
    confirmation: PaymentConfirmation,
    orchestrator: Orchestrator = Depends(get_membership_orchestrator),
    current_user: User = Depends(require_roles("admin")),
):
    """Record a captured payment. Only admin users can confirm payments."""
    session = orchestrator.confirm_payment(session_id, confirmation.payment_reference)
    return SessionSnapshot.model_validate(session)


@router.post("/{session_id}/execute", response_model=ExecutionResult)
def execute_membership(
    session_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: Orchestrator = Depends(get_membership_orchestrator),
    current_user: User = Depends(require_roles("admin")),
):
    try:
        return ExecutionResult.from_session(orchestrator.execute(session_id))
    except EntityCreationFailedError as exc:
        response = entity_creation_failed_error_handler(request, exc)
        response.background = background_tasks
        return response


@router.get("/{session_id}", response_model=SessionSnapshot)
def get_membership_status(
    session_id: str,
    orchestrator: Orchestrator = Depends(get_membership_orchestrator),
):
    return SessionSnapshot.model_validate(orchestrator.status(session_id))


@router.post("/{session_id}/cancel", response_model=SessionSnapshot)
def cancel_membership(
    session_id: str,
    request: CancelRequest | None = None,
    orchestrator: Orchestrator = Depends(get_membership_orchestrator),
):
    reason = request.reason if request else None
    return SessionSnapshot.model_validate(orchestrator.cancel(session_id, reason))
