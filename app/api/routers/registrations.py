from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from app.api.deps import get_registration_orchestrator, require_roles
from app.api.exception_handlers import entity_creation_failed_error_handler
from app.db.models.staff import User
from app.errors import EntityCreationFailedError
from app.schemas.registration import RegistrationBundle
from app.schemas.session import (
    ApprovalDecision,
    CancelRequest,
    EmailVerificationRequest,
    ExecutionResult,
    PurgeResult,
    SessionSnapshot,
)
from app.services.orchestrator import Orchestrator

router = APIRouter(prefix="/registrations", tags=["registrations"])


@router.post("", response_model=SessionSnapshot, status_code=status.HTTP_201_CREATED)
def initiate_registration(
    bundle: RegistrationBundle,
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
):
    """
    Start a registration. The returned session id is the applicant's handle
    for every later step.
    """
    return SessionSnapshot.model_validate(orchestrator.initiate(bundle))


@router.post("/maintenance/purge", response_model=PurgeResult)
def purge_expired_registrations(
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
    current_user: User = Depends(require_roles("admin")),
):
    """Delete expired registration sessions. Only admin users can purge."""
    return PurgeResult(purged=orchestrator.purge_expired())


@router.post("/{session_id}/stage", response_model=SessionSnapshot)
def stage_registration_data(
    session_id: str,
    bundle: RegistrationBundle,
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
):
    """Replace staged slots without validating them."""
    return SessionSnapshot.model_validate(orchestrator.stage(session_id, bundle))


@router.post("/{session_id}/validate", response_model=SessionSnapshot)
def validate_registration(
    session_id: str,
    bundle: RegistrationBundle | None = None,
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
):
    """
    Merge the optional partial bundle and validate everything staged.
    Returns 422 with every violation when validation fails.
    """
    return SessionSnapshot.model_validate(orchestrator.validate(session_id, bundle))


@router.post("/{session_id}/verify-email", response_model=SessionSnapshot)
def verify_registration_email(
    session_id: str,
    request: EmailVerificationRequest,
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
):
    return SessionSnapshot.model_validate(orchestrator.verify_email(session_id, request.token))


@router.post("/{session_id}/resend-verification", response_model=SessionSnapshot)
def resend_registration_verification(
    session_id: str,
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
):
    """
    Send the verification email again with a new token.
    Returns 429 once the resend allowance is used up.
    """
    return SessionSnapshot.model_validate(orchestrator.resend_verification(session_id))


@router.post("/{session_id}/approve", response_model=SessionSnapshot)
def decide_registration(
    session_id: str,
    decision: ApprovalDecision,
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
    current_user: User = Depends(require_roles("admin")),
):
    """Approve or reject a pending registration. Only admin users can decide."""
    session = orchestrator.approve(
        session_id,
        decision.decision,
        decided_by=current_user.email,
        reason=decision.reason,
    )
    return SessionSnapshot.model_validate(session)


@router.post("/{session_id}/execute", response_model=ExecutionResult)
def execute_registration(
    session_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
    current_user: User = Depends(require_roles("admin")),
):
    """
    Create the account records of an approved registration.
    Safe to repeat: records already created are never created again.
    """
    try:
        return ExecutionResult.from_session(orchestrator.execute(session_id))
    except EntityCreationFailedError as exc:
        # The failure email is queued on this request's background tasks.
        response = entity_creation_failed_error_handler(request, exc)
        response.background = background_tasks
        return response


@router.get("/{session_id}", response_model=SessionSnapshot)
def get_registration_status(
    session_id: str,
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
):
    return SessionSnapshot.model_validate(orchestrator.status(session_id))


@router.post("/{session_id}/cancel", response_model=SessionSnapshot)
def cancel_registration(
    session_id: str,
    request: CancelRequest | None = None,
    orchestrator: Orchestrator = Depends(get_registration_orchestrator),
):
    reason = request.reason if request else None
    return SessionSnapshot.model_validate(orchestrator.cancel(session_id, reason))
