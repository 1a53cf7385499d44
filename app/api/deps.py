from fastapi import BackgroundTasks, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.clients.dataverse import DataverseClient
from app.clients.entities import (
    EntityCreationClient,
    build_membership_clients,
    build_registration_clients,
)
from app.core.config import settings
from app.core.security import decode_token
from app.db import SessionLocal
from app.db.models.staff import User
from app.events.emitter import EventEmitter
from app.repositories.user import get_user_by_id
from app.services.flows import membership_flow, registration_flow
from app.services.notifications import EmailNotificationSubscriber, audit_log_subscriber
from app.services.orchestrator import Orchestrator

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Get the current authenticated user from JWT token."""
    payload = decode_token(token)
    if payload is None:
        raise _credentials_error()

    # Email verification tokens share the signing key; only access tokens log in.
    if payload.get("type") != "access":
        raise _credentials_error()

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise _credentials_error()

    user = get_user_by_id(db, user_id)
    if user is None:
        raise _credentials_error("User not found")

    return user


def require_roles(*role_names: str):
    """
    Create a dependency that requires the current user to have one of the specified roles.

    Example:
        Depends(require_roles("admin"))
        Depends(require_roles("admin", "staff"))
    """
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if not current_user.has_role(*role_names):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return current_user

    return role_checker


def get_event_emitter(background_tasks: BackgroundTasks) -> EventEmitter:
    return EventEmitter([audit_log_subscriber, EmailNotificationSubscriber(background_tasks)])


def get_dataverse_client():
    client = DataverseClient()
    try:
        yield client
    finally:
        client.close()


def get_registration_clients(
    dataverse: DataverseClient = Depends(get_dataverse_client),
) -> dict[str, EntityCreationClient]:
    return build_registration_clients(dataverse)


def get_membership_clients(
    dataverse: DataverseClient = Depends(get_dataverse_client),
) -> dict[str, EntityCreationClient]:
    return build_membership_clients(dataverse)


def get_registration_orchestrator(
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_event_emitter),
    clients: dict[str, EntityCreationClient] = Depends(get_registration_clients),
) -> Orchestrator:
    return Orchestrator(db, registration_flow(settings), clients=clients, emitter=emitter)


def get_membership_orchestrator(
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_event_emitter),
    clients: dict[str, EntityCreationClient] = Depends(get_membership_clients),
) -> Orchestrator:
    return Orchestrator(db, membership_flow(settings), clients=clients, emitter=emitter)
