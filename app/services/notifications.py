"""Lifecycle event subscribers: audit log and applicant/admin emails."""

import logging

import aiosmtplib
from fastapi import BackgroundTasks

from app.core.config import settings
from app.core.security import create_email_verification_token
from app.domain.states import SessionState
from app.events.emitter import LifecycleEvent
from app.services.email import (
    send_approval_request_email,
    send_registration_outcome_email,
    send_verification_email,
)
from app.services.flows import REGISTRATION

logger = logging.getLogger(__name__)

_OUTCOME_STATES = {
    SessionState.COMPLETED.value,
    SessionState.REJECTED.value,
    SessionState.FAILED.value,
}


def audit_log_subscriber(event: LifecycleEvent) -> None:
    logger.info(
        "%s session=%s %s -> %s",
        event.name,
        event.session_id,
        event.from_state,
        event.to_state,
    )


async def _deliver(send, *args) -> None:
    try:
        await send(*args)
    except (ValueError, aiosmtplib.SMTPException) as e:
        logger.error("Failed to send %s: %s", send.__name__, e)


class EmailNotificationSubscriber:
    """Schedules registration emails to go out after the response is sent."""

    def __init__(self, background_tasks: BackgroundTasks):
        self.background_tasks = background_tasks

    def __call__(self, event: LifecycleEvent) -> None:
        if event.flow != REGISTRATION:
            return

        account = event.payload_snapshot.get("staged_data", {}).get("account") or {}
        email = account.get("email")
        first_name = account.get("first_name", "")
        if not email:
            return

        if event.to_state == SessionState.EMAIL_VERIFICATION_PENDING.value:
            token = create_email_verification_token(event.session_id)
            self.background_tasks.add_task(
                _deliver, send_verification_email, email, first_name, token
            )
        elif event.to_state == SessionState.PENDING_APPROVAL.value:
            if not settings.admin_notification_email:
                logger.info("No ADMIN_NOTIFICATION_EMAIL, not announcing %s", event.session_id)
                return
            self.background_tasks.add_task(
                _deliver,
                send_approval_request_email,
                settings.admin_notification_email,
                event.session_id,
                f"{first_name} {account.get('last_name', '')}".strip(),
                email,
            )
        elif event.to_state in _OUTCOME_STATES:
            self.background_tasks.add_task(
                _deliver, send_registration_outcome_email, email, first_name, event.to_state
            )
