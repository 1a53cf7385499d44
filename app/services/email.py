import logging
from email.mime.text import MIMEText

import aiosmtplib

from app.core.config import settings

logger = logging.getLogger(__name__)


def _smtp_configured() -> bool:
    return all([
        settings.smtp_host,
        settings.smtp_port,
        settings.smtp_user,
        settings.smtp_password,
        settings.smtp_from_email,
    ])


async def _send(to_email: str, subject: str, text: str) -> None:
    """
    Send a plain-text email.

    Raises:
        ValueError: If SMTP is not configured
    """
    if not _smtp_configured():
        logger.warning("SMTP not configured - cannot send '%s' to %s", subject, to_email)
        raise ValueError("SMTP is not configured. Please configure SMTP settings in .env file.")

    message = MIMEText(text, "plain")
    message["Subject"] = subject
    message["From"] = settings.smtp_from_email
    message["To"] = to_email

    send_kwargs = {
        "hostname": settings.smtp_host,
        "port": settings.smtp_port,
        "username": settings.smtp_user,
        "password": settings.smtp_password,
    }

    if settings.smtp_use_tls:
        # Port 465 uses direct TLS, everything else STARTTLS
        if settings.smtp_port == 465:
            send_kwargs["use_tls"] = True
        else:
            send_kwargs["start_tls"] = True

    await aiosmtplib.send(message, **send_kwargs)


async def send_verification_email(email: str, first_name: str, token: str) -> None:
    """Ask the applicant to confirm their email address."""
    if settings.frontend_url:
        action = (
            "Please confirm your email address by opening this link:\n"
            f"{settings.frontend_url.rstrip('/')}/verify-email?token={token}"
        )
    else:
        action = f"Your email verification code is:\n{token}"

    text = f"""
Hello {first_name},

Thank you for registering.

{action}

This link will expire in {settings.email_verification_token_expire_minutes // 60} hours.

If you did not register, please ignore this email.
"""
    await _send(email, "Confirm your email address", text)


async def send_approval_request_email(
    admin_email: str, session_id: str, applicant_name: str, applicant_email: str
) -> None:
    """Tell the administrators a registration is waiting for a decision."""
    text = f"""
A new registration is waiting for approval.

Applicant: {applicant_name} <{applicant_email}>
Registration: {session_id}

It will expire if no decision is made within {settings.registration_approval_window_days} days.
"""
    await _send(admin_email, "Registration pending approval", text)


async def send_registration_outcome_email(email: str, first_name: str, outcome: str) -> None:
    """Tell the applicant how their registration ended."""
    messages = {
        "completed": "Your registration is complete and your account has been created.",
        "rejected": "Unfortunately your registration was not approved.",
        "failed": (
            "We could not complete your registration because of a technical problem. "
            "Please try again later."
        ),
    }
    text = f"""
Hello {first_name},

{messages[outcome]}
"""
    await _send(email, f"Your registration has been {outcome}", text)
