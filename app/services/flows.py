"""The two onboarding flows: what they stage, check, create and when they expire.

A flow is data. The orchestrator and the sequencer are the same for both;
only the definitions below differ.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Mapping

from pydantic import BaseModel

from app.core.config import Settings
from app.domain.membership import (
    EMPLOYMENT_REQUIRED_CATEGORIES,
    PRACTICES_REQUIRED_CATEGORIES,
    MembershipCategory,
)
from app.domain.states import APPROVAL_GATED, PAYMENT_GATED, SessionState, StateMachine
from app.domain.validation import MEMBERSHIP_CHECKS, REGISTRATION_CHECKS, Check
from app.schemas.membership import MembershipBundle
from app.schemas.registration import RegistrationBundle

REGISTRATION = "registration"
MEMBERSHIP = "membership"

Bundle = Mapping[str, Any]


@dataclass(frozen=True)
class CreationStep:
    """One record to create, read from ``slot`` of the staged bundle.

    ``required`` is either a flag or a predicate over the bundle, for records
    that only some applicants must provide.
    """

    entity_type: str
    slot: str
    required: bool | Callable[[Bundle], bool] = True

    def is_required(self, bundle: Bundle) -> bool:
        if callable(self.required):
            return self.required(bundle)
        return self.required


@dataclass(frozen=True)
class FlowDefinition:
    name: str
    machine: StateMachine
    initial_state: SessionState
    # States in which staged data may still change; frozen afterwards.
    editable_states: frozenset[SessionState]
    # States from which execute may start entity creation.
    execute_from: frozenset[SessionState]
    ttl: timedelta
    steps: tuple[CreationStep, ...]
    checks: tuple[Check, ...]
    bundle_model: type[BaseModel]
    natural_key: Callable[[Bundle], str | None]
    natural_key_field: str
    parent_keys: Callable[[Bundle], dict[str, str]] = field(default=lambda bundle: {})
    require_email_verification: bool = False
    max_verification_resends: int = 0
    require_admin_approval: bool = False
    approval_window: timedelta | None = None
    paid_window: timedelta | None = None

    def required_entity_types(self, bundle: Bundle) -> set[str]:
        return {step.entity_type for step in self.steps if step.is_required(bundle)}


def _account_email(bundle: Bundle) -> str | None:
    email = (bundle.get("account") or {}).get("email")
    return email.strip().lower() if email else None


def _account_id(bundle: Bundle) -> str | None:
    return bundle.get("account_id") or None


def _category(bundle: Bundle) -> MembershipCategory | None:
    value = (bundle.get("category") or {}).get("category")
    try:
        return MembershipCategory(int(value))
    except (TypeError, ValueError):
        return None


def _employment_required(bundle: Bundle) -> bool:
    return _category(bundle) in EMPLOYMENT_REQUIRED_CATEGORIES


def _practices_required(bundle: Bundle) -> bool:
    return _category(bundle) in PRACTICES_REQUIRED_CATEGORIES


def registration_flow(settings: Settings) -> FlowDefinition:
    return FlowDefinition(
        name=REGISTRATION,
        machine=APPROVAL_GATED,
        initial_state=SessionState.STAGED,
        editable_states=frozenset({SessionState.STAGED}),
        execute_from=frozenset({SessionState.APPROVED}),
        ttl=timedelta(hours=settings.registration_session_ttl_hours),
        steps=(
            CreationStep("account", "account"),
            CreationStep("address", "address"),
            CreationStep("contact", "contact"),
            CreationStep("identity", "identity"),
            CreationStep("education", "education"),
            CreationStep("management", "management", required=False),
        ),
        checks=REGISTRATION_CHECKS,
        bundle_model=RegistrationBundle,
        natural_key=_account_email,
        natural_key_field="account.email",
        require_email_verification=settings.registration_require_email_verification,
        max_verification_resends=settings.email_verification_max_resends,
        require_admin_approval=settings.registration_require_admin_approval,
        approval_window=timedelta(days=settings.registration_approval_window_days),
    )


def membership_flow(settings: Settings) -> FlowDefinition:
    return FlowDefinition(
        name=MEMBERSHIP,
        machine=PAYMENT_GATED,
        initial_state=SessionState.INITIATED,
        editable_states=frozenset({SessionState.INITIATED, SessionState.COLLECTING_DATA}),
        execute_from=frozenset({SessionState.PAYMENT_CONFIRMED}),
        ttl=timedelta(hours=settings.membership_session_ttl_hours),
        steps=(
            CreationStep("category", "category"),
            CreationStep("employment", "employment", required=_employment_required),
            CreationStep("practices", "practices", required=_practices_required),
            CreationStep("preferences", "preferences", required=False),
        ),
        checks=MEMBERSHIP_CHECKS,
        bundle_model=MembershipBundle,
        natural_key=_account_id,
        natural_key_field="account_id",
        # Membership records hang off an account that already exists.
        parent_keys=lambda bundle: {"account": bundle["account_id"]} if bundle.get("account_id") else {},
        paid_window=timedelta(hours=settings.membership_paid_window_hours),
    )
