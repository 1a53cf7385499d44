"""Cross-entity validation of a staged bundle.

Every check is a pure function of the bundle slices it cares about and returns
zero or more violations. ``run_checks`` always runs every check, so a caller
sees all problems at once. Checks skip silently when the slices they need are
absent; the required-slot check reports those.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Callable, Mapping, Sequence

from app.domain.membership import (
    EMPLOYMENT_REQUIRED_CATEGORIES,
    PRACTICES_REQUIRED_CATEGORIES,
    MembershipCategory,
)
from app.domain.session import Violation

Bundle = Mapping[str, Any]
Check = Callable[[Bundle, date], list[Violation]]

REQUIRED = "REQUIRED"
MISMATCH = "MISMATCH"
INCONSISTENT = "INCONSISTENT"
INVALID_FORMAT = "INVALID_FORMAT"
INVALID_FOR_COUNTRY = "INVALID_FOR_COUNTRY"
UNDERAGE = "UNDERAGE"
OUT_OF_RANGE = "OUT_OF_RANGE"
NOT_ALLOWED = "NOT_ALLOWED"

MINIMUM_AGE = 18
MINIMUM_GRADUATION_AGE = 16

CANADIAN_PROVINCES = frozenset(
    {"AB", "BC", "MB", "NB", "NL", "NS", "NT", "NU", "ON", "PE", "QC", "SK", "YT"}
)

POSTAL_CODE_PATTERNS = {
    "CA": re.compile(r"^[A-Za-z]\d[A-Za-z][ -]?\d[A-Za-z]\d$"),
    "US": re.compile(r"^\d{5}(-\d{4})?$"),
}

NANP_COUNTRIES = frozenset({"CA", "US"})

REGISTRATION_REQUIRED_SLOTS = ("account", "address", "contact", "identity", "education")


def _as_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


def _age_on(birth: date, as_of: date) -> int:
    return as_of.year - birth.year - ((as_of.month, as_of.day) < (birth.month, birth.day))


def _country(slice_: Mapping[str, Any]) -> str:
    return str(slice_.get("country") or "").upper()


# ---------------------------------------------------------------------------
# Registration (approval-gated) checks
# ---------------------------------------------------------------------------


def check_required_slots(bundle: Bundle, as_of: date) -> list[Violation]:
    violations = [
        Violation(slot, REQUIRED, f"{slot.capitalize()} information is required")
        for slot in REGISTRATION_REQUIRED_SLOTS
        if not bundle.get(slot)
    ]
    if not bundle.get("education_type"):
        violations.append(
            Violation("education_type", REQUIRED, "Education type (ot or ota) is required")
        )
    return violations


def check_declaration(bundle: Bundle, as_of: date) -> list[Violation]:
    if bundle.get("declaration") is True:
        return []
    return [Violation("declaration", REQUIRED, "The registration declaration must be accepted")]


def check_identity_education(bundle: Bundle, as_of: date) -> list[Violation]:
    education = bundle.get("education")
    if not education:
        return []

    violations = []
    education_type = bundle.get("education_type")
    if education_type and education.get("category") != education_type:
        violations.append(
            Violation(
                "education.category",
                MISMATCH,
                f"Education record is '{education.get('category')}' but education type is '{education_type}'",
            )
        )

    graduation_year = education.get("graduation_year")
    birth = _as_date((bundle.get("account") or {}).get("date_of_birth"))
    if graduation_year is not None:
        if graduation_year > as_of.year:
            violations.append(
                Violation(
                    "education.graduation_year",
                    INCONSISTENT,
                    "Graduation year cannot be in the future",
                )
            )
        elif birth is not None and graduation_year < birth.year + MINIMUM_GRADUATION_AGE:
            violations.append(
                Violation(
                    "education.graduation_year",
                    INCONSISTENT,
                    "Graduation year is inconsistent with the date of birth",
                )
            )
    return violations


def check_address_geography(bundle: Bundle, as_of: date) -> list[Violation]:
    address = bundle.get("address")
    if not address:
        return []

    violations = []
    country = _country(address)
    pattern = POSTAL_CODE_PATTERNS.get(country)
    postal_code = str(address.get("postal_code") or "").strip()
    if pattern is not None and not pattern.match(postal_code):
        violations.append(
            Violation(
                "address.postal_code",
                INVALID_FORMAT,
                f"Postal code '{postal_code}' is not valid for {country}",
            )
        )

    province = str(address.get("province") or "").upper()
    if country == "CA" and province not in CANADIAN_PROVINCES:
        violations.append(
            Violation(
                "address.province",
                INVALID_FOR_COUNTRY,
                f"'{province}' is not a Canadian province or territory",
            )
        )
    return violations


def check_contact(bundle: Bundle, as_of: date) -> list[Violation]:
    contact = bundle.get("contact")
    if not contact:
        return []

    violations = []
    account_email = (bundle.get("account") or {}).get("email")
    contact_email = contact.get("email")
    if account_email and contact_email and account_email.lower() != contact_email.lower():
        violations.append(
            Violation(
                "contact.email",
                MISMATCH,
                "Contact email must match the account email",
            )
        )

    country = _country(bundle.get("address") or {})
    phone = contact.get("phone")
    if phone and country in NANP_COUNTRIES:
        digits = re.sub(r"\D", "", phone)
        if not (len(digits) == 10 or (len(digits) == 11 and digits.startswith("1"))):
            violations.append(
                Violation(
                    "contact.phone",
                    INVALID_FOR_COUNTRY,
                    f"Phone number is not a valid {country} number",
                )
            )
    return violations


def check_eligibility(bundle: Bundle, as_of: date) -> list[Violation]:
    birth = _as_date((bundle.get("account") or {}).get("date_of_birth"))
    if birth is None or _age_on(birth, as_of) >= MINIMUM_AGE:
        return []
    return [
        Violation(
            "account.date_of_birth",
            UNDERAGE,
            f"Applicants must be at least {MINIMUM_AGE} years old",
        )
    ]


REGISTRATION_CHECKS: tuple[Check, ...] = (
    check_required_slots,
    check_declaration,
    check_identity_education,
    check_address_geography,
    check_contact,
    check_eligibility,
)


# ---------------------------------------------------------------------------
# Membership (payment-gated) checks
# ---------------------------------------------------------------------------


def _category(bundle: Bundle) -> MembershipCategory | None:
    value = (bundle.get("category") or {}).get("category")
    try:
        return MembershipCategory(int(value))
    except (TypeError, ValueError):
        return None


def check_membership_required(bundle: Bundle, as_of: date) -> list[Violation]:
    violations = []
    if not bundle.get("account_id"):
        violations.append(Violation("account_id", REQUIRED, "An existing account is required"))
    if not bundle.get("category"):
        violations.append(Violation("category", REQUIRED, "A membership category is required"))
    return violations


def check_category_requirements(bundle: Bundle, as_of: date) -> list[Violation]:
    category = _category(bundle)
    if category is None:
        return []

    violations = []
    name = category.name.capitalize()
    if category in EMPLOYMENT_REQUIRED_CATEGORIES and not bundle.get("employment"):
        violations.append(
            Violation("employment", REQUIRED, f"Employment information is required for {name} members")
        )
    if category in PRACTICES_REQUIRED_CATEGORIES and not bundle.get("practices"):
        violations.append(
            Violation("practices", REQUIRED, f"Practice information is required for {name} members")
        )
    if category == MembershipCategory.INACTIVE and bundle.get("preferences"):
        violations.append(
            Violation("preferences", NOT_ALLOWED, "Inactive members cannot set preferences")
        )
    return violations


def check_membership_year(bundle: Bundle, as_of: date) -> list[Violation]:
    year = (bundle.get("category") or {}).get("membership_year")
    if year is None or year in (as_of.year, as_of.year + 1):
        return []
    return [
        Violation(
            "category.membership_year",
            OUT_OF_RANGE,
            f"Membership year must be {as_of.year} or {as_of.year + 1}",
        )
    ]


MEMBERSHIP_CHECKS: tuple[Check, ...] = (
    check_membership_required,
    check_declaration,
    check_category_requirements,
    check_membership_year,
)


def run_checks(checks: Sequence[Check], bundle: Bundle, as_of: date) -> list[Violation]:
    """Run every check in order and collect all violations."""
    violations: list[Violation] = []
    for check in checks:
        violations.extend(check(bundle, as_of))
    return violations
