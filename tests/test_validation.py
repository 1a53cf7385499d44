from copy import deepcopy
from datetime import date

from app.domain.validation import (
    INCONSISTENT,
    INVALID_FOR_COUNTRY,
    INVALID_FORMAT,
    MEMBERSHIP_CHECKS,
    MISMATCH,
    NOT_ALLOWED,
    OUT_OF_RANGE,
    REGISTRATION_CHECKS,
    REQUIRED,
    UNDERAGE,
    run_checks,
)

AS_OF = date(2026, 3, 2)


def _codes(violations) -> list[tuple[str, str]]:
    return [(v.field, v.code) for v in violations]


def _membership(year: int = 2026) -> dict:
    return {
        "account_id": "acct-0001",
        "declaration": True,
        "category": {"category": 1, "membership_year": year},
        "employment": {"employment_status": "full_time", "role_descriptor": "clinician"},
        "practices": {"clients_age": ["adults"]},
    }


# ============================================================================
# REGISTRATION
# ============================================================================


def test_valid_registration_has_no_violations(registration_data):
    assert run_checks(REGISTRATION_CHECKS, registration_data, AS_OF) == []


def test_missing_declaration_is_the_only_violation(registration_data):
    """A complete bundle without the declaration reports exactly that."""
    del registration_data["declaration"]

    violations = run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)

    assert _codes(violations) == [("declaration", REQUIRED)]


def test_declaration_must_be_true(registration_data):
    registration_data["declaration"] = False
    assert _codes(run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)) == [
        ("declaration", REQUIRED)
    ]


def test_all_independent_violations_are_reported_together(registration_data):
    registration_data["address"]["postal_code"] = "12345"
    del registration_data["declaration"]
    registration_data["education"]["category"] = "ota"

    violations = run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)

    assert sorted(_codes(violations)) == sorted(
        [
            ("address.postal_code", INVALID_FORMAT),
            ("declaration", REQUIRED),
            ("education.category", MISMATCH),
        ]
    )


def test_empty_bundle_reports_every_missing_slot():
    violations = run_checks(REGISTRATION_CHECKS, {}, AS_OF)
    assert _codes(violations) == [
        ("account", REQUIRED),
        ("address", REQUIRED),
        ("contact", REQUIRED),
        ("identity", REQUIRED),
        ("education", REQUIRED),
        ("education_type", REQUIRED),
        ("declaration", REQUIRED),
    ]


def test_graduation_before_plausible_age_is_inconsistent(registration_data):
    registration_data["education"]["graduation_year"] = 1995
    assert ("education.graduation_year", INCONSISTENT) in _codes(
        run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)
    )


def test_graduation_in_the_future_is_inconsistent(registration_data):
    registration_data["education"]["graduation_year"] = 2027
    assert ("education.graduation_year", INCONSISTENT) in _codes(
        run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)
    )


def test_unknown_canadian_province(registration_data):
    registration_data["address"]["province"] = "XX"
    assert _codes(run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)) == [
        ("address.province", INVALID_FOR_COUNTRY)
    ]


def test_us_address_uses_zip_codes(registration_data):
    registration_data["address"].update(
        {"province": "NY", "postal_code": "10001", "country": "US"}
    )
    assert run_checks(REGISTRATION_CHECKS, registration_data, AS_OF) == []


def test_other_countries_skip_postal_code_format(registration_data):
    registration_data["address"].update(
        {"province": "Bavaria", "postal_code": "80331", "country": "DE"}
    )
    registration_data["contact"]["phone"] = "+49 89 1234567"
    assert run_checks(REGISTRATION_CHECKS, registration_data, AS_OF) == []


def test_contact_email_must_match_account_case_insensitively(registration_data):
    registration_data["contact"]["email"] = "ADA@EXAMPLE.COM"
    assert run_checks(REGISTRATION_CHECKS, registration_data, AS_OF) == []

    registration_data["contact"]["email"] = "someone@example.com"
    assert _codes(run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)) == [
        ("contact.email", MISMATCH)
    ]


def test_north_american_phone_needs_ten_digits(registration_data):
    registration_data["contact"]["phone"] = "416-555-01"
    assert _codes(run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)) == [
        ("contact.phone", INVALID_FOR_COUNTRY)
    ]


def test_underage_applicant(registration_data):
    registration_data["account"]["date_of_birth"] = "2010-01-01"
    registration_data["education"]["graduation_year"] = 2026
    assert ("account.date_of_birth", UNDERAGE) in _codes(
        run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)
    )


def test_eighteenth_birthday_is_eligible(registration_data):
    registration_data["account"]["date_of_birth"] = "2008-03-02"
    registration_data["education"]["graduation_year"] = 2025
    assert ("account.date_of_birth", UNDERAGE) not in _codes(
        run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)
    )


def test_checks_do_not_mutate_the_bundle(registration_data):
    before = deepcopy(registration_data)
    run_checks(REGISTRATION_CHECKS, registration_data, AS_OF)
    assert registration_data == before


# ============================================================================
# MEMBERSHIP
# ============================================================================


def test_valid_membership_has_no_violations():
    assert run_checks(MEMBERSHIP_CHECKS, _membership(), AS_OF) == []


def test_full_membership_requires_employment_and_practices():
    bundle = _membership()
    del bundle["employment"]
    del bundle["practices"]
    assert _codes(run_checks(MEMBERSHIP_CHECKS, bundle, AS_OF)) == [
        ("employment", REQUIRED),
        ("practices", REQUIRED),
    ]


def test_student_membership_needs_no_employment():
    bundle = _membership()
    bundle["category"]["category"] = 3
    del bundle["employment"]
    del bundle["practices"]
    assert run_checks(MEMBERSHIP_CHECKS, bundle, AS_OF) == []


def test_inactive_members_cannot_set_preferences():
    bundle = {
        "account_id": "acct-0001",
        "declaration": True,
        "category": {"category": 6, "membership_year": 2026},
        "preferences": {"practice_promotion": True},
    }
    assert _codes(run_checks(MEMBERSHIP_CHECKS, bundle, AS_OF)) == [
        ("preferences", NOT_ALLOWED)
    ]


def test_membership_year_must_be_current_or_next():
    assert run_checks(MEMBERSHIP_CHECKS, _membership(2027), AS_OF) == []
    assert _codes(run_checks(MEMBERSHIP_CHECKS, _membership(2025), AS_OF)) == [
        ("category.membership_year", OUT_OF_RANGE)
    ]


def test_membership_without_account_or_category():
    violations = run_checks(MEMBERSHIP_CHECKS, {"declaration": True}, AS_OF)
    assert _codes(violations) == [("account_id", REQUIRED), ("category", REQUIRED)]
