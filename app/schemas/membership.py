"""Staged data for the membership enrolment flow."""

from pydantic import BaseModel, ConfigDict, Field

from app.domain.membership import MembershipCategory


class CategoryData(BaseModel):
    category: MembershipCategory
    membership_year: int
    parental_leave: bool = False


class EmploymentData(BaseModel):
    employment_status: str = Field(..., min_length=1, max_length=64)
    role_descriptor: str = Field(..., min_length=1, max_length=255)
    practice_years: int | None = Field(None, ge=0)
    work_hours: list[str] = Field(default_factory=list)
    position_funding: list[str] = Field(default_factory=list)
    employment_benefits: list[str] = Field(default_factory=list)
    earnings: str | None = None


class PracticesData(BaseModel):
    clients_age: list[str] = Field(..., min_length=1)
    practice_area: list[str] = Field(default_factory=list)
    practice_settings: list[str] = Field(default_factory=list)
    practice_services: list[str] = Field(default_factory=list)
    preceptor_declaration: bool | None = None


class PreferencesData(BaseModel):
    practice_promotion: bool | None = None
    search_tools: list[str] = Field(default_factory=list)
    psychotherapy_supervision: list[str] = Field(default_factory=list)
    third_parties: list[str] = Field(default_factory=list)


class MembershipBundle(BaseModel):
    """Membership records for an existing account."""

    model_config = ConfigDict(extra="forbid")

    account_id: str | None = Field(None, min_length=1, max_length=64)
    declaration: bool | None = None
    category: CategoryData | None = None
    employment: EmploymentData | None = None
    practices: PracticesData | None = None
    preferences: PreferencesData | None = None
