"""Staged data for the account registration flow.

Shapes only: field types and lengths. Business rules that span slots are
checked by the cross-entity validator when the session is validated.
"""

from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

EducationType = Literal["ot", "ota"]


class AccountData(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    date_of_birth: date
    mobile_phone: str | None = Field(None, max_length=32)


class AddressData(BaseModel):
    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=255)
    province: str = Field(..., min_length=1, max_length=64)
    postal_code: str = Field(..., min_length=1, max_length=16)
    country: str = Field("CA", min_length=2, max_length=2)
    address_type: str | None = None


class ContactData(BaseModel):
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=32)
    job_title: str | None = Field(None, max_length=255)
    business_website: str | None = Field(None, max_length=255)


class IdentityData(BaseModel):
    chosen_name: str | None = Field(None, max_length=255)
    languages: list[str] = Field(default_factory=list)
    gender: str | None = None
    race: str | None = None
    indigenous: bool | None = None


class EducationData(BaseModel):
    category: EducationType
    university: str = Field(..., min_length=1, max_length=255)
    graduation_year: int
    degree_type: str | None = None
    country: str | None = Field(None, min_length=2, max_length=2)


class ManagementData(BaseModel):
    life_member_retired: bool = False
    shadowing: bool = False
    passed_away: bool = False
    vendor: bool = False
    advertising: bool = False
    recruitment: bool = False


class RegistrationBundle(BaseModel):
    """Everything a new account needs, one slot per record to create."""

    model_config = ConfigDict(extra="forbid")

    account: AccountData | None = None
    address: AddressData | None = None
    contact: ContactData | None = None
    identity: IdentityData | None = None
    education_type: EducationType | None = None
    education: EducationData | None = None
    management: ManagementData | None = None
    declaration: bool | None = None
