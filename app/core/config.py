from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field(alias="DATABASE_URL")

    # JWT Configuration
    secret_key: str = Field(alias="SECRET_KEY")
    algorithm: str = Field(alias="ALGORITHM")
    access_token_expire_minutes: int = Field(alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # First Admin User
    first_admin_email: str = Field(alias="FIRST_ADMIN_EMAIL")
    first_admin_password: str = Field(alias="FIRST_ADMIN_PASSWORD")

    # Registration sessions (approval-gated flow)
    registration_session_ttl_hours: int = Field(
        default=24, alias="REGISTRATION_SESSION_TTL_HOURS"
    )
    registration_approval_window_days: int = Field(
        default=7, alias="REGISTRATION_APPROVAL_WINDOW_DAYS"
    )
    registration_require_email_verification: bool = Field(
        default=True, alias="REGISTRATION_REQUIRE_EMAIL_VERIFICATION"
    )
    registration_require_admin_approval: bool = Field(
        default=True, alias="REGISTRATION_REQUIRE_ADMIN_APPROVAL"
    )
    email_verification_token_expire_minutes: int = Field(
        default=1440, alias="EMAIL_VERIFICATION_TOKEN_EXPIRE_MINUTES"
    )
    email_verification_max_resends: int = Field(
        default=3, alias="EMAIL_VERIFICATION_MAX_RESENDS"
    )

    # Membership sessions (payment-gated flow)
    membership_session_ttl_hours: int = Field(
        default=48, alias="MEMBERSHIP_SESSION_TTL_HOURS"
    )
    membership_paid_window_hours: int = Field(
        default=48, alias="MEMBERSHIP_PAID_WINDOW_HOURS"
    )

    # Entity creation
    processing_lease_seconds: int = Field(default=300, alias="PROCESSING_LEASE_SECONDS")

    # Dataverse (remote system of record)
    dataverse_url: str | None = Field(default=None, alias="DATAVERSE_URL")
    dataverse_access_token: str | None = Field(default=None, alias="DATAVERSE_ACCESS_TOKEN")
    dataverse_timeout_seconds: float = Field(default=30.0, alias="DATAVERSE_TIMEOUT_SECONDS")
    dataverse_max_retries: int = Field(default=3, alias="DATAVERSE_MAX_RETRIES")

    # SMTP Configuration (optional for now)
    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int | None = Field(default=None, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    smtp_from_email: str | None = Field(default=None, alias="SMTP_FROM_EMAIL")
    admin_notification_email: str | None = Field(default=None, alias="ADMIN_NOTIFICATION_EMAIL")

    # Frontend URL for verification links
    frontend_url: str | None = Field(default=None, alias="FRONTEND_URL")

    @field_validator(
        "smtp_host",
        "smtp_user",
        "smtp_password",
        "smtp_from_email",
        "admin_notification_email",
        "dataverse_url",
        "dataverse_access_token",
        mode="before",
    )
    @classmethod
    def empty_str_to_none(cls, v: str | None) -> str | None:
        """Convert empty strings to None for optional string fields."""
        if v == "":
            return None
        return v

    @field_validator("smtp_port", mode="before")
    @classmethod
    def empty_str_to_none_int(cls, v: str | int | None) -> int | None:
        """Convert empty strings to None for optional integer fields."""
        if v == "":
            return None
        if isinstance(v, str):
            try:
                return int(v)
            except ValueError:
                return None
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
