"""Registration inputs, feature-flag snapshot and workflow results."""

from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field


class RegistrationInput(BaseModel):
    """
    Raw registration submission. Every field is untrusted and optional here;
    the registration validator decides what is missing or malformed.
    """

    model_config = ConfigDict(extra="ignore")

    name: str | None = Field(default=None, description="Given name (max 30).")
    lastname: str | None = Field(default=None, description="Family name (max 30).")
    email: str | None = Field(default=None, description="Unique email address (max 255).")
    password: str | None = Field(default=None, description="Plain password (min 6).")
    password_confirmation: str | None = Field(default=None, description="Must equal password.")
    accept_terms: bool | str | None = Field(
        default=None,
        description="Only evaluated when terms and conditions are enabled.",
    )

    def normalized(self, include_terms: bool) -> dict[str, Any]:
        """Field mapping for validation: names and email trimmed, email lower-cased, passwords untouched."""
        data: dict[str, Any] = {
            "name": (self.name or "").strip(),
            "lastname": (self.lastname or "").strip(),
            "email": (self.email or "").strip().lower(),
            "password": self.password or "",
            "password_confirmation": self.password_confirmation or "",
        }
        if include_terms:
            data["accept_terms"] = self.accept_terms
        return data


class FeatureFlags(BaseModel):
    """Immutable per-request snapshot of the registration settings."""

    model_config = ConfigDict(frozen=True)

    registration_enabled: bool = True
    terms_required: bool = False
    email_confirmation_required: bool = True
    default_language: str = "es"
    confirmation_token_ttl_hours: int = 48


class SettingsReader(Protocol):
    def get(self, key: str) -> Any: ...


def snapshot_feature_flags(provider: SettingsReader) -> FeatureFlags:
    """Read every registration flag exactly once; the result never changes mid-request."""
    return FeatureFlags(
        registration_enabled=bool(provider.get("registration_enabled")),
        terms_required=bool(provider.get("terms_and_conditions_show")),
        email_confirmation_required=bool(provider.get("reg_email_confirmation")),
        default_language=str(provider.get("language_default")),
        confirmation_token_ttl_hours=int(provider.get("confirmation_token_ttl_hours")),
    )


@dataclass(frozen=True)
class AccountRef:
    """Detached view of a freshly created account; safe to use after the request session closes."""

    id: int
    email: str
    first_name: str
    last_name: str


@dataclass(frozen=True)
class ValidationFailure:
    """Field name -> ordered violation messages. Returned, never raised."""

    errors: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class RegistrationOutcome:
    message: str
    account_id: int


# API payloads


class RegistrationResponse(BaseModel):
    """Body for a successful POST /register."""

    success: bool = True
    message: str
    account_id: int


class RegistrationErrorResponse(BaseModel):
    """Body for a rejected POST /register (field -> messages under `message`)."""

    success: bool = False
    validator: bool = True
    message: dict[str, list[str]]


class RegistrationFormResponse(BaseModel):
    """Registration form configuration for the front end."""

    registration_enabled: bool
    terms_required: bool
    email_confirmation_required: bool


class ConfirmationResponse(BaseModel):
    success: bool = True
    message: str
