"""Pydantic request/response schemas."""

from app.schemas.auth import (
    CurrentUser,
    LoginRequest,
    TokenResponse,
    UserCreateRequest,
    UserListItem,
    UsersListResponse,
    UserUpdateRequest,
)
from app.schemas.clinic import (
    OdontogramItem,
    OdontogramListResponse,
    SpecialistItem,
    SpecialistsListResponse,
)
from app.schemas.health import HealthResponse
from app.schemas.registration import (
    FeatureFlags,
    RegistrationInput,
    RegistrationOutcome,
    ValidationFailure,
)

__all__ = [
    "CurrentUser",
    "FeatureFlags",
    "HealthResponse",
    "LoginRequest",
    "OdontogramItem",
    "OdontogramListResponse",
    "RegistrationInput",
    "RegistrationOutcome",
    "SpecialistItem",
    "SpecialistsListResponse",
    "TokenResponse",
    "UserCreateRequest",
    "UserListItem",
    "UserUpdateRequest",
    "UsersListResponse",
    "ValidationFailure",
]
