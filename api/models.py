"""
API request and response models for AuthKit REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (lastName, accessToken, ...). Every model uses
alias_generator=to_camel with populate_by_name so Python code keeps
snake_case attribute names.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from auth.models import Account, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

# Only identity fields are stripped. Passwords and tokens are taken verbatim.
_Email = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255, pattern=EMAIL_PATTERN)]
_Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
_NewPassword = Annotated[str, Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)]

_REQUEST_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)
_RESPONSE_CONFIG = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /auth/token."""

    model_config = _REQUEST_CONFIG

    email: _Email
    # Not length-checked: a login attempt with a short password is just a bad password.
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class RegisterRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    name: _Name
    last_name: _Name
    email: _Email
    password: _NewPassword


class RefreshTokenRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    refresh_token: str = Field(min_length=1)


class RequestPasswordResetRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    email: _Email


class ResetPasswordRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    reset_token: str = Field(min_length=1)
    new_password: _NewPassword


class AccountCreateRequest(BaseModel):
    """Request body for POST /admin/users. The hierarchy decides which roles are allowed."""

    model_config = _REQUEST_CONFIG

    name: _Name
    last_name: _Name
    email: _Email
    password: _NewPassword
    role: Role = Role.USER


class AccountStatusPatch(BaseModel):
    """Request body for PATCH /admin/users/{id}/status. Omitted fields are left unchanged."""

    model_config = _REQUEST_CONFIG

    enabled: Optional[bool] = None
    banned: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    model_config = _RESPONSE_CONFIG

    id: int
    name: str
    last_name: str
    email: str
    role: Role

    @classmethod
    def from_account(cls, account: Account) -> "UserInfo":
        return cls(
            id=account.id,
            name=account.name,
            last_name=account.last_name,
            email=account.email,
            role=account.role,
        )


class AuthResponse(BaseModel):
    """Response body for token, register and refresh-token."""

    model_config = _RESPONSE_CONFIG

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserInfo


class MessageResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    message: str


class AccountResponse(BaseModel):
    """Admin view of an account. Never includes hashes or reset token state."""

    model_config = _RESPONSE_CONFIG

    id: int
    name: str
    last_name: str
    email: str
    role: Role
    enabled: bool
    banned: bool
    created_by: Optional[int] = None
    created_at: str
    updated_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            name=account.name,
            last_name=account.last_name,
            email=account.email,
            role=account.role,
            enabled=account.is_enabled,
            banned=account.is_banned,
            created_by=account.created_by,
            created_at=account.created_at or "",
            updated_at=account.updated_at,
        )


class FieldError(BaseModel):
    model_config = _RESPONSE_CONFIG

    field: str
    rejected_value: Any = None
    message: str


class ErrorResponse(BaseModel):
    """Envelope returned for every error status.

    field_errors is present only for request validation failures; details only
    for unexpected errors when DEBUG is on.
    """

    model_config = _RESPONSE_CONFIG

    timestamp: str
    status: int
    error: str
    message: str
    path: str
    field_errors: Optional[list[FieldError]] = None
    details: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = _RESPONSE_CONFIG

    status: str = "ok"
    version: str
