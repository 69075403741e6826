"""
core/errors.py -- Typed domain failures for AuthKit.

Domain code (auth/, notify/) raises these; the exception handlers in
api/main.py are the single boundary that turns them into HTTP responses.
Each family carries its HTTP status so the boundary never has to guess:

  UnauthorizedError  401  bad credentials, invalid/expired tokens
  ForbiddenError     403  disabled, banned, insufficient role or hierarchy
  NotFoundError      404  unknown email or account
  ConflictError      409  duplicate email
  BadRequestError    400  semantically invalid input that passed schema validation

Messages are safe to return to clients. Anything sensitive belongs in the log
line written by the boundary, never in the message.

Layer rule: core/ is the kernel. No imports from api/, auth/, or notify/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for every failure the API boundary knows how to translate."""

    status_code: int = 500
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Unauthorized access."


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Access denied."


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found."


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict occurred."


class BadRequestError(AppError):
    status_code = 400
    default_message = "Bad request."


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class InvalidCredentialsError(UnauthorizedError):
    # Same text for unknown email and wrong password (enumeration resistance).
    default_message = "Invalid email or password."


class InvalidTokenError(UnauthorizedError):
    default_message = "Invalid or expired token."


class InvalidRefreshTokenError(UnauthorizedError):
    default_message = "Invalid or expired refresh token."


class AccountDisabledError(ForbiddenError):
    default_message = "Your account has been disabled. Please contact support."


class AccountBannedError(ForbiddenError):
    default_message = "Your account has been banned. Please contact support."


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class InsufficientPermissionsError(ForbiddenError):
    default_message = "Insufficient permissions."


class HierarchyViolationError(ForbiddenError):
    default_message = "Your role may not manage accounts with that role."


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class AccountNotFoundError(NotFoundError):
    def __init__(self, account_id: int | None = None) -> None:
        if account_id is None:
            super().__init__("User not found.")
        else:
            super().__init__(f"User with ID {account_id} not found.")


class EmailNotFoundError(NotFoundError):
    def __init__(self, email: str) -> None:
        super().__init__(f"Email not found: {email}")


class DuplicateEmailError(ConflictError):
    def __init__(self, email: str) -> None:
        super().__init__(f"Email {email} is already registered. Please use a different email.")
