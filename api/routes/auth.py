"""
api/routes/auth.py -- Public authentication endpoints.

Routes:
  POST /auth/token                   -- email/password login; token pair
  POST /auth/register                -- self-service USER registration; token pair
  POST /auth/refresh-token           -- rotate a refresh token; new pair
  POST /auth/request-password-reset  -- email a single-use reset link
  POST /auth/reset-password          -- set a new password with the reset token

All five are public in the route policy. Business failures are raised as
core.errors.AppError subclasses by SessionManager and rendered by the
handlers in api/main.py; nothing here builds an error response by hand.

Security:
  /auth/token and /auth/request-password-reset are rate-limited per IP.
  @router.post must sit ABOVE @limiter.limit, and the handler must take
  request: Request, or slowapi never sees the call.
  Cache-Control: no-store on every response that carries tokens.

Handlers are plain def: bcrypt is CPU-bound and FastAPI runs sync handlers
in its threadpool.

No `from __future__ import annotations` here: slowapi's wrapper resolves
annotations against its own module globals, so they must be real classes.
"""

from fastapi import APIRouter, Request, Response

from api.limiter import limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    RequestPasswordResetRequest,
    ResetPasswordRequest,
    UserInfo,
)
from auth.sessions import AuthResult, SessionManager
from core.config import get_settings

_settings = get_settings()

PASSWORD_RESET_DONE_MESSAGE = "Password reset successfully"

router = APIRouter(prefix="/auth")


def _sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def _auth_response(result: AuthResult, response: Response) -> AuthResponse:
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        user=UserInfo.from_account(result.account),
    )


@router.post("/token", response_model=AuthResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Exchange email and password for an access/refresh token pair.

    Unknown email and wrong password return the same 401 body. Disabled and
    banned accounts get 403.
    """
    result = _sessions(request).login(body.email, body.password)
    return _auth_response(result, response)


@router.post("/register", response_model=AuthResponse)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create a USER account and log it in. 409 if the email is taken."""
    result = _sessions(request).register(body.name, body.last_name, body.email, body.password)
    return _auth_response(result, response)


@router.post("/refresh-token", response_model=AuthResponse)
def refresh_token(request: Request, response: Response, body: RefreshTokenRequest) -> AuthResponse:
    """Trade a refresh token for a new pair. The presented token is spent either way."""
    result = _sessions(request).refresh(body.refresh_token)
    return _auth_response(result, response)


@router.post("/request-password-reset", response_model=MessageResponse)
@limiter.limit(_settings.password_reset_rate_limit)
def request_password_reset(request: Request, body: RequestPasswordResetRequest) -> MessageResponse:
    message = _sessions(request).request_password_reset(body.email)
    return MessageResponse(message=message)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    _sessions(request).reset_password(body.reset_token, body.new_password)
    return MessageResponse(message=PASSWORD_RESET_DONE_MESSAGE)
