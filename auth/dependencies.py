"""
auth/dependencies.py -- Route policy and FastAPI Depends() helpers.

The request gate middleware in api/main.py resolves the bearer token to a
Principal (auth.gate.authenticate_bearer) and then asks policy_for(path) what
the path requires. ROUTE_POLICY is an ordered prefix table; the first match
wins, so more specific prefixes come first.

  PUBLIC          no credential needed (an invalid one is still rejected)
  AUTHENTICATED   any enabled, unbanned account
  roles           AUTHENTICATED plus one of the listed roles

get_current_principal() and require_roles() expose the Principal the gate
stored on request.state to route handlers. They repeat the policy check so a
handler is safe even if the prefix table is edited carelessly.

Layer rule: no imports from api/ or notify/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request

from auth.models import Principal, Role
from core.errors import InsufficientPermissionsError, UnauthorizedError

AUTHENTICATION_REQUIRED_MESSAGE = "Authentication is required to access this resource."


@dataclass(frozen=True)
class RoutePolicy:
    public: bool = False
    roles: frozenset[Role] | None = None  # None = any authenticated role

    def allows(self, principal: Principal | None) -> int | None:
        """Return None if the caller passes, else the HTTP status to reject with."""
        if self.public:
            return None
        if principal is None:
            return 401
        if self.roles is not None and principal.role not in self.roles:
            return 403
        return None


PUBLIC = RoutePolicy(public=True)
AUTHENTICATED = RoutePolicy()

ROUTE_POLICY: tuple[tuple[str, RoutePolicy], ...] = (
    ("/auth/", PUBLIC),
    ("/health", PUBLIC),
    ("/docs", PUBLIC),
    ("/redoc", PUBLIC),
    ("/openapi.json", PUBLIC),
    ("/admin/administrators/users", RoutePolicy(roles=frozenset({Role.MASTER}))),
    ("/admin/", RoutePolicy(roles=frozenset({Role.ADMIN, Role.MASTER}))),
    ("/user/", RoutePolicy(roles=frozenset({Role.USER, Role.ADMIN, Role.MASTER}))),
    ("/master/", RoutePolicy(roles=frozenset({Role.MASTER}))),
)


def policy_for(path: str) -> RoutePolicy:
    """First-match prefix lookup; unlisted paths require authentication."""
    for prefix, policy in ROUTE_POLICY:
        if path.startswith(prefix):
            return policy
    return AUTHENTICATED


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises UnauthorizedError (401) if anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal: Principal | None = getattr(request.state, "principal", None)
    if principal is None:
        raise UnauthorizedError(AUTHENTICATION_REQUIRED_MESSAGE)
    return principal


def require_roles(*roles: Role) -> Callable[[Request], Principal]:
    """Build a dependency that requires one of the given roles (403 otherwise)."""
    allowed = frozenset(Role(r) for r in roles)

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        if principal.role not in allowed:
            raise InsufficientPermissionsError()
        return principal

    return dependency
