"""
auth/hierarchy.py -- Role hierarchy policy (who may create and manage whom).

The policy is two lookup tables, not branching logic, so it can be audited by
reading it and tested exhaustively:

  _CREATABLE_ROLES  role -> roles it may create
  _ACCESS_SCOPE     role -> which other accounts it may view/modify

Self-access is always allowed and is checked before either table.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from auth.models import Role
from core.errors import HierarchyViolationError

if TYPE_CHECKING:
    from auth.store import AccountStore


class AccessScope(str, Enum):
    ANY = "any"  # every account
    CREATED = "created"  # accounts whose created_by is the requester
    SELF = "self"  # nobody but itself


_CREATABLE_ROLES: dict[Role, frozenset[Role]] = {
    Role.MASTER: frozenset({Role.MASTER, Role.ADMIN, Role.USER}),
    Role.ADMIN: frozenset({Role.USER}),
    Role.USER: frozenset(),
}

_ACCESS_SCOPE: dict[Role, AccessScope] = {
    Role.MASTER: AccessScope.ANY,
    Role.ADMIN: AccessScope.CREATED,
    Role.USER: AccessScope.SELF,
}


def creatable_roles(creator_role: Role) -> frozenset[Role]:
    return _CREATABLE_ROLES[Role(creator_role)]


def can_create(creator_role: Role, target_role: Role) -> bool:
    """Return True if creator_role may create an account with target_role."""
    return Role(target_role) in _CREATABLE_ROLES[Role(creator_role)]


def ensure_can_create(creator_role: Role, target_role: Role) -> None:
    if not can_create(creator_role, target_role):
        raise HierarchyViolationError(
            f"Role {Role(creator_role).value} may not create accounts with role {Role(target_role).value}."
        )


def can_access(
    requester_id: int,
    requester_role: Role,
    requester_enabled: bool,
    target_id: int,
    target_created_by: int | None,
) -> bool:
    """Return True if the requester may view or modify the target account."""
    if requester_id == target_id:
        return True
    if not requester_enabled:
        return False
    scope = _ACCESS_SCOPE[Role(requester_role)]
    if scope is AccessScope.ANY:
        return True
    if scope is AccessScope.CREATED:
        return target_created_by == requester_id
    return False


def validate_account_access(store: AccountStore, requester_id: int, target_id: int) -> bool:
    """Store-backed can_access(). Missing requester or target means no access."""
    if requester_id == target_id:
        return True
    requester = store.get_by_id_any_status(requester_id)
    target = store.get_by_id_any_status(target_id)
    if requester is None or target is None:
        return False
    return can_access(requester.id, requester.role, requester.is_enabled, target.id, target.created_by)


def accounts_created_by(store: AccountStore, creator_id: int) -> list[int]:
    """Return ids of accounts created by an ADMIN or MASTER. Empty for anyone else."""
    creator = store.get_by_id_any_status(creator_id)
    if creator is None or not _CREATABLE_ROLES[creator.role]:
        return []
    return [a.id for a in store.list_created_by(creator_id)]
