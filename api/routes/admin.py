"""
api/routes/admin.py -- Account lifecycle operations for ADMIN and MASTER callers.

Routes:
  POST   /admin/users                         -- create an account (hierarchy checked)
  PATCH  /admin/users/{id}/status             -- enable/disable (soft delete), ban/unban
  DELETE /admin/administrators/users/{id}     -- permanent purge (MASTER only)

The route policy already limits /admin/ to ADMIN/MASTER and
/admin/administrators/users to MASTER; require_roles() repeats that per
handler.

Hierarchy:
  MASTER may create any role and manage any account.
  ADMIN may create USERs and manage only accounts it created.
  Nobody may change the status of, or purge, their own account here.

Disabling or banning an account revokes its refresh tokens. Its existing
access tokens stop working at the next request because the gate re-reads the
account every time.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import AccountCreateRequest, AccountResponse, AccountStatusPatch
from auth.dependencies import require_roles
from auth.hierarchy import ensure_can_create, validate_account_access
from auth.models import Account, Principal, Role
from auth.store import AccountStore
from auth.tokens import hash_password
from core.errors import AccountNotFoundError, BadRequestError, DuplicateEmailError, HierarchyViolationError

logger = logging.getLogger("authkit.api.admin")

router = APIRouter()

_require_admin = require_roles(Role.ADMIN, Role.MASTER)
_require_master = require_roles(Role.MASTER)


def _store(request: Request) -> AccountStore:
    return request.app.state.account_store


def _load_managed_account(store: AccountStore, principal: Principal, account_id: int) -> Account:
    """Return the target account or raise 404/403 per the hierarchy."""
    target = store.get_by_id_any_status(account_id)
    if target is None:
        raise AccountNotFoundError(account_id)
    if not validate_account_access(store, principal.account_id, target.id):
        raise HierarchyViolationError("You may only manage accounts you created.")
    return target


@router.post("/admin/users", response_model=AccountResponse, status_code=201)
def create_account(
    request: Request,
    body: AccountCreateRequest,
    principal: Principal = Depends(_require_admin),
) -> AccountResponse:
    store = _store(request)
    ensure_can_create(principal.role, body.role)

    if store.get_by_email(body.email) is not None:
        raise DuplicateEmailError(body.email)

    account = Account(
        name=body.name,
        last_name=body.last_name,
        email=body.email,
        password_hash=hash_password(body.password),
        role=body.role,
        created_by=principal.account_id,
    )
    try:
        account_id = store.create_account(account)
    except IntegrityError as exc:
        raise DuplicateEmailError(body.email) from exc

    logger.info("Account %d (%s) created by %d", account_id, body.role.value, principal.account_id)
    return AccountResponse.from_account(store.get_by_id_any_status(account_id))


@router.patch("/admin/users/{account_id}/status", response_model=AccountResponse)
def update_account_status(
    request: Request,
    account_id: int,
    body: AccountStatusPatch,
    principal: Principal = Depends(_require_admin),
) -> AccountResponse:
    """Toggle enabled and/or banned.

    enabled=false is a soft delete (deleted_by is recorded). Re-enabling can
    fail with 409 when another enabled account has taken the email meanwhile.
    """
    if body.enabled is None and body.banned is None:
        raise BadRequestError("No fields to update.")
    if account_id == principal.account_id:
        raise BadRequestError("You cannot change the status of your own account.")

    store = _store(request)
    target = _load_managed_account(store, principal, account_id)

    if body.enabled is False and target.is_enabled:
        store.soft_delete(target.id, deleted_by=principal.account_id)
    elif body.enabled is True and not target.is_enabled:
        try:
            store.update_account(target.id, is_enabled=True, deleted_by=None, updated_by=principal.account_id)
        except IntegrityError as exc:
            raise DuplicateEmailError(target.email) from exc

    if body.banned is not None and body.banned != target.is_banned:
        store.update_account(target.id, is_banned=body.banned, updated_by=principal.account_id)

    if body.enabled is False or body.banned:
        revoked = store.delete_refresh_tokens_for(target.id)
        logger.info("Revoked %d refresh token(s) of account %d", revoked, target.id)

    logger.info(
        "Account %d status changed by %d (enabled=%s banned=%s)",
        target.id,
        principal.account_id,
        body.enabled,
        body.banned,
    )
    return AccountResponse.from_account(store.get_by_id_any_status(target.id))


@router.delete("/admin/administrators/users/{account_id}", status_code=204)
def purge_account(
    request: Request,
    account_id: int,
    principal: Principal = Depends(_require_master),
) -> Response:
    """Permanently delete an account and its refresh tokens. Irreversible."""
    if account_id == principal.account_id:
        raise BadRequestError("You cannot delete your own account.")
    if not _store(request).purge_account(account_id):
        raise AccountNotFoundError(account_id)
    logger.warning("Account %d purged by %d", account_id, principal.account_id)
    return Response(status_code=204)
