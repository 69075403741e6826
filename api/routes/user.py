"""
api/routes/user.py -- Endpoints for any authenticated account.

Routes:
  GET /user/me  -- profile of the account behind the bearer token
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserInfo
from auth.dependencies import get_current_principal
from auth.models import Principal
from core.errors import AccountNotFoundError

router = APIRouter()


@router.get("/user/me", response_model=UserInfo)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> UserInfo:
    account = request.app.state.account_store.get_by_id(principal.account_id)
    if account is None:
        raise AccountNotFoundError(principal.account_id)
    return UserInfo.from_account(account)
