"""
Route guards for payout endpoints.

Applied after authentication, in order: phone first, then payout method. Both
share one Verification lookup which is left on `g.verification` for the view.
"""
from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.modulekit.db import db_session
from app.modulekit.errors import error_response
from app.modulekit.modules.payouts.service import get_verification
from app.modulekit.rbac import current_user


def _load_verification():
    if getattr(g, "verification", None) is None:
        user = current_user()
        g.verification = get_verification(db_session(), user.id) if user else None
    return g.verification


def require_phone_verification(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if current_user() is None:
            return error_response("Please authenticate", 401, "UNAUTHENTICATED")
        v = _load_verification()
        if v is None or not v.phone_verified:
            return error_response("Phone verification required", 403, "PHONE_VERIFICATION_REQUIRED")
        return fn(*args, **kwargs)

    return wrapped


def require_payout_method(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if current_user() is None:
            return error_response("Please authenticate", 401, "UNAUTHENTICATED")
        v = _load_verification()
        if v is None or not (v.payout_provider and v.payout_verified):
            return error_response("Payout method required", 403, "PAYOUT_METHOD_REQUIRED")
        return fn(*args, **kwargs)

    return wrapped
