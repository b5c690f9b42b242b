from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.modulekit.db import db_session
from app.modulekit.errors import NotFoundError, ValidationError
from app.modulekit.models import User
from app.modulekit.modules.payouts.guards import require_payout_method, require_phone_verification
from app.modulekit.modules.payouts.service import (
    credit_wallet,
    link_payout_method,
    list_cashouts,
    request_cashout,
    send_phone_code,
    verification_status,
    verify_phone_code,
    wallet_summary,
)
from app.modulekit.rbac import require_login, require_permission
from app.modulekit.utils import optional_str, str_field

verification_bp = Blueprint("verification", __name__)
payouts_bp = Blueprint("payouts", __name__)
wallet_bp = Blueprint("wallet", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _is_production() -> bool:
    return (current_app.config.get("ENV") or "").lower() in ("prod", "production")


@verification_bp.post("/phone/send")
@require_login
def phone_send():
    s = db_session()
    v, code = send_phone_code(s, g.current_user, _payload().get("phone"))
    s.commit()
    body = {"success": True, "message": "Verification code sent", "phone": v.masked_phone}
    if not _is_production():
        body["debugCode"] = code
    return jsonify(body)


@verification_bp.post("/phone/verify")
@require_login
def phone_verify():
    s = db_session()
    v = verify_phone_code(s, g.current_user, _payload().get("code"))
    s.commit()
    return jsonify({"success": True, "verification": v.to_status_dict()})


@verification_bp.post("/payout-method")
@require_login
@require_phone_verification
def payout_method_link():
    s = db_session()
    data = _payload()
    v = link_payout_method(s, g.current_user, data.get("provider"), data.get("account"))
    s.commit()
    return jsonify({"success": True, "verification": v.to_status_dict()})


@verification_bp.get("/status")
@require_login
def status():
    s = db_session()
    return jsonify({"success": True, "verification": verification_status(s, g.current_user.id)})


@payouts_bp.post("/cashout")
@require_login
@require_phone_verification
@require_payout_method
def cashout():
    s = db_session()
    data = _payload()
    fingerprint = data.get("fingerprint")
    client_data = fingerprint if isinstance(fingerprint, dict) and fingerprint else None
    co = request_cashout(s, g.current_user, g.verification, data.get("amount"), req=request, client_data=client_data)
    s.commit()
    return jsonify({"success": True, "cashout": co.to_dict(), "wallet": wallet_summary(s, g.current_user.id, limit=5)}), 201


@payouts_bp.get("")
@require_login
def cashouts_list():
    s = db_session()
    limit = request.args.get("limit", 20, type=int)
    return jsonify({"success": True, "cashouts": [c.to_dict() for c in list_cashouts(s, g.current_user.id, limit)]})


@wallet_bp.get("")
@require_login
def wallet_detail():
    s = db_session()
    summary = wallet_summary(s, g.current_user.id, request.args.get("limit", 20, type=int))
    s.commit()
    return jsonify({"success": True, "wallet": summary})


@wallet_bp.post("/credit")
@require_permission("wallet.credit")
def wallet_credit():
    s = db_session()
    data = _payload()
    try:
        user_id = int(data.get("userId"))
    except (TypeError, ValueError, OverflowError):
        user_id = 0
    if user_id <= 0:
        raise ValidationError("userId is required.")
    if s.get(User, user_id) is None:
        raise NotFoundError("User not found")
    tx = credit_wallet(
        s,
        user_id,
        data.get("amount"),
        str_field(data, "type"),
        description=optional_str(data, "description"),
        reference_id=optional_str(data, "referenceId"),
        metadata={"creditedBy": g.current_user.id},
    )
    s.commit()
    return jsonify({"success": True, "transaction": tx.to_dict()}), 201
