from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.modulekit.db import db_session
from app.modulekit.errors import ForbiddenError
from app.modulekit.modules.loyalty.models import Member
from app.modulekit.modules.loyalty.service import (
    adjust_points,
    create_member,
    create_reward,
    earn_points,
    get_active_reward,
    get_member,
    get_member_by_code,
    get_stats,
    list_rewards,
    member_summary,
    member_transactions,
    redeem_reward,
    search_members,
    spend_points,
    tier_table,
)
from app.modulekit.rbac import current_user, require_login, require_permission, user_has_permission
from app.modulekit.utils import optional_str

bp = Blueprint("loyalty", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _ensure_can_view(member: Member) -> None:
    user = current_user()
    if user is None:
        raise ForbiddenError("Please authenticate", status=401, code="UNAUTHENTICATED")
    if member.user_id == user.id or user_has_permission(user, "loyalty.view"):
        return
    raise ForbiddenError("You do not have access to this member")


def _ensure_can_redeem(member: Member) -> None:
    user = current_user()
    if user is None:
        raise ForbiddenError("Please authenticate", status=401, code="UNAUTHENTICATED")
    if member.user_id == user.id or user_has_permission(user, "loyalty.earn"):
        return
    raise ForbiddenError("You cannot redeem for this member")


@bp.post("/members")
def members_create():
    s = db_session()
    member = create_member(s, _payload(), user=current_user())
    s.commit()
    return jsonify({"success": True, "member": member_summary(member)}), 201


@bp.get("/members")
@require_permission("loyalty.view")
def members_search():
    s = db_session()
    q = (request.args.get("q") or "").strip()
    limit = request.args.get("limit", 50, type=int)
    members = search_members(s, q, limit)
    return jsonify({"success": True, "members": [m.to_dict() for m in members]})


@bp.get("/members/<int:member_pk>")
@require_login
def members_detail(member_pk: int):
    s = db_session()
    member = get_member(s, member_pk)
    _ensure_can_view(member)
    return jsonify({"success": True, "member": member_summary(member)})


@bp.get("/members/lookup/<member_code>")
@require_permission("loyalty.earn")
def members_lookup(member_code: str):
    s = db_session()
    member = get_member_by_code(s, member_code)
    return jsonify({"success": True, "member": member_summary(member)})


@bp.post("/members/<int:member_pk>/points/earn")
@require_permission("loyalty.earn")
def points_earn(member_pk: int):
    s = db_session()
    data = _payload()
    member = get_member(s, member_pk, for_update=True)
    tx = earn_points(s, member, data.get("points"), description=optional_str(data, "description"))
    s.commit()
    return jsonify({"success": True, "transaction": tx.to_dict(), "member": member_summary(member)})


@bp.post("/members/<int:member_pk>/points/spend")
@require_permission("loyalty.earn")
def points_spend(member_pk: int):
    s = db_session()
    data = _payload()
    member = get_member(s, member_pk, for_update=True)
    tx = spend_points(s, member, data.get("points"), description=optional_str(data, "description"))
    s.commit()
    return jsonify({"success": True, "transaction": tx.to_dict(), "member": member_summary(member)})


@bp.post("/members/<int:member_pk>/points/adjust")
@require_permission("loyalty.adjust")
def points_adjust(member_pk: int):
    s = db_session()
    data = _payload()
    member = get_member(s, member_pk, for_update=True)
    tx = adjust_points(s, member, data.get("delta"), admin=g.current_user, reason=data.get("reason") or "")
    s.commit()
    return jsonify({"success": True, "transaction": tx.to_dict(), "member": member_summary(member)})


@bp.get("/members/<int:member_pk>/transactions")
@require_login
def members_transactions(member_pk: int):
    s = db_session()
    member = get_member(s, member_pk)
    _ensure_can_view(member)
    limit = request.args.get("limit", 20, type=int)
    txs = member_transactions(s, member, limit)
    return jsonify({"success": True, "transactions": [t.to_dict() for t in txs]})


@bp.post("/members/<int:member_pk>/rewards/<int:reward_id>/redeem")
@require_login
def rewards_redeem(member_pk: int, reward_id: int):
    s = db_session()
    member = get_member(s, member_pk, for_update=True)
    _ensure_can_redeem(member)
    reward = get_active_reward(s, reward_id)
    redemption = redeem_reward(s, member, reward)
    s.commit()
    return jsonify({"success": True, "redemption": redemption.to_dict(), "member": member_summary(member)})


@bp.get("/rewards")
def rewards_list():
    s = db_session()
    return jsonify({"success": True, "rewards": [r.to_dict() for r in list_rewards(s)]})


@bp.post("/rewards")
@require_permission("loyalty.manage")
def rewards_create():
    s = db_session()
    reward = create_reward(s, _payload(), user=g.current_user)
    s.commit()
    return jsonify({"success": True, "reward": reward.to_dict()}), 201


@bp.get("/tiers")
def tiers():
    return jsonify({"success": True, "tiers": tier_table()})


@bp.get("/stats")
@require_permission("loyalty.view")
def stats():
    s = db_session()
    return jsonify({"success": True, "stats": get_stats(s)})
