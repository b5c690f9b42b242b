"""
Loyalty points service.

Every balance change happens inside the caller's session and writes exactly one
PointsTransaction row alongside the Member update; the route commits once, so a
failure anywhere discards both.

INVARIANTS:
- points >= 0
- lifetime_points never decreases (only earn/bonus/referral add to it)
- tier is a pure function of lifetime_points (see TIERS)
"""

from __future__ import annotations

import logging
import math
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from app.modulekit.audit import record_event
from app.modulekit.errors import ApiError, NotFoundError, ValidationError
from app.modulekit.modules.loyalty.models import Member, PointsTransaction, Redemption, Reward
from app.modulekit.utils import clean_str, optional_str, str_field

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.modulekit.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tier:
    name: str
    threshold: int
    multiplier: float


# Ordered highest threshold first.
TIERS: tuple[Tier, ...] = (
    Tier("Platinum", 5000, 2.0),
    Tier("Gold", 2000, 1.5),
    Tier("Silver", 500, 1.25),
    Tier("Bronze", 0, 1.0),
)
TIERS_BY_NAME = {t.name: t for t in TIERS}

LIFETIME_TYPES = frozenset({"earn", "bonus", "referral"})
REFERRAL_BONUS = 100

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def calculate_tier(lifetime_points: int) -> Tier:
    for tier in TIERS:
        if lifetime_points >= tier.threshold:
            return tier
    return TIERS[-1]


def tier_multiplier(tier_name: str) -> float:
    tier = TIERS_BY_NAME.get(tier_name)
    return tier.multiplier if tier else 1.0


def next_tier(lifetime_points: int) -> Tier | None:
    for tier in reversed(TIERS):
        if tier.threshold > lifetime_points:
            return tier
    return None


def tier_table() -> list[dict]:
    return [{"name": t.name, "threshold": t.threshold, "multiplier": t.multiplier} for t in reversed(TIERS)]


def _generate_code(length: int = 8) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def _unique_code(s: "Session", column) -> str:
    while True:
        code = _generate_code()
        if s.execute(select(Member.id).where(column == code)).first() is None:
            return code


def parse_points(value, field: str = "points") -> int:
    """Points are whole, positive integers. Booleans and floats with a fraction are rejected."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a positive integer.")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be a positive integer.")
        value = int(value)
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a positive integer.")
    if n <= 0:
        raise ValidationError(f"{field} must be a positive integer.")
    return n


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def get_member(s: "Session", member_pk: int, *, for_update: bool = False) -> Member:
    stmt = select(Member).where(Member.id == member_pk)
    if for_update:
        stmt = stmt.with_for_update()
    member = s.execute(stmt).scalar_one_or_none()
    if member is None or not member.is_active:
        raise NotFoundError("Member not found")
    return member


def get_member_by_code(s: "Session", member_code: str) -> Member:
    member = s.execute(select(Member).where(Member.member_id == (member_code or "").strip().upper())).scalar_one_or_none()
    if member is None or not member.is_active:
        raise NotFoundError("Member not found")
    return member


def get_active_reward(s: "Session", reward_id: int) -> Reward:
    reward = s.get(Reward, reward_id)
    if reward is None or not reward.active:
        raise NotFoundError("Reward not found or inactive")
    return reward


# ---------------------------------------------------------------------------
# Balance changes
# ---------------------------------------------------------------------------


def _apply_change(
    s: "Session",
    member: Member,
    delta: int,
    tx_type: str,
    description: str | None,
    admin: "User | None" = None,
) -> PointsTransaction:
    new_points = max(0, member.points + delta)
    if tx_type in LIFETIME_TYPES:
        member.lifetime_points += abs(delta)
    member.points = new_points
    member.tier = calculate_tier(member.lifetime_points).name
    member.updated_at = datetime.utcnow()

    tx = PointsTransaction(
        member_id=member.id,
        type=tx_type,
        amount=delta,
        balance_after=new_points,
        description=description,
        admin_user_id=admin.id if admin else None,
    )
    s.add(tx)
    s.flush()
    return tx


def earn_points(s: "Session", member: Member, base_points: int, *, description: str | None = None) -> PointsTransaction:
    """
    Award points scaled by the member's current tier multiplier, then recompute the tier.
    """
    base = parse_points(base_points)
    old_tier = member.tier
    awarded = int(math.floor(base * tier_multiplier(member.tier)))
    tx = _apply_change(s, member, awarded, "earn", description or f"Earned {awarded} points")
    if member.tier != old_tier:
        logger.info("Member %s promoted %s -> %s", member.member_id, old_tier, member.tier)
    return tx


def award_bonus(s: "Session", member: Member, points: int, *, tx_type: str = "bonus", description: str | None = None) -> PointsTransaction:
    if tx_type not in ("bonus", "referral"):
        raise ValidationError("Bonus type must be 'bonus' or 'referral'.")
    n = parse_points(points)
    return _apply_change(s, member, n, tx_type, description or f"{tx_type.title()} bonus")


def spend_points(s: "Session", member: Member, amount: int, *, description: str | None = None, tx_type: str = "spend") -> PointsTransaction:
    n = parse_points(amount, "amount")
    if member.points < n:
        raise ApiError("Insufficient points", status=400, code="INSUFFICIENT_POINTS", extra={"balance": member.points, "required": n})
    return _apply_change(s, member, -n, tx_type, description or f"Spent {n} points")


def adjust_points(s: "Session", member: Member, delta: int, *, admin: "User", reason: str) -> PointsTransaction:
    """Staff correction. Never drives the balance below zero and never touches lifetime points."""
    if isinstance(delta, bool):
        raise ValidationError("delta must be a non-zero integer.")
    try:
        d = int(delta)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("delta must be a non-zero integer.")
    if d == 0:
        raise ValidationError("delta must be a non-zero integer.")
    reason = clean_str(reason, "reason")
    if not reason:
        raise ValidationError("A reason is required for adjustments.")

    before = member.points
    tx = _apply_change(s, member, d, "adjustment", reason, admin=admin)
    record_event(
        s,
        actor=admin,
        action="points.adjust",
        entity_type="Member",
        entity_id=str(member.id),
        reason=reason,
        metadata={"delta": d, "before": before, "after": member.points},
    )
    return tx


def redeem_reward(s: "Session", member: Member, reward: Reward) -> Redemption:
    if not reward.active:
        raise NotFoundError("Reward not found or inactive")
    spend_points(s, member, reward.points_cost, description=f"Redeemed: {reward.name}", tx_type="redeem")
    redemption = Redemption(member_id=member.id, reward_id=reward.id, points_spent=reward.points_cost)
    s.add(redemption)
    s.flush()
    return redemption


# ---------------------------------------------------------------------------
# Members & rewards
# ---------------------------------------------------------------------------


def validate_member_payload(payload: dict) -> list[str]:
    errors = []
    if not str_field(payload, "name"):
        errors.append("Name is required.")
    email = str_field(payload, "email")
    if not email or "@" not in email:
        errors.append("A valid email is required.")
    return errors


def create_member(s: "Session", payload: dict, *, user: "User | None" = None) -> Member:
    errors = validate_member_payload(payload)
    if errors:
        raise ValidationError(" ".join(errors))

    email = str_field(payload, "email").lower()
    if s.execute(select(Member.id).where(Member.email == email)).first() is not None:
        raise ValidationError("A member with that email already exists.")

    referrer: Member | None = None
    ref_code = str_field(payload, "referralCode", "referral_code").upper()
    if ref_code:
        referrer = s.execute(select(Member).where(Member.referral_code == ref_code)).scalar_one_or_none()
        if referrer is None:
            raise ValidationError("Unknown referral code.")

    now = datetime.utcnow()
    member = Member(
        member_id=_unique_code(s, Member.member_id),
        referral_code=_unique_code(s, Member.referral_code),
        email=email,
        phone=optional_str(payload, "phone"),
        name=str_field(payload, "name"),
        points=0,
        lifetime_points=0,
        tier=calculate_tier(0).name,
        referred_by_id=referrer.id if referrer else None,
        user_id=user.id if user else None,
        created_at=now,
        updated_at=now,
    )
    s.add(member)
    s.flush()

    if referrer is not None:
        award_bonus(s, referrer, REFERRAL_BONUS, tx_type="referral", description=f"Referral: {member.name}")

    record_event(
        s,
        actor=user,
        action="member.create",
        entity_type="Member",
        entity_id=str(member.id),
        metadata={"member_id": member.member_id, "referred_by": referrer.member_id if referrer else None},
    )
    return member


def create_reward(s: "Session", payload: dict, *, user: "User") -> Reward:
    name = str_field(payload, "name")
    if not name:
        raise ValidationError("Name is required.")
    cost = parse_points(payload.get("pointsCost", payload.get("points_cost")), "pointsCost")
    reward = Reward(
        name=name,
        description=optional_str(payload, "description"),
        points_cost=cost,
        active=bool(payload.get("active", True)),
    )
    s.add(reward)
    s.flush()
    record_event(s, actor=user, action="reward.create", entity_type="Reward", entity_id=str(reward.id), metadata={"cost": cost})
    return reward


def list_rewards(s: "Session") -> list[Reward]:
    return list(s.execute(select(Reward).where(Reward.active.is_(True)).order_by(Reward.points_cost.asc())).scalars())


def member_transactions(s: "Session", member: Member, limit: int = 20) -> list[PointsTransaction]:
    limit = max(1, min(int(limit), 200))
    stmt = (
        select(PointsTransaction)
        .where(PointsTransaction.member_id == member.id)
        .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
        .limit(limit)
    )
    return list(s.execute(stmt).scalars())


def search_members(s: "Session", q: str = "", limit: int = 50) -> list[Member]:
    limit = max(1, min(int(limit), 200))
    stmt = select(Member).where(Member.is_active.is_(True))
    q = (q or "").strip()
    if q:
        like = f"%{q}%"
        stmt = stmt.where(or_(Member.name.ilike(like), Member.email.ilike(like), Member.member_id.ilike(like)))
    stmt = stmt.order_by(Member.created_at.desc(), Member.id.desc()).limit(limit)
    return list(s.execute(stmt).scalars())


def get_stats(s: "Session") -> dict:
    total_members = s.execute(select(func.count(Member.id)).where(Member.is_active.is_(True))).scalar_one()
    points = s.execute(select(func.coalesce(func.sum(Member.points), 0)).where(Member.is_active.is_(True))).scalar_one()
    redemptions = s.execute(select(func.count(Redemption.id))).scalar_one()
    return {
        "totalMembers": int(total_members or 0),
        "totalPointsInCirculation": int(points or 0),
        "totalRedemptions": int(redemptions or 0),
    }


def member_summary(member: Member) -> dict:
    data = member.to_dict()
    tier = calculate_tier(member.lifetime_points)
    upcoming = next_tier(member.lifetime_points)
    data["multiplier"] = tier.multiplier
    data["nextTier"] = (
        {"name": upcoming.name, "pointsNeeded": upcoming.threshold - member.lifetime_points} if upcoming else None
    )
    return data
