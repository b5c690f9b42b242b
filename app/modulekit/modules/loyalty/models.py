from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.modulekit.models import Base


class Member(Base):
    __tablename__ = "loyalty_members"
    __table_args__ = (
        Index("idx_loyalty_members_tier", "tier"),
        Index("idx_loyalty_members_created_at", "created_at"),
        CheckConstraint("points >= 0", name="ck_loyalty_members_points_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier: Mapped[str] = mapped_column(String(32), nullable=False, default="Bronze")

    referral_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    referred_by_id: Mapped[int | None] = mapped_column(ForeignKey("loyalty_members.id", ondelete="SET NULL"), nullable=True)

    # Optional link to a login account (members can also be walk-in customers).
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    transactions: Mapped[list["PointsTransaction"]] = relationship(
        "PointsTransaction",
        back_populates="member",
        cascade="all, delete-orphan",
        lazy="select",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "memberId": self.member_id,
            "email": self.email,
            "phone": self.phone,
            "name": self.name,
            "points": self.points,
            "lifetimePoints": self.lifetime_points,
            "tier": self.tier,
            "referralCode": self.referral_code,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class PointsTransaction(Base):
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        Index("idx_loyalty_transactions_member_id", "member_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)  # earn, spend, bonus, referral, adjustment, redeem
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # signed
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    member: Mapped[Member] = relationship("Member", back_populates="transactions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "amount": self.amount,
            "balanceAfter": self.balance_after,
            "description": self.description,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class Reward(Base):
    __tablename__ = "loyalty_rewards"
    __table_args__ = (
        CheckConstraint("points_cost > 0", name="ck_loyalty_rewards_cost_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    points_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "pointsCost": self.points_cost,
            "active": self.active,
        }


class Redemption(Base):
    __tablename__ = "loyalty_redemptions"
    __table_args__ = (
        Index("idx_loyalty_redemptions_member_id", "member_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False)
    reward_id: Mapped[int] = mapped_column(ForeignKey("loyalty_rewards.id", ondelete="RESTRICT"), nullable=False)
    points_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="issued")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    reward: Mapped[Reward] = relationship("Reward", lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rewardId": self.reward_id,
            "rewardName": self.reward.name if self.reward else None,
            "pointsSpent": self.points_spent,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
