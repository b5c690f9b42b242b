from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.modulekit.models import Base


class Wallet(Base):
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    lifetime_earned: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    transactions: Mapped[list["WalletTransaction"]] = relationship(
        "WalletTransaction",
        back_populates="wallet",
        cascade="all, delete-orphan",
        lazy="noload",
    )


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        Index("idx_wallet_transactions_wallet_id", "wallet_id", "created_at"),
        Index("idx_wallet_transactions_reference_id", "reference_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # credit | debit
    type: Mapped[str] = mapped_column(String(32), nullable=False)  # survey, spin, cashout, ...
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    wallet: Mapped[Wallet] = relationship("Wallet", back_populates="transactions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "type": self.type,
            "amount": str(self.amount),
            "balanceAfter": str(self.balance_after),
            "description": self.description,
            "referenceId": self.reference_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class Verification(Base):
    """One row per user: phone OTP state plus the linked payout account."""

    __tablename__ = "verifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    phone_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    otp_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    otp_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    otp_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payout_provider: Mapped[str | None] = mapped_column(String(32), nullable=True)  # paypal, venmo, stripe, bank
    payout_account: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_linked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def masked_phone(self) -> str | None:
        if not self.phone:
            return None
        return f"***{self.phone[-4:]}"

    @property
    def masked_account(self) -> str | None:
        acct = self.payout_account
        if not acct:
            return None
        if "@" in acct and not acct.startswith("@"):
            local, _, domain = acct.partition("@")
            return f"{local[:2]}***@{domain}"
        return f"{acct[:3]}***"

    def to_status_dict(self) -> dict:
        return {
            "phoneVerified": self.phone_verified,
            "phone": self.masked_phone,
            "payoutMethodLinked": bool(self.payout_provider and self.payout_verified),
            "payoutProvider": self.payout_provider,
            "payoutAccount": self.masked_account,
        }


class Cashout(Base):
    __tablename__ = "cashouts"
    __table_args__ = (
        Index("idx_cashouts_user_id", "user_id", "created_at"),
        Index("idx_cashouts_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    account: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wallet_transaction_id: Mapped[int | None] = mapped_column(ForeignKey("wallet_transactions.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": str(self.amount),
            "provider": self.provider,
            "status": self.status,
            "riskScore": self.risk_score,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
