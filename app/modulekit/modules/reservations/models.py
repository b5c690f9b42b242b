from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.modulekit.models import Base


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        Index("idx_reservations_reserved_at", "reserved_at"),
        Index("idx_reservations_status", "status"),
        CheckConstraint("party_size >= 1 AND party_size <= 20", name="ck_reservations_party_size"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reference_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self, *, include_internal: bool = False) -> dict:
        data = {
            "id": self.id,
            "referenceCode": self.reference_code,
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "customerPhone": self.customer_phone,
            "partySize": self.party_size,
            "reservedAt": self.reserved_at.isoformat(),
            "date": self.reserved_at.date().isoformat(),
            "time": self.reserved_at.strftime("%H:%M"),
            "status": self.status,
            "specialRequests": self.special_requests or "",
        }
        if include_internal:
            data["internalNotes"] = self.internal_notes or ""
            data["confirmedAt"] = self.confirmed_at.isoformat() if self.confirmed_at else None
            data["cancelledAt"] = self.cancelled_at.isoformat() if self.cancelled_at else None
        return data
