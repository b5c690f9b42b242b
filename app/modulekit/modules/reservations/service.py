"""
Reservations.

Times are naive UTC, like every other timestamp in the app. Customers book
through the public endpoint; staff move bookings through ALLOWED_TRANSITIONS.
"""
from __future__ import annotations

import logging
import secrets
import string
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from app.modulekit.audit import record_event
from app.modulekit.errors import ApiError, NotFoundError, ValidationError
from app.modulekit.modules.reservations.models import Reservation
from app.modulekit.utils import clean_str, optional_str, str_field

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.modulekit.models import User

logger = logging.getLogger(__name__)

MIN_PARTY = 1
MAX_PARTY = 20
STATUSES = ("pending", "confirmed", "cancelled", "seated", "completed")
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"seated", "cancelled"}),
    "seated": frozenset({"completed"}),
    "cancelled": frozenset(),
    "completed": frozenset(),
}

_REF_ALPHABET = string.ascii_uppercase + string.digits


def _reference_code(s: "Session") -> str:
    while True:
        code = "RES-" + "".join(secrets.choice(_REF_ALPHABET) for _ in range(4))
        if s.execute(select(Reservation.id).where(Reservation.reference_code == code)).first() is None:
            return code


def parse_reserved_at(payload: dict) -> datetime:
    """Accepts `reservedAt` (ISO 8601) or separate `date` (YYYY-MM-DD) and `time` (HH:MM)."""
    raw = payload.get("reservedAt") or payload.get("reserved_at")
    try:
        if raw:
            value = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc).replace(tzinfo=None)
            return value
        d = date.fromisoformat(str(payload.get("date") or ""))
        t = time.fromisoformat(str(payload.get("time") or ""))
    except ValueError:
        raise ValidationError("A valid reservation date and time are required")
    return datetime.combine(d, t)


def parse_party_size(value) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Party size must be between {MIN_PARTY} and {MAX_PARTY}")
    try:
        n = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Party size must be between {MIN_PARTY} and {MAX_PARTY}")
    if not MIN_PARTY <= n <= MAX_PARTY:
        raise ValidationError(f"Party size must be between {MIN_PARTY} and {MAX_PARTY}")
    return n


def create_reservation(s: "Session", payload: dict, *, now: datetime | None = None) -> Reservation:
    name = str_field(payload, "customerName", "customer_name")
    email = str_field(payload, "customerEmail", "customer_email").lower()
    if not name or not email or "@" not in email:
        raise ValidationError("Required fields: customerName, customerEmail, date, time, partySize")

    party_size = parse_party_size(payload.get("partySize", payload.get("party_size")))
    reserved_at = parse_reserved_at(payload)
    now = now or datetime.utcnow()
    if reserved_at <= now:
        raise ValidationError("Reservation time must be in the future")

    r = Reservation(
        reference_code=_reference_code(s),
        customer_name=name,
        customer_email=email,
        customer_phone=optional_str(payload, "customerPhone", "customer_phone"),
        party_size=party_size,
        reserved_at=reserved_at,
        status="pending",
        special_requests=optional_str(payload, "specialRequests", "special_requests"),
        created_at=now,
        updated_at=now,
    )
    s.add(r)
    s.flush()
    logger.info("Reservation %s created for %s (party of %s)", r.reference_code, r.reserved_at.isoformat(), party_size)
    return r


def get_reservation(s: "Session", reservation_id: int, *, for_update: bool = False) -> Reservation:
    stmt = select(Reservation).where(Reservation.id == reservation_id)
    if for_update:
        stmt = stmt.with_for_update()
    r = s.execute(stmt).scalar_one_or_none()
    if r is None:
        raise NotFoundError("Reservation not found")
    return r


def list_reservations(
    s: "Session",
    *,
    on_date: str | None = None,
    status: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Reservation], int]:
    stmt = select(Reservation)
    if on_date:
        try:
            d = date.fromisoformat(on_date)
        except ValueError:
            raise ValidationError("date must be YYYY-MM-DD")
        start = datetime.combine(d, time.min)
        stmt = stmt.where(Reservation.reserved_at >= start, Reservation.reserved_at < start + timedelta(days=1))
    if status:
        if status not in STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(STATUSES)}")
        stmt = stmt.where(Reservation.status == status)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Reservation.customer_name.ilike(like),
                Reservation.customer_email.ilike(like),
                Reservation.reference_code.ilike(like),
            )
        )
    total = s.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    limit = max(1, min(int(limit), 200))
    offset = max(0, int(offset))
    rows = s.execute(stmt.order_by(Reservation.reserved_at.asc(), Reservation.id.asc()).offset(offset).limit(limit)).scalars()
    return list(rows), int(total)


def day_summary(s: "Session", on_date: date) -> dict:
    rows, _ = list_reservations(s, on_date=on_date.isoformat(), limit=200)
    active = [r for r in rows if r.status != "cancelled"]
    return {
        "date": on_date.isoformat(),
        "total": len(rows),
        "pending": sum(1 for r in rows if r.status == "pending"),
        "confirmed": sum(1 for r in rows if r.status == "confirmed"),
        "cancelled": sum(1 for r in rows if r.status == "cancelled"),
        "totalGuests": sum(r.party_size for r in active),
    }


def change_status(s: "Session", r: Reservation, new_status: str | None, *, actor: "User", reason: str | None = None) -> Reservation:
    new_status = clean_str(new_status, "status")
    if new_status not in STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(STATUSES)}")
    old = r.status
    if new_status not in ALLOWED_TRANSITIONS.get(old, frozenset()):
        raise ApiError(
            f"Cannot change reservation from {old} to {new_status}",
            status=400,
            code="INVALID_TRANSITION",
            extra={"from": old, "to": new_status},
        )
    now = datetime.utcnow()
    r.status = new_status
    if new_status == "confirmed":
        r.confirmed_at = now
    elif new_status == "cancelled":
        r.cancelled_at = now
    r.updated_at = now
    s.flush()
    record_event(
        s,
        actor=actor,
        action="reservation.status",
        entity_type="Reservation",
        entity_id=str(r.id),
        reason=clean_str(reason, "reason") or None,
        metadata={"from": old, "to": new_status, "reference": r.reference_code},
    )
    return r


def update_notes(s: "Session", r: Reservation, notes: str | None) -> Reservation:
    r.internal_notes = clean_str(notes, "notes") or None
    r.updated_at = datetime.utcnow()
    s.flush()
    return r
