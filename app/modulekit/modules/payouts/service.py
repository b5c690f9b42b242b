"""
Wallet ledger, phone OTP verification, payout-method linking and cashouts.

Services mutate and flush; routes commit once. An ApiError raised mid-way
leaves the request session uncommitted, so the wallet row and its
transaction row are always written together.
"""
from __future__ import annotations

import json
import logging
import re
import secrets
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import select
from werkzeug.security import check_password_hash, generate_password_hash

from app.modulekit.audit import record_event
from app.modulekit.errors import ApiError, ValidationError
from app.modulekit.modules.payouts.models import Cashout, Verification, Wallet, WalletTransaction
from app.modulekit.utils import clean_str

if TYPE_CHECKING:
    from flask import Request
    from sqlalchemy.orm import Session

    from app.modulekit.models import User

logger = logging.getLogger(__name__)

CREDIT_TYPES = frozenset({"survey", "spin", "streak_bonus", "achievement", "referral", "bonus", "adjustment"})
PAYOUT_PROVIDERS = ("paypal", "venmo", "stripe", "bank")

_CENT = Decimal("0.01")
# Numeric(12, 2) holds ten integer digits.
MAX_AMOUNT = Decimal("9999999999.99")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_VENMO_RE = re.compile(r"^@[A-Za-z0-9_-]{4,30}$")


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError(f"{field} must be a positive number.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a positive number.")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be a positive number.")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} must be at most {MAX_AMOUNT}.")
    try:
        return amount.quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"{field} must be a positive number.")


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


def get_or_create_wallet(s: "Session", user_id: int, *, for_update: bool = False) -> Wallet:
    stmt = select(Wallet).where(Wallet.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    wallet = s.execute(stmt).scalar_one_or_none()
    if wallet is None:
        now = datetime.utcnow()
        wallet = Wallet(user_id=user_id, balance=Decimal("0.00"), lifetime_earned=Decimal("0.00"), created_at=now, updated_at=now)
        s.add(wallet)
        s.flush()
    return wallet


def _write_tx(
    s: "Session",
    wallet: Wallet,
    *,
    kind: str,
    tx_type: str,
    amount: Decimal,
    description: str | None,
    reference_id: str | None,
    metadata: dict | None,
) -> WalletTransaction:
    tx = WalletTransaction(
        wallet_id=wallet.id,
        kind=kind,
        type=tx_type,
        amount=amount,
        balance_after=wallet.balance,
        description=description,
        reference_id=reference_id,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
    )
    s.add(tx)
    s.flush()
    return tx


def credit_wallet(
    s: "Session",
    user_id: int,
    amount: Any,
    tx_type: str,
    *,
    description: str | None = None,
    reference_id: str | None = None,
    metadata: dict | None = None,
) -> WalletTransaction:
    if tx_type not in CREDIT_TYPES:
        raise ValidationError(f"Invalid credit type. Must be one of: {', '.join(sorted(CREDIT_TYPES))}")
    value = parse_amount(amount)
    wallet = get_or_create_wallet(s, user_id, for_update=True)
    if Decimal(wallet.lifetime_earned) + value > MAX_AMOUNT:
        raise ValidationError("Credit would exceed the maximum wallet balance.")
    wallet.balance = Decimal(wallet.balance) + value
    wallet.lifetime_earned = Decimal(wallet.lifetime_earned) + value
    wallet.updated_at = datetime.utcnow()
    return _write_tx(
        s, wallet, kind="credit", tx_type=tx_type, amount=value,
        description=description, reference_id=reference_id, metadata=metadata,
    )


def debit_wallet(
    s: "Session",
    user_id: int,
    amount: Any,
    tx_type: str = "cashout",
    *,
    description: str | None = None,
    reference_id: str | None = None,
    metadata: dict | None = None,
) -> WalletTransaction:
    value = parse_amount(amount)
    wallet = get_or_create_wallet(s, user_id, for_update=True)
    balance = Decimal(wallet.balance)
    if balance < value:
        raise ApiError(
            "Insufficient balance",
            status=400,
            code="INSUFFICIENT_BALANCE",
            extra={"balance": str(balance), "required": str(value)},
        )
    wallet.balance = balance - value
    wallet.updated_at = datetime.utcnow()
    return _write_tx(
        s, wallet, kind="debit", tx_type=tx_type, amount=value,
        description=description, reference_id=reference_id, metadata=metadata,
    )


def wallet_summary(s: "Session", user_id: int, limit: int = 20) -> dict:
    wallet = get_or_create_wallet(s, user_id)
    limit = max(1, min(int(limit), 100))
    txs = s.execute(
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
    ).scalars()
    return {
        "balance": str(wallet.balance),
        "lifetimeEarned": str(wallet.lifetime_earned),
        "transactions": [t.to_dict() for t in txs],
    }


# ---------------------------------------------------------------------------
# Phone verification
# ---------------------------------------------------------------------------


def get_verification(s: "Session", user_id: int, *, create: bool = False, for_update: bool = False) -> Verification | None:
    stmt = select(Verification).where(Verification.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    v = s.execute(stmt).scalar_one_or_none()
    if v is None and create:
        now = datetime.utcnow()
        v = Verification(user_id=user_id, phone_verified=False, payout_verified=False, otp_attempts=0, created_at=now, updated_at=now)
        s.add(v)
        s.flush()
    return v


def normalize_phone(raw: str | None) -> str:
    """Keep digits (and a leading +). 10 digits are assumed to be US numbers."""
    raw = clean_str(raw, "phone")
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 10 and not raw.startswith("+"):
        digits = "1" + digits
    if not 10 <= len(digits) <= 15:
        raise ValidationError("A valid phone number is required.")
    return f"+{digits}"


def _generate_otp() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def send_phone_code(s: "Session", user: "User", phone: str | None) -> tuple[Verification, str]:
    """
    Store a hashed one-time code for `phone` and return it. Delivery (SMS) is the
    caller's concern; the plaintext never touches the database.
    """
    normalized = normalize_phone(phone)
    v = get_verification(s, user.id, create=True, for_update=True)
    assert v is not None
    code = _generate_otp()
    ttl = int(current_app.config.get("OTP_TTL_MINUTES") or 10)

    if v.phone != normalized:
        v.phone_verified = False
        v.phone_verified_at = None
    v.phone = normalized
    v.otp_hash = generate_password_hash(code)
    v.otp_expires_at = datetime.utcnow() + timedelta(minutes=ttl)
    v.otp_attempts = 0
    v.updated_at = datetime.utcnow()
    s.flush()

    record_event(s, actor=user, action="verification.phone.send", entity_type="Verification", entity_id=str(v.id),
                 metadata={"phone": v.masked_phone})
    logger.info("OTP issued for user=%s phone=%s", user.id, v.masked_phone)
    return v, code


def verify_phone_code(s: "Session", user: "User", code: str | None) -> Verification:
    v = get_verification(s, user.id, for_update=True)
    if v is None or not v.otp_hash or v.otp_expires_at is None:
        raise ApiError("No verification code has been sent", status=400, code="INVALID_CODE")
    if datetime.utcnow() > v.otp_expires_at:
        raise ApiError("Verification code expired", status=400, code="CODE_EXPIRED")

    max_attempts = int(current_app.config.get("OTP_MAX_ATTEMPTS") or 5)
    if v.otp_attempts >= max_attempts:
        raise ApiError("Too many attempts. Request a new code.", status=429, code="TOO_MANY_ATTEMPTS")

    code = clean_str(code, "code")
    if not code or not check_password_hash(v.otp_hash, code):
        v.otp_attempts += 1
        v.updated_at = datetime.utcnow()
        # Persist the failed attempt even though the request errors.
        s.commit()
        raise ApiError(
            "Invalid verification code",
            status=400,
            code="INVALID_CODE",
            extra={"attemptsRemaining": max(0, max_attempts - v.otp_attempts)},
        )

    now = datetime.utcnow()
    v.phone_verified = True
    v.phone_verified_at = now
    v.otp_hash = None
    v.otp_expires_at = None
    v.otp_attempts = 0
    v.updated_at = now
    s.flush()
    record_event(s, actor=user, action="verification.phone.verified", entity_type="Verification", entity_id=str(v.id))
    return v


# ---------------------------------------------------------------------------
# Payout method
# ---------------------------------------------------------------------------


def validate_payout_account(provider: str, account: str) -> list[str]:
    errors = []
    if provider not in PAYOUT_PROVIDERS:
        errors.append(f"Provider must be one of: {', '.join(PAYOUT_PROVIDERS)}.")
        return errors
    if not account:
        errors.append("Account is required.")
    elif provider == "paypal" and not _EMAIL_RE.match(account):
        errors.append("PayPal account must be an email address.")
    elif provider == "venmo" and not _VENMO_RE.match(account):
        errors.append("Venmo account must be a @handle.")
    return errors


def link_payout_method(s: "Session", user: "User", provider: str | None, account: str | None) -> Verification:
    provider = clean_str(provider, "provider").lower()
    account = clean_str(account, "account")
    errors = validate_payout_account(provider, account)
    if errors:
        raise ValidationError(" ".join(errors))

    v = get_verification(s, user.id, create=True, for_update=True)
    assert v is not None
    now = datetime.utcnow()
    v.payout_provider = provider
    v.payout_account = account
    v.payout_verified = True
    v.payout_linked_at = now
    v.updated_at = now
    s.flush()
    record_event(s, actor=user, action="verification.payout.link", entity_type="Verification", entity_id=str(v.id),
                 metadata={"provider": provider, "account": v.masked_account})
    return v


def verification_status(s: "Session", user_id: int) -> dict:
    v = get_verification(s, user_id)
    if v is None:
        return {"phoneVerified": False, "phone": None, "payoutMethodLinked": False, "payoutProvider": None, "payoutAccount": None}
    return v.to_status_dict()


# ---------------------------------------------------------------------------
# Cashout
# ---------------------------------------------------------------------------


def minimum_cashout() -> Decimal:
    return Decimal(str(current_app.config.get("MIN_CASHOUT") or "5.00"))


def request_cashout(
    s: "Session",
    user: "User",
    verification: Verification,
    amount: Any,
    *,
    req: "Request",
    client_data: dict | None = None,
) -> Cashout:
    from app.modulekit.modules.fraud.service import assess_request

    value = parse_amount(amount)
    minimum = minimum_cashout()
    if value < minimum:
        raise ApiError(f"Minimum cashout is {minimum}", status=400, code="BELOW_MINIMUM", extra={"minimum": str(minimum)})

    risk = assess_request(s, user_id=user.id, req=req, action="cashout", client_data=client_data)
    if risk.high_risk:
        record_event(s, actor=user, action="cashout.blocked", entity_type="User", entity_id=str(user.id),
                     reason=",".join(risk.reasons), metadata={"amount": str(value), "score": risk.score})
        # Keep the audit row and fingerprint even though the request is refused.
        s.commit()
        raise ApiError("Cashout blocked for review", status=403, code="FRAUD_RISK_HIGH", extra={"risk": risk.to_dict()})

    tx = debit_wallet(s, user.id, value, "cashout", description=f"Cashout via {verification.payout_provider}")
    now = datetime.utcnow()
    cashout = Cashout(
        user_id=user.id,
        amount=value,
        provider=verification.payout_provider or "",
        account=verification.payout_account or "",
        status="pending",
        risk_score=risk.score,
        wallet_transaction_id=tx.id,
        created_at=now,
        updated_at=now,
    )
    s.add(cashout)
    s.flush()
    tx.reference_id = f"cashout:{cashout.id}"
    record_event(s, actor=user, action="cashout.request", entity_type="Cashout", entity_id=str(cashout.id),
                 metadata={"amount": str(value), "provider": cashout.provider, "score": risk.score})
    logger.info("Cashout %s requested by user=%s amount=%s", cashout.id, user.id, value)
    return cashout


def list_cashouts(s: "Session", user_id: int, limit: int = 20) -> list[Cashout]:
    limit = max(1, min(int(limit), 100))
    return list(
        s.execute(
            select(Cashout).where(Cashout.user_id == user_id).order_by(Cashout.created_at.desc(), Cashout.id.desc()).limit(limit)
        ).scalars()
    )
