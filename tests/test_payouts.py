from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.modulekit.db import session_scope
from app.modulekit.errors import ValidationError
from app.modulekit.models import AuditEvent
from app.modulekit.modules.payouts.models import Verification
from app.modulekit.modules.payouts.service import MAX_AMOUNT, normalize_phone, parse_amount
from tests.conftest import register

DEVICE = {"screenResolution": "2560x1440", "timezone": "America/Chicago", "language": "en-US", "platform": "MacIntel"}


def _verified_user(client, email, *, account="payee@example.com"):
    user_id, headers = register(client, email)
    r = client.post("/api/verification/phone/send", json={"phone": "(555) 010-1234"}, headers=headers)
    assert r.status_code == 200
    code = r.json["debugCode"]
    r = client.post("/api/verification/phone/verify", json={"code": code}, headers=headers)
    assert r.status_code == 200
    r = client.post("/api/verification/payout-method", json={"provider": "paypal", "account": account}, headers=headers)
    assert r.status_code == 200, r.json
    return user_id, headers


def _credit(client, admin_headers, user_id, amount="20.00", tx_type="survey"):
    return client.post(
        "/api/wallet/credit",
        json={"userId": user_id, "amount": amount, "type": tx_type},
        headers=admin_headers,
    )


def test_parse_amount():
    assert parse_amount("10") == Decimal("10.00")
    assert parse_amount(2.345) == Decimal("2.35")
    for bad in (None, "", "abc", 0, -1, True, "NaN", [5], 1e30, "1e28", MAX_AMOUNT + Decimal("0.01")):
        with pytest.raises(ValidationError):
            parse_amount(bad)
    assert parse_amount(str(MAX_AMOUNT)) == MAX_AMOUNT


def test_normalize_phone():
    assert normalize_phone("555-010-1234") == "+15550101234"
    assert normalize_phone("+44 20 7946 0958") == "+442079460958"
    with pytest.raises(ValidationError):
        normalize_phone("12345")


def test_phone_verification_flow(client):
    _, headers = register(client, "phone@example.com")
    r = client.get("/api/verification/status", headers=headers)
    assert r.json["verification"]["phoneVerified"] is False

    r = client.post("/api/verification/phone/send", json={"phone": "5550101234"}, headers=headers)
    assert r.json["phone"] == "***1234"
    code = r.json["debugCode"]

    wrong = "000000" if code != "000000" else "111111"
    r = client.post("/api/verification/phone/verify", json={"code": wrong}, headers=headers)
    assert r.status_code == 400
    assert r.json["code"] == "INVALID_CODE"
    assert r.json["attemptsRemaining"] == 4

    r = client.post("/api/verification/phone/verify", json={"code": code}, headers=headers)
    assert r.status_code == 200
    assert r.json["verification"]["phoneVerified"] is True

    # The code is single use.
    r = client.post("/api/verification/phone/verify", json={"code": code}, headers=headers)
    assert r.status_code == 400


def test_otp_attempts_are_capped(app, client):
    app.config["OTP_MAX_ATTEMPTS"] = 2
    _, headers = register(client, "capped@example.com")
    code = client.post("/api/verification/phone/send", json={"phone": "5550101234"}, headers=headers).json["debugCode"]
    wrong = "000000" if code != "000000" else "111111"
    for _ in range(2):
        client.post("/api/verification/phone/verify", json={"code": wrong}, headers=headers)
    r = client.post("/api/verification/phone/verify", json={"code": code}, headers=headers)
    assert r.status_code == 429
    assert r.json["code"] == "TOO_MANY_ATTEMPTS"


def test_payout_method_requires_phone(client):
    _, headers = register(client, "nophone@example.com")
    r = client.post("/api/verification/payout-method", json={"provider": "paypal", "account": "a@b.co"}, headers=headers)
    assert r.status_code == 403
    assert r.json["code"] == "PHONE_VERIFICATION_REQUIRED"


def test_payout_method_validation(client):
    _, headers = _verified_user(client, "venmo@example.com")
    r = client.post("/api/verification/payout-method", json={"provider": "venmo", "account": "nohandle"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Venmo account must be a @handle."

    r = client.post("/api/verification/payout-method", json={"provider": "cash", "account": "x"}, headers=headers)
    assert r.status_code == 400

    r = client.post("/api/verification/payout-method", json={"provider": "venmo", "account": "@good_handle"}, headers=headers)
    assert r.status_code == 200
    assert r.json["verification"]["payoutAccount"] == "@go***"


def test_wallet_credit_requires_permission_and_valid_type(client, admin_headers):
    user_id, headers = register(client, "wallet@example.com")
    r = client.post("/api/wallet/credit", json={"userId": user_id, "amount": "1", "type": "survey"}, headers=headers)
    assert r.status_code == 403

    r = _credit(client, admin_headers, user_id, tx_type="gift")
    assert r.status_code == 400
    assert r.json["error"].startswith("Invalid credit type.")

    r = _credit(client, admin_headers, 99999)
    assert r.status_code == 404

    r = _credit(client, admin_headers, user_id, amount="12.5")
    assert r.status_code == 201
    assert r.json["transaction"]["balanceAfter"] == "12.50"

    r = client.get("/api/wallet", headers=headers)
    wallet = r.json["wallet"]
    assert wallet["balance"] == "12.50"
    assert wallet["lifetimeEarned"] == "12.50"
    assert wallet["transactions"][0]["kind"] == "credit"


def test_cashout_requires_payout_method(client):
    _, headers = register(client, "halfway@example.com")
    code = client.post("/api/verification/phone/send", json={"phone": "5550101234"}, headers=headers).json["debugCode"]
    client.post("/api/verification/phone/verify", json={"code": code}, headers=headers)
    r = client.post("/api/payouts/cashout", json={"amount": "5"}, headers=headers)
    assert r.status_code == 403
    assert r.json["code"] == "PAYOUT_METHOD_REQUIRED"


def test_cashout_flow(client, admin_headers):
    user_id, headers = _verified_user(client, "cash@example.com")
    _credit(client, admin_headers, user_id, amount="20.00")

    r = client.post("/api/payouts/cashout", json={"amount": "4.99", "fingerprint": DEVICE}, headers=headers)
    assert r.status_code == 400
    assert r.json["code"] == "BELOW_MINIMUM"

    r = client.post("/api/payouts/cashout", json={"amount": "50", "fingerprint": DEVICE}, headers=headers)
    assert r.status_code == 400
    assert r.json["code"] == "INSUFFICIENT_BALANCE"
    assert r.json["balance"] == "20.00"

    r = client.post("/api/payouts/cashout", json={"amount": "7.50", "fingerprint": DEVICE}, headers=headers)
    assert r.status_code == 201, r.json
    assert r.json["cashout"]["status"] == "pending"
    assert r.json["cashout"]["provider"] == "paypal"
    assert r.json["wallet"]["balance"] == "12.50"
    assert r.json["wallet"]["transactions"][0]["referenceId"] == f"cashout:{r.json['cashout']['id']}"

    r = client.get("/api/payouts", headers=headers)
    assert len(r.json["cashouts"]) == 1


def test_cashout_blocked_for_shared_device(app, client, admin_headers):
    first_id, first = _verified_user(client, "first@example.com")
    second_id, second = _verified_user(client, "second@example.com", account="other@example.com")
    _credit(client, admin_headers, first_id)
    _credit(client, admin_headers, second_id)

    r = client.post("/api/payouts/cashout", json={"amount": "5", "fingerprint": DEVICE}, headers=first)
    assert r.status_code == 201

    r = client.post("/api/payouts/cashout", json={"amount": "5", "fingerprint": DEVICE}, headers=second)
    assert r.status_code == 403
    assert r.json["code"] == "FRAUD_RISK_HIGH"
    assert "duplicate_device" in r.json["risk"]["reasons"]

    # Balance untouched, refusal audited.
    r = client.get("/api/wallet", headers=second)
    assert r.json["wallet"]["balance"] == "20.00"
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter_by(action="cashout.blocked").count() == 1


def test_expired_code_is_rejected(app, client):
    user_id, headers = register(client, "late@example.com")
    code = client.post("/api/verification/phone/send", json={"phone": "5550101234"}, headers=headers).json["debugCode"]
    with session_scope(app) as s:
        v = s.query(Verification).filter_by(user_id=user_id).one()
        v.otp_expires_at = datetime.utcnow() - timedelta(seconds=1)

    r = client.post("/api/verification/phone/verify", json={"code": code}, headers=headers)
    assert r.status_code == 400
    assert r.json["code"] == "CODE_EXPIRED"
    assert client.get("/api/verification/status", headers=headers).json["verification"]["phoneVerified"] is False


def test_cashout_checks_phone_before_payout_method(client):
    _, headers = register(client, "fresh@example.com")
    r = client.post("/api/payouts/cashout", json={"amount": "5"}, headers=headers)
    assert r.status_code == 403
    assert r.json["code"] == "PHONE_VERIFICATION_REQUIRED"


def test_wrong_json_types_are_rejected(client, admin_headers):
    user_id, headers = _verified_user(client, "types@example.com")

    r = client.post("/api/verification/payout-method", json={"provider": 5, "account": "a@b.co"}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "provider must be a string"

    r = client.post("/api/verification/phone/verify", json={"code": 123456}, headers=headers)
    assert r.status_code == 400

    r = client.post("/api/wallet/credit", json={"userId": user_id, "amount": "1", "type": ["survey"]}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["error"] == "type must be a string"


def test_wallet_credit_rejects_amounts_beyond_column_range(client, admin_headers):
    user_id, _ = register(client, "whale@example.com")
    r = _credit(client, admin_headers, user_id, amount=1e30)
    assert r.status_code == 400
    assert r.json["code"] == "VALIDATION_ERROR"

    assert _credit(client, admin_headers, user_id, amount=str(MAX_AMOUNT)).status_code == 201
    r = _credit(client, admin_headers, user_id, amount="0.01")
    assert r.status_code == 400
    assert r.json["error"] == "Credit would exceed the maximum wallet balance."
