from app.modulekit.db import session_scope
from app.modulekit.models import AuditEvent
from app.modulekit.modules.loyalty.models import Member, PointsTransaction
from app.modulekit.modules.loyalty.service import calculate_tier, next_tier
from tests.conftest import register


def _create_member(client, headers=None, **extra):
    body = {"name": "Ada Lovelace", "email": "ada@example.com", **extra}
    r = client.post("/api/loyalty/members", json=body, headers=headers or {})
    assert r.status_code == 201, r.json
    return r.json["member"]


def test_tier_thresholds():
    assert calculate_tier(0).name == "Bronze"
    assert calculate_tier(499).name == "Bronze"
    assert calculate_tier(500).name == "Silver"
    assert calculate_tier(2000).name == "Gold"
    assert calculate_tier(5000).name == "Platinum"
    assert next_tier(100).name == "Silver"
    assert next_tier(6000) is None


def test_create_member_defaults(client):
    member = _create_member(client)
    assert member["points"] == 0
    assert member["tier"] == "Bronze"
    assert member["multiplier"] == 1.0
    assert member["nextTier"] == {"name": "Silver", "pointsNeeded": 500}
    assert len(member["memberId"]) == 8
    assert len(member["referralCode"]) == 8


def test_create_member_validation(client):
    r = client.post("/api/loyalty/members", json={"email": "x"})
    assert r.status_code == 400
    assert "Name is required." in r.json["error"]

    _create_member(client)
    r = client.post("/api/loyalty/members", json={"name": "Dup", "email": "ADA@example.com"})
    assert r.status_code == 400
    assert r.json["error"] == "A member with that email already exists."


def test_earn_applies_tier_multiplier_and_promotes(client, staff_headers):
    member = _create_member(client)
    pk = member["id"]

    r = client.post(f"/api/loyalty/members/{pk}/points/earn", json={"points": 600}, headers=staff_headers)
    assert r.status_code == 200
    assert r.json["transaction"]["amount"] == 600
    assert r.json["member"]["tier"] == "Silver"

    # Silver earns at 1.25x, floored.
    r = client.post(f"/api/loyalty/members/{pk}/points/earn", json={"points": 10}, headers=staff_headers)
    assert r.json["transaction"]["amount"] == 12
    assert r.json["member"]["points"] == 612
    assert r.json["member"]["lifetimePoints"] == 612


def test_earn_rejects_non_positive(client, staff_headers):
    pk = _create_member(client)["id"]
    for bad in (0, -5, "abc", True, 1.5):
        r = client.post(f"/api/loyalty/members/{pk}/points/earn", json={"points": bad}, headers=staff_headers)
        assert r.status_code == 400, bad


def test_spend_insufficient_points(client, staff_headers):
    pk = _create_member(client)["id"]
    client.post(f"/api/loyalty/members/{pk}/points/earn", json={"points": 50}, headers=staff_headers)
    r = client.post(f"/api/loyalty/members/{pk}/points/spend", json={"points": 80}, headers=staff_headers)
    assert r.status_code == 400
    assert r.json["code"] == "INSUFFICIENT_POINTS"
    assert r.json["balance"] == 50
    assert r.json["required"] == 80

    r = client.post(f"/api/loyalty/members/{pk}/points/spend", json={"points": 20}, headers=staff_headers)
    assert r.status_code == 200
    assert r.json["member"]["points"] == 30
    # Spending never lowers lifetime points.
    assert r.json["member"]["lifetimePoints"] == 50


def test_adjust_requires_reason_and_is_audited(app, client, admin_headers, staff_headers):
    pk = _create_member(client)["id"]
    r = client.post(f"/api/loyalty/members/{pk}/points/adjust", json={"delta": 10}, headers=staff_headers)
    assert r.status_code == 403

    r = client.post(f"/api/loyalty/members/{pk}/points/adjust", json={"delta": 10}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["error"] == "A reason is required for adjustments."

    r = client.post(
        f"/api/loyalty/members/{pk}/points/adjust",
        json={"delta": -25, "reason": "Correction"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    # Clamped at zero.
    assert r.json["member"]["points"] == 0
    assert r.json["transaction"]["type"] == "adjustment"

    with session_scope(app) as s:
        events = s.query(AuditEvent).filter(AuditEvent.action == "points.adjust").all()
        assert len(events) == 1
        assert events[0].reason == "Correction"


def test_referral_bonus_goes_to_referrer(client, staff_headers):
    referrer = _create_member(client)
    r = client.post(
        "/api/loyalty/members",
        json={"name": "Grace", "email": "grace@example.com", "referralCode": referrer["referralCode"].lower()},
    )
    assert r.status_code == 201

    r = client.get(f"/api/loyalty/members/{referrer['id']}/transactions", headers=staff_headers)
    txs = r.json["transactions"]
    assert txs[0]["type"] == "referral"
    assert txs[0]["amount"] == 100

    r = client.post("/api/loyalty/members", json={"name": "X", "email": "x@example.com", "referralCode": "NOPE1234"})
    assert r.status_code == 400
    assert r.json["error"] == "Unknown referral code."


def test_reward_redemption_flow(client, admin_headers, staff_headers):
    r = client.post("/api/loyalty/rewards", json={"name": "Free Coffee", "pointsCost": 100}, headers=admin_headers)
    assert r.status_code == 201
    reward_id = r.json["reward"]["id"]

    r = client.get("/api/loyalty/rewards")
    assert [x["name"] for x in r.json["rewards"]] == ["Free Coffee"]

    pk = _create_member(client)["id"]
    r = client.post(f"/api/loyalty/members/{pk}/rewards/{reward_id}/redeem", headers=staff_headers)
    assert r.status_code == 400
    assert r.json["code"] == "INSUFFICIENT_POINTS"

    client.post(f"/api/loyalty/members/{pk}/points/earn", json={"points": 150}, headers=staff_headers)
    r = client.post(f"/api/loyalty/members/{pk}/rewards/{reward_id}/redeem", headers=staff_headers)
    assert r.status_code == 200
    assert r.json["redemption"]["rewardName"] == "Free Coffee"
    assert r.json["member"]["points"] == 50

    r = client.get("/api/loyalty/stats", headers=staff_headers)
    assert r.json["stats"] == {"totalMembers": 1, "totalPointsInCirculation": 50, "totalRedemptions": 1}


def test_member_owner_can_view_but_others_cannot(client):
    owner_id, owner = register(client, "owner@example.com")
    r = client.post("/api/loyalty/members", json={"name": "Owner", "email": "owner@example.com"}, headers=owner)
    pk = r.json["member"]["id"]

    assert client.get(f"/api/loyalty/members/{pk}", headers=owner).status_code == 200

    _, other = register(client, "other@example.com")
    r = client.get(f"/api/loyalty/members/{pk}", headers=other)
    assert r.status_code == 403

    assert client.get(f"/api/loyalty/members/{pk}").status_code == 401


def test_lookup_and_search(client, staff_headers):
    member = _create_member(client)
    r = client.get(f"/api/loyalty/members/lookup/{member['memberId']}", headers=staff_headers)
    assert r.status_code == 200
    assert r.json["member"]["id"] == member["id"]

    r = client.get("/api/loyalty/members/lookup/ZZZZZZZZ", headers=staff_headers)
    assert r.status_code == 404

    r = client.get("/api/loyalty/members?q=ada", headers=staff_headers)
    assert len(r.json["members"]) == 1


def test_tiers_public(client):
    r = client.get("/api/loyalty/tiers")
    assert [t["name"] for t in r.json["tiers"]] == ["Bronze", "Silver", "Gold", "Platinum"]


def test_adjust_leaves_lifetime_points_alone(client, admin_headers, staff_headers):
    pk = _create_member(client)["id"]
    client.post(f"/api/loyalty/members/{pk}/points/earn", json={"points": 100}, headers=staff_headers)

    r = client.post(
        f"/api/loyalty/members/{pk}/points/adjust",
        json={"delta": 40, "reason": "Goodwill"},
        headers=admin_headers,
    )
    assert r.json["member"]["points"] == 140
    assert r.json["member"]["lifetimePoints"] == 100

    r = client.post(
        f"/api/loyalty/members/{pk}/points/adjust",
        json={"delta": -30, "reason": "Correction"},
        headers=admin_headers,
    )
    assert r.json["member"]["points"] == 110
    assert r.json["member"]["lifetimePoints"] == 100


def test_non_string_fields_are_rejected(client, staff_headers):
    r = client.post("/api/loyalty/members", json={"name": ["Ada"], "email": "ada@example.com"})
    assert r.status_code == 400

    pk = _create_member(client)["id"]
    r = client.post(f"/api/loyalty/members/{pk}/points/earn", json={"points": 10, "description": 5}, headers=staff_headers)
    assert r.status_code == 400
    assert r.json["error"] == "description must be a string"


def test_member_transactions_load_and_cascade(app, client, staff_headers):
    pk = _create_member(client)["id"]
    client.post(f"/api/loyalty/members/{pk}/points/earn", json={"points": 10}, headers=staff_headers)
    client.post(f"/api/loyalty/members/{pk}/points/spend", json={"points": 5}, headers=staff_headers)

    with session_scope(app) as s:
        member = s.get(Member, pk)
        assert [t.type for t in sorted(member.transactions, key=lambda t: t.id)] == ["earn", "spend"]
        s.delete(member)

    with session_scope(app) as s:
        assert s.query(PointsTransaction).filter_by(member_id=pk).count() == 0
