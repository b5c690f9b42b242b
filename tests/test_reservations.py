import re
from datetime import datetime, timedelta

import pytest

from app.modulekit.errors import ValidationError
from app.modulekit.modules.reservations.service import parse_reserved_at


def _future(days=3, hour=19):
    d = (datetime.utcnow() + timedelta(days=days)).date()
    return d.isoformat(), f"{hour:02d}:30"


def _book(client, name="Sam Diner", email="sam@example.com", party=4, days=3, hour=19, **extra):
    d, t = _future(days, hour)
    body = {"customerName": name, "customerEmail": email, "partySize": party, "date": d, "time": t, **extra}
    return client.post("/api/reservations", json=body)


def test_parse_reserved_at_forms():
    assert parse_reserved_at({"date": "2030-05-01", "time": "18:45"}) == datetime(2030, 5, 1, 18, 45)
    assert parse_reserved_at({"reservedAt": "2030-05-01T20:00:00+02:00"}) == datetime(2030, 5, 1, 18, 0)
    assert parse_reserved_at({"reservedAt": "2030-05-01T18:00:00Z"}) == datetime(2030, 5, 1, 18, 0)
    with pytest.raises(ValidationError):
        parse_reserved_at({"date": "tomorrow", "time": "7pm"})


def test_public_booking(client):
    r = _book(client, specialRequests="Window seat")
    assert r.status_code == 201
    res = r.json["reservation"]
    assert re.fullmatch(r"RES-[A-Z0-9]{4}", res["referenceCode"])
    assert res["status"] == "pending"
    assert res["time"] == "19:30"
    assert res["specialRequests"] == "Window seat"
    # Staff-only fields stay private.
    assert "internalNotes" not in res


def test_booking_validation(client):
    r = client.post("/api/reservations", json={"customerEmail": "a@b.co"})
    assert r.status_code == 400
    assert r.json["error"].startswith("Required fields:")

    for size in (0, 21, "many"):
        r = _book(client, party=size)
        assert r.status_code == 400
        assert r.json["error"] == "Party size must be between 1 and 20"

    r = _book(client, days=-1)
    assert r.status_code == 400
    assert r.json["error"] == "Reservation time must be in the future"


def test_staff_endpoints_require_permission(client):
    rid = _book(client).json["reservation"]["id"]
    assert client.get("/api/reservations").status_code == 401
    assert client.post(f"/api/reservations/{rid}/status", json={"status": "confirmed"}).status_code == 401


def test_status_transitions(client, staff_headers):
    rid = _book(client).json["reservation"]["id"]

    r = client.post(f"/api/reservations/{rid}/status", json={"status": "seated"}, headers=staff_headers)
    assert r.status_code == 400
    assert r.json["code"] == "INVALID_TRANSITION"
    assert r.json["from"] == "pending"
    assert r.json["to"] == "seated"

    r = client.post(f"/api/reservations/{rid}/status", json={"status": "lost"}, headers=staff_headers)
    assert r.status_code == 400

    r = client.post(f"/api/reservations/{rid}/status", json={"status": "confirmed"}, headers=staff_headers)
    assert r.json["reservation"]["status"] == "confirmed"
    assert r.json["reservation"]["confirmedAt"]

    for step in ("seated", "completed"):
        r = client.post(f"/api/reservations/{rid}/status", json={"status": step}, headers=staff_headers)
        assert r.status_code == 200

    r = client.post(f"/api/reservations/{rid}/status", json={"status": "cancelled"}, headers=staff_headers)
    assert r.json["code"] == "INVALID_TRANSITION"


def test_list_filters_and_notes(client, staff_headers):
    first = _book(client, "Alice", "alice@example.com", days=2).json["reservation"]
    _book(client, "Bob", "bob@example.com", days=2, hour=20)
    _book(client, "Cara", "cara@example.com", days=5)

    r = client.get(f"/api/reservations?date={first['date']}", headers=staff_headers)
    assert r.json["total"] == 2
    assert [x["customerName"] for x in r.json["reservations"]] == ["Alice", "Bob"]

    r = client.get("/api/reservations?search=cara", headers=staff_headers)
    assert [x["customerName"] for x in r.json["reservations"]] == ["Cara"]

    r = client.get("/api/reservations?status=bogus", headers=staff_headers)
    assert r.status_code == 400

    r = client.put(f"/api/reservations/{first['id']}/notes", json={"notes": "  Regular  "}, headers=staff_headers)
    assert r.json["reservation"]["internalNotes"] == "Regular"

    r = client.get(f"/api/reservations/{first['id']}", headers=staff_headers)
    assert r.json["reservation"]["internalNotes"] == "Regular"
    assert client.get("/api/reservations/9999", headers=staff_headers).status_code == 404


def test_day_summary(client, staff_headers):
    a = _book(client, "A", "a@example.com", party=2, days=1).json["reservation"]
    b = _book(client, "B", "b@example.com", party=6, days=1, hour=20).json["reservation"]
    client.post(f"/api/reservations/{b['id']}/status", json={"status": "cancelled"}, headers=staff_headers)

    r = client.get(f"/api/reservations/today?date={a['date']}", headers=staff_headers)
    summary = r.json["summary"]
    assert summary == {"date": a["date"], "total": 2, "pending": 1, "confirmed": 0, "cancelled": 1, "totalGuests": 2}

    r = client.get("/api/reservations/today?date=31-12-2030", headers=staff_headers)
    assert r.status_code == 400


def test_non_string_fields_are_rejected(client, staff_headers):
    r = _book(client, name=7)
    assert r.status_code == 400
    assert r.json["error"] == "customerName must be a string"

    r = _book(client, specialRequests=["window"])
    assert r.status_code == 400

    rid = _book(client).json["reservation"]["id"]
    r = client.post(f"/api/reservations/{rid}/status", json={"status": 5}, headers=staff_headers)
    assert r.status_code == 400
    assert r.json["error"] == "status must be a string"
