import json

import redis

from app.modulekit.modules.menu.broadcaster import Broadcaster, RedisBroadcaster, broadcaster_from_config, event_stream
from app.modulekit.modules.menu.service import get_broadcaster


def _category(client, headers, name="Mains", **extra):
    r = client.post("/api/menu/category", json={"name": name, **extra}, headers=headers)
    assert r.status_code == 201, r.json
    return r.json["category"]


def _item(client, headers, category_id, name="Burger", price="12.50", **extra):
    r = client.post("/api/menu/item", json={"name": name, "categoryId": category_id, "price": price, **extra}, headers=headers)
    assert r.status_code == 201, r.json
    return r.json["item"]


def _parse(frame: str) -> tuple[str | None, dict]:
    event = None
    data = None
    for line in frame.strip().splitlines():
        if line.startswith("event: "):
            event = line[len("event: "):]
        elif line.startswith("data: "):
            data = json.loads(line[len("data: "):])
    return event, data


def test_menu_crud(client, staff_headers):
    mains = _category(client, staff_headers)
    drinks = _category(client, staff_headers, "Drinks")
    assert mains["sortOrder"] == 0
    assert drinks["sortOrder"] == 1

    burger = _item(client, staff_headers, mains["id"], dietaryFlags={"vegetarian": False})
    assert burger["price"] == "12.50"
    _item(client, staff_headers, mains["id"], "Salad", "9", available=False)
    _item(client, staff_headers, drinks["id"], "Lemonade", "3.25")

    r = client.get("/api/menu")
    assert [c["name"] for c in r.json["categories"]] == ["Mains", "Drinks"]
    assert [i["name"] for i in r.json["categories"][0]["items"]] == ["Burger", "Salad"]
    assert r.json["totalItems"] == 3
    assert r.json["availableItems"] == 2

    r = client.get("/api/menu?available=true")
    assert [i["name"] for i in r.json["categories"][0]["items"]] == ["Burger"]

    r = client.put(f"/api/menu/item/{burger['id']}", json={"price": "13", "popular": True}, headers=staff_headers)
    assert r.json["item"]["price"] == "13.00"
    assert r.json["item"]["popular"] is True

    r = client.delete(f"/api/menu/item/{burger['id']}", headers=staff_headers)
    assert r.status_code == 200
    assert client.put(f"/api/menu/item/{burger['id']}", json={"name": "x"}, headers=staff_headers).status_code == 404


def test_menu_validation(client, staff_headers):
    cat = _category(client, staff_headers)
    r = client.post("/api/menu/category", json={"name": " "}, headers=staff_headers)
    assert r.status_code == 400
    assert r.json["error"] == "Name is required"

    r = client.post("/api/menu/item", json={"name": "X", "price": "1"}, headers=staff_headers)
    assert r.json["error"] == "categoryId is required"

    r = client.post("/api/menu/item", json={"name": "X", "categoryId": cat["id"], "price": "-1"}, headers=staff_headers)
    assert r.json["error"] == "Price must be zero or greater"

    r = client.post("/api/menu/item", json={"name": "X", "categoryId": 999, "price": "1"}, headers=staff_headers)
    assert r.status_code == 404


def test_menu_edit_requires_permission(client):
    assert client.post("/api/menu/category", json={"name": "Mains"}).status_code == 401


def test_delete_category_is_soft(client, staff_headers):
    cat = _category(client, staff_headers)
    item = _item(client, staff_headers, cat["id"])

    r = client.delete(f"/api/menu/category/{cat['id']}", headers=staff_headers)
    assert r.json["message"] == "Category deleted"

    assert client.get("/api/menu").json["categories"] == []
    r = client.patch(f"/api/menu/item/{item['id']}/availability", json={"available": False}, headers=staff_headers)
    assert r.json["item"]["available"] is False
    assert client.put(f"/api/menu/category/{cat['id']}", json={"name": "Back"}, headers=staff_headers).status_code == 404


def test_availability_toggle(client, staff_headers):
    cat = _category(client, staff_headers)
    item = _item(client, staff_headers, cat["id"])

    r = client.patch(f"/api/menu/item/{item['id']}/availability", headers=staff_headers)
    assert r.json["item"]["available"] is False
    r = client.patch(f"/api/menu/item/{item['id']}/availability", json={}, headers=staff_headers)
    assert r.json["item"]["available"] is True
    r = client.patch(f"/api/menu/item/{item['id']}/availability", json={"available": True}, headers=staff_headers)
    assert r.json["item"]["available"] is True


def test_reorder(client, staff_headers):
    a = _category(client, staff_headers, "A")
    b = _category(client, staff_headers, "B")

    r = client.put("/api/menu/reorder", json={"type": "tables", "items": []}, headers=staff_headers)
    assert r.status_code == 400
    assert r.json["error"] == "Type and items array required"

    r = client.put(
        "/api/menu/reorder",
        json={"type": "categories", "items": [{"id": a["id"], "sortOrder": 5}, {"id": b["id"], "sortOrder": 1}, {"id": 999}]},
        headers=staff_headers,
    )
    assert r.json["updated"] == 2
    assert [c["name"] for c in client.get("/api/menu").json["categories"]] == ["B", "A"]

    first = _item(client, staff_headers, a["id"], "First")
    r = client.put(
        "/api/menu/reorder",
        json={"type": "items", "items": [{"id": first["id"], "categoryId": b["id"], "sortOrder": 0}]},
        headers=staff_headers,
    )
    assert r.status_code == 200
    categories = client.get("/api/menu").json["categories"]
    assert [i["name"] for i in categories[0]["items"]] == ["First"]


def test_broadcaster_fans_out_and_drops_slow_subscribers():
    b = Broadcaster(max_queue=1)
    fast = b.subscribe()
    slow = b.subscribe()
    assert b.publish("item_created", {"id": 1}) == 2
    fast.get_nowait()

    # `slow` is still full, so it is dropped.
    assert b.publish("item_updated", {"id": 1}) == 1
    assert b.subscriber_count == 1
    message = fast.get_nowait()
    assert message["type"] == "item_updated"
    assert message["data"] == {"id": 1}
    assert "timestamp" in message


def test_event_stream_frames():
    b = Broadcaster()
    stream = event_stream(b, heartbeat=0.01, max_events=1)

    event, data = _parse(next(stream))
    assert event == "connected"
    assert data == {"type": "connected"}
    assert b.subscriber_count == 1

    assert next(stream) == ": heartbeat\n\n"

    b.publish("menu_reordered", {"type": "items"})
    event, data = _parse(next(stream))
    assert event == "menu-updated"
    assert data["type"] == "menu_reordered"
    assert data["data"] == {"type": "items"}

    # max_events reached: the generator ends and unsubscribes.
    assert list(stream) == []
    assert b.subscriber_count == 0


def test_mutations_publish_to_subscribers(app, client, staff_headers):
    broadcaster = get_broadcaster(app)
    q = broadcaster.subscribe()
    cat = _category(client, staff_headers)
    _item(client, staff_headers, cat["id"])
    client.delete(f"/api/menu/category/{cat['id']}", headers=staff_headers)

    kinds = [q.get_nowait()["type"] for _ in range(3)]
    assert kinds == ["category_created", "item_created", "category_deleted"]
    broadcaster.unsubscribe(q)


def test_stream_endpoint_headers(app, client):
    app.config["MENU_SSE_HEARTBEAT_SECONDS"] = 0.01
    r = client.get("/api/menu/stream", buffered=False)
    assert r.status_code == 200
    assert r.mimetype == "text/event-stream"
    assert r.headers["Cache-Control"] == "no-cache"
    first = next(r.iter_encoded())
    assert b"event: connected" in first
    r.close()


def test_non_string_fields_are_rejected(client, staff_headers):
    r = client.post("/api/menu/category", json={"name": 5}, headers=staff_headers)
    assert r.status_code == 400
    assert r.json["error"] == "name must be a string"

    cat = _category(client, staff_headers)
    r = client.post("/api/menu/item", json={"name": "X", "categoryId": cat["id"], "price": "1", "description": 3}, headers=staff_headers)
    assert r.status_code == 400


class _PublishingRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    def publish(self, channel, payload):
        if self.fail:
            raise redis.exceptions.ConnectionError("down")
        self.published.append((channel, payload))
        return 1


def test_redis_broadcaster_publishes_and_relays(monkeypatch):
    client = _PublishingRedis()
    b = RedisBroadcaster(client)
    monkeypatch.setattr(b, "_ensure_listener", lambda: None)
    q = b.subscribe()

    assert b.publish("item_created", {"id": 3}) == 1
    # Local subscribers only see what comes back through the channel.
    assert q.empty()
    channel, payload = client.published[0]
    assert channel == "menu:updates"

    assert b.relay(payload.encode()) == 1
    assert q.get_nowait()["data"] == {"id": 3}
    assert b.relay(b"not json") == 0
    assert b.relay(b"[1, 2]") == 0


def test_redis_broadcaster_falls_back_to_local_delivery(monkeypatch):
    b = RedisBroadcaster(_PublishingRedis(fail=True))
    monkeypatch.setattr(b, "_ensure_listener", lambda: None)
    q = b.subscribe()
    assert b.publish("item_deleted", {"id": 9}) == 1
    assert q.get_nowait()["type"] == "item_deleted"


def test_broadcaster_from_config_without_redis():
    assert type(broadcaster_from_config({"REDIS_URL": "redis://127.0.0.1:1/0"})) is Broadcaster
    assert type(broadcaster_from_config({"REDIS_URL": "redis://x", "MENU_BROADCAST_BACKEND": "memory"})) is Broadcaster
