from tests.conftest import register


def _post(client, headers, content="Hello world", **extra):
    r = client.post("/api/posts", json={"content": content, **extra}, headers=headers)
    assert r.status_code == 201, r.json
    return r.json["post"]


def test_create_post_validation(client):
    _, headers = register(client, "author@example.com", "author")
    assert client.post("/api/posts", json={"content": "x"}).status_code == 401

    r = client.post("/api/posts", json={"content": "   "}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Content is required"

    r = client.post("/api/posts", json={"content": "x" * 5001}, headers=headers)
    assert r.status_code == 400

    r = client.post("/api/posts", json={"content": "x", "type": "poll"}, headers=headers)
    assert r.status_code == 400

    post = _post(client, headers, type="prediction", media=["https://img.example.com/a.png"])
    assert post["type"] == "prediction"
    assert post["media"] == ["https://img.example.com/a.png"]
    assert post["author"]["username"] == "author"
    assert post["likes"] == 0


def test_feed_excludes_private_and_paginates(client):
    _, headers = register(client, "feeder@example.com")
    for i in range(3):
        _post(client, headers, f"public {i}")
    private = _post(client, headers, "secret", visibility="private")

    r = client.get("/api/posts/feed?limit=2")
    assert [p["content"] for p in r.json["posts"]] == ["public 2", "public 1"]
    assert r.json["hasMore"] is True

    r = client.get("/api/posts/feed?limit=2&page=2")
    assert [p["content"] for p in r.json["posts"]] == ["public 0"]
    assert r.json["hasMore"] is False

    assert client.get(f"/api/posts/{private['id']}").status_code == 404
    assert client.get(f"/api/posts/{private['id']}", headers=headers).status_code == 200
    _, other = register(client, "snoop@example.com")
    assert client.post(f"/api/posts/{private['id']}/like", headers=other).status_code == 404


def test_like_dislike_toggle_and_notify(client):
    _, author = register(client, "poster@example.com", "poster")
    fan_id, fan = register(client, "fan@example.com", "fan")
    post = _post(client, author)

    r = client.post(f"/api/posts/{post['id']}/like", headers=fan)
    assert r.json == {"success": True, "liked": True, "likes": 1}

    # Switching to dislike replaces the like.
    r = client.post(f"/api/posts/{post['id']}/dislike", headers=fan)
    assert r.json["disliked"] is True
    r = client.get(f"/api/posts/{post['id']}", headers=fan)
    assert r.json["post"]["likes"] == 0
    assert r.json["post"]["dislikes"] == 1
    assert r.json["post"]["myReaction"] == "dislike"

    r = client.post(f"/api/posts/{post['id']}/dislike", headers=fan)
    assert r.json == {"success": True, "disliked": False, "dislikes": 0}

    r = client.get("/api/notifications", headers=author)
    notes = r.json["notifications"]
    assert len(notes) == 1
    assert notes[0]["type"] == "like"
    assert notes[0]["senderId"] == fan_id
    assert notes[0]["data"] == {"postId": post["id"]}
    assert notes[0]["message"] == "fan liked your post"


def test_self_like_does_not_notify(client):
    _, author = register(client, "solo@example.com")
    post = _post(client, author)
    r = client.post(f"/api/posts/{post['id']}/like", headers=author)
    assert r.json["liked"] is True
    assert client.get("/api/notifications", headers=author).json["notifications"] == []


def test_comments_and_read_marking(client):
    _, author = register(client, "op@example.com")
    _, reader = register(client, "reader@example.com")
    post = _post(client, author)

    r = client.post(f"/api/posts/{post['id']}/comment", json={"content": ""}, headers=reader)
    assert r.status_code == 400
    assert r.json["error"] == "Comment is required"

    r = client.post(f"/api/posts/{post['id']}/comment", json={"content": "Nice"}, headers=reader)
    assert r.status_code == 201
    client.post(f"/api/posts/{post['id']}/comment", json={"content": "Again"}, headers=reader)

    r = client.get(f"/api/posts/{post['id']}/comments")
    assert [c["content"] for c in r.json["comments"]] == ["Nice", "Again"]

    unread = client.get("/api/notifications?unread=1", headers=author).json["notifications"]
    assert len(unread) == 2

    r = client.post("/api/notifications/read", json={"ids": [unread[0]["id"]]}, headers=author)
    assert r.json["updated"] == 1
    assert len(client.get("/api/notifications?unread=1", headers=author).json["notifications"]) == 1

    r = client.post("/api/notifications/read", json={"ids": "all"}, headers=author)
    assert r.status_code == 400

    r = client.post("/api/notifications/read", json={}, headers=author)
    assert r.json["updated"] == 1


def test_only_author_deletes(client):
    _, author = register(client, "owner2@example.com")
    _, other = register(client, "other2@example.com")
    post = _post(client, author)

    r = client.delete(f"/api/posts/{post['id']}", headers=other)
    assert r.status_code == 403

    r = client.delete(f"/api/posts/{post['id']}", headers=author)
    assert r.status_code == 200
    assert client.get(f"/api/posts/{post['id']}").status_code == 404


def test_non_string_fields_are_rejected(client):
    _, headers = register(client, "typed@example.com")
    r = client.post("/api/posts", json={"content": 42}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "content must be a string"

    r = client.post("/api/posts", json={"content": "hi", "type": 5}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "type must be a string"

    r = client.post("/api/posts", json={"content": "hi", "location": {"lat": 1}}, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "location must be a string"
