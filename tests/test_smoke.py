from tests.conftest import ADMIN_EMAIL, PASSWORD, login


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    # No broker in tests and eager mode is off.
    assert r.json["queue"] is False


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_bad_credentials(client):
    r = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": "wrong"})
    assert r.status_code == 401
    assert r.json["success"] is False
    assert r.json["code"] == "UNAUTHENTICATED"


def test_login_rate_limited_after_five_attempts(client):
    for _ in range(5):
        client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": "wrong"})
    r = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": PASSWORD})
    assert r.status_code == 429
    assert r.json["code"] == "TOO_MANY_ATTEMPTS"


def test_me_requires_auth(client):
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json["error"] == "Please authenticate"


def test_bearer_token_identifies_user(client):
    headers = login(client, ADMIN_EMAIL)
    r = client.get("/auth/me", headers=headers)
    assert r.status_code == 200
    assert r.json["user"]["email"] == ADMIN_EMAIL
    assert "assembler.run" in r.json["user"]["permissions"]


def test_tampered_token_is_anonymous(client):
    r = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_register_validates_input(client):
    r = client.post("/auth/register", json={"email": "nope", "password": "longenough"})
    assert r.status_code == 400
    assert r.json["code"] == "VALIDATION_ERROR"

    r = client.post("/auth/register", json={"email": "a@example.com", "password": "short"})
    assert r.status_code == 400

    r = client.post("/auth/register", json={"email": "a@example.com", "password": "longenough"})
    assert r.status_code == 201
    r = client.post("/auth/register", json={"email": "a@example.com", "password": "longenough"})
    assert r.status_code == 400
    assert r.json["error"] == "Email already registered."


def test_session_cookie_mutation_requires_csrf(client):
    r = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": PASSWORD})
    csrf = r.json["csrfToken"]

    # Cookie-authenticated write without the token is refused.
    r = client.post("/api/menu/category", json={"name": "Drinks"})
    assert r.status_code == 400
    assert r.json["code"] == "CSRF_INVALID"

    r = client.post("/api/menu/category", json={"name": "Drinks"}, headers={"X-CSRF-Token": csrf})
    assert r.status_code == 201


def test_permission_denied_reports_missing_key(client):
    from tests.conftest import register

    _, headers = register(client, "plain@example.com")
    r = client.post("/api/menu/category", json={"name": "Drinks"}, headers=headers)
    assert r.status_code == 403
    assert r.json["code"] == "FORBIDDEN"
    assert r.json["missingPermission"] == "menu.edit"


def test_unknown_route_is_json_404(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json["success"] is False


def test_register_and_login_reject_non_string_fields(client):
    r = client.post("/auth/register", json={"email": "n@example.com", "password": 12345678})
    assert r.status_code == 400
    assert r.json["error"] == "password must be a string"

    r = client.post("/auth/login", json={"email": ["n@example.com"], "password": "longenough"})
    assert r.status_code == 400
