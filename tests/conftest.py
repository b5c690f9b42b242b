import pytest
from werkzeug.security import generate_password_hash

from app.modulekit import auth, create_app
from app.modulekit.db import session_scope
from app.modulekit.models import Base, Permission, Role, User
from scripts.init_db import PERMISSIONS, STAFF_PERMISSIONS

ADMIN_EMAIL = "admin@example.com"
STAFF_EMAIL = "staff@example.com"
PASSWORD = "password123"

# Long enough that the fraud checks do not flag it as a scripted client.
BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"


@pytest.fixture()
def make_app(tmp_path, monkeypatch):
    """Factory so a test can override env vars before the app is built."""

    def _make(**env):
        return _build_app(tmp_path, monkeypatch, env)

    return _make


@pytest.fixture()
def app(make_app):
    return make_app()


def _build_app(tmp_path, monkeypatch, env: dict):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("FRAUD_VELOCITY_BACKEND", "memory")
    monkeypatch.setenv("AI_ASSIST_BACKUP_BACKEND", "memory")
    monkeypatch.setenv("MENU_BROADCAST_BACKEND", "memory")
    # Nothing listens here, so the queue falls back unless eager mode is on.
    monkeypatch.setenv("REDIS_URL", "redis://127.0.0.1:1/0")
    monkeypatch.setenv("CELERY_BROKER_URL", "memory://")
    monkeypatch.setenv("CELERY_RESULT_BACKEND", "cache+memory://")
    monkeypatch.setenv("AI_ASSIST_ROOT", str(tmp_path / "project"))
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.delenv("CELERY_TASK_ALWAYS_EAGER", raising=False)
    for k, v in env.items():
        monkeypatch.setenv(k, v)
    auth._login_attempts.clear()

    app = create_app()
    app.config["STORAGE_ROOT"] = str(tmp_path / "storage")

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = {key: Permission(key=key, name=name) for key, name in PERMISSIONS}
        admin_role = Role(key="admin", name="Administrator")
        admin_role.permissions.extend(perms.values())
        staff_role = Role(key="staff", name="Staff")
        staff_role.permissions.extend(perms[k] for k in STAFF_PERMISSIONS)
        admin = User(email=ADMIN_EMAIL, password_hash=generate_password_hash(PASSWORD), username="admin", is_active=True)
        admin.roles.append(admin_role)
        staff = User(email=STAFF_EMAIL, password_hash=generate_password_hash(PASSWORD), username="staff", is_active=True)
        staff.roles.append(staff_role)
        s.add_all([*perms.values(), admin_role, staff_role, admin, staff])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def login(client, email: str, password: str = PASSWORD) -> dict:
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return {"Authorization": f"Bearer {r.json['token']}", "User-Agent": BROWSER_UA}


def register(client, email: str, username: str | None = None, *, user_agent: str = BROWSER_UA) -> tuple[int, dict]:
    body = {"email": email, "password": PASSWORD}
    if username:
        body["username"] = username
    r = client.post("/auth/register", json=body)
    assert r.status_code == 201, r.json
    return r.json["user"]["id"], {"Authorization": f"Bearer {r.json['token']}", "User-Agent": user_agent}


@pytest.fixture()
def admin_headers(client):
    return login(client, ADMIN_EMAIL)


@pytest.fixture()
def staff_headers(client):
    return login(client, STAFF_EMAIL)
