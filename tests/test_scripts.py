from sqlalchemy import select

from app.modulekit.models import Base, Role, User
from scripts._db_utils import create_script_engine, script_session
from scripts.init_db import PERMISSIONS, seed_only
from scripts.release import broker_status


def test_seed_is_idempotent(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path / 'seed.db'}"
    engine = create_script_engine(db_url)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    monkeypatch.setenv("ADMIN_EMAIL", "Owner@Example.com")

    seed_only(database_url=db_url)
    seed_only(database_url=db_url)

    with script_session(db_url) as s:
        admin = s.execute(select(User).where(User.email == "owner@example.com")).scalar_one()
        assert [r.key for r in admin.roles] == ["admin"]
        roles = {r.key: r for r in s.execute(select(Role)).scalars()}
        assert len(roles["admin"].permissions) == len(PERMISSIONS)
        assert {p.key for p in roles["staff"].permissions} == {"loyalty.view", "loyalty.earn", "menu.edit", "reservations.manage"}


def test_script_engine_enforces_sqlite_foreign_keys(tmp_path):
    engine = create_script_engine(f"sqlite:///{tmp_path / 'fk.db'}")
    with engine.connect() as conn:
        assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
    engine.dispose()


def test_broker_status():
    assert broker_status({"CELERY_TASK_ALWAYS_EAGER": "true"}) == "eager"
    assert broker_status({"REDIS_URL": "redis://127.0.0.1:1/0"}).startswith("unreachable")
